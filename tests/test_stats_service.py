# tests/test_stats_service.py
"""
Tests for StatsService - dashboards over census, ledger and missed earnings.
"""
from decimal import Decimal

import pytest

from mlm_system.services.stats_service import StatsService


class TestTeamStats:

    @pytest.mark.asyncio
    async def test_level_wise_team_stats(self, session, register, cache):
        s = await register("S")
        a = await register("A", s)
        await register("B", s)
        await register("A0", a)

        stats = StatsService(session, cache=cache).getLevelWiseTeamStats(s)

        assert stats.directReferralCount == 2
        assert stats.unlockedLevels == 4
        assert stats.totalTeamSize == 3
        assert stats.teamFullyBuilt is False
        assert len(stats.levels) == 15

        assert stats.level(1).actualMembers == 2
        assert stats.level(1).fillPercentage == 100.0
        assert stats.level(2).actualMembers == 1
        assert stats.level(2).expectedMembers == 4
        assert stats.level(2).fillPercentage == 25.0
        assert stats.level(4).unlocked is True
        assert stats.level(5).unlocked is False
        assert stats.level(5).requiredDirectReferrals == 5

    @pytest.mark.asyncio
    async def test_stats_cached(self, session, register, cache):
        s = await register("S")
        service = StatsService(session, cache=cache)

        first = service.getLevelWiseTeamStats(s)
        second = service.getLevelWiseTeamStats(s)

        assert first is second
        assert cache.hits == 1

    @pytest.mark.asyncio
    async def test_registration_invalidates_chain(self, session, register, cache):
        s = await register("S")
        service = StatsService(session, cache=cache)
        before = service.getLevelWiseTeamStats(s)

        await register("A", s)
        after = service.getLevelWiseTeamStats(s)

        assert after is not before
        assert before.level(1).actualMembers == 0
        assert after.level(1).actualMembers == 1

    @pytest.mark.asyncio
    async def test_wrappers(self, session, register):
        s = await register("S")
        await register("A", s)
        await register("B", s)

        service = StatsService(session)
        assert service.directReferralCount(s) == 2
        assert service.unlockedLevels(s) == 4
        assert service.totalEarnings(s) == Decimal("6.00")


class TestEarningsStats:

    def test_theoretical_max(self, session):
        result = StatsService(session).theoreticalMaxEarnings()

        assert result.total == Decimal("65536")
        assert len(result.levels) == 15
        assert result.levels[0].commissionPerMember == Decimal("2")
        assert result.levels[0].totalEarnings == Decimal("4")
        assert result.levels[14].expectedMembers == 32768

    @pytest.mark.asyncio
    async def test_missed_summary(self, session, register):
        s = await register("S")
        a = await register("A", s)
        await register("A0", a)

        summary = StatsService(session).getMissedEarningsSummary(s)

        assert summary.pendingTotal == Decimal("2.00")
        assert summary.byLevel == {1: Decimal("1"), 2: Decimal("1")}
        assert summary.transferredCount == 0

        await register("B", s)
        summary = StatsService(session).getMissedEarningsSummary(s)

        assert summary.pendingTotal == Decimal("0.00")
        assert summary.transferredCount == 2

    @pytest.mark.asyncio
    async def test_system_missed_by_level(self, session, register):
        s = await register("S")
        await register("M1", s)
        t = await register("T")
        await register("T1", t)

        rows = StatsService(session).systemMissedByLevel()

        assert len(rows) == 1
        assert rows[0].level == 1
        assert rows[0].pendingAmount == Decimal("2.00")
        assert rows[0].pendingRecords == 2
        assert rows[0].members == 2

    @pytest.mark.asyncio
    async def test_earnings_history(self, session, register, creator):
        await register("S")
        await register("T")

        service = StatsService(session)
        history = service.earningsHistory(creator, limit=5)
        ids = [e.earningID for e in history]

        assert len(history) == 5
        assert ids == sorted(ids, reverse=True)
        assert all(e.recipientID == creator.memberID for e in history)

        page = service.earningsHistory(creator, limit=5, offset=5)
        assert not set(ids) & {e.earningID for e in page}
