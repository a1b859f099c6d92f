# tests/test_registration.py
"""
Tests for RegistrationService - sponsor resolution, placement, distribution.
"""
import logging
from decimal import Decimal

import pytest

from config import Config
from models import Earning, Member
from mlm_system.services.registration_service import RegistrationService


class TestCreator:

    def test_ensure_creator_is_idempotent(self, session):
        service = RegistrationService(session)
        first = service.ensureCreator()
        second = service.ensureCreator()

        assert first.memberID == second.memberID
        assert first.isCreator is True
        assert first.unlockedLevels == 15
        assert session.query(Member).count() == 1

    def test_creator_username_from_config(self, session):
        Config.set(Config.CREATOR_USERNAME, "Founder")
        creator = RegistrationService(session).ensureCreator()

        assert creator.username == "Founder"
        assert creator.referralCode == "founder"


class TestSponsorResolution:

    @pytest.mark.asyncio
    async def test_by_member_id(self, session, register):
        alice = await register("alice")
        bob = await register("bob", alice.memberID)

        assert bob.sponsorID == alice.memberID
        assert register.result("bob").usedFallbackSponsor is False

    @pytest.mark.asyncio
    async def test_by_digit_string(self, session, register):
        alice = await register("alice")
        bob = await register("bob", str(alice.memberID))

        assert bob.sponsorID == alice.memberID

    @pytest.mark.asyncio
    async def test_by_username(self, session, register):
        alice = await register("alice")
        bob = await register("bob", "alice")

        assert bob.sponsorID == alice.memberID
        assert bob.sponsorCode == alice.referralCode

    @pytest.mark.asyncio
    async def test_by_referral_code_case_insensitive(self, session, register):
        alice = await register("Alice")
        bob = await register("bob", "ALICE")

        assert bob.sponsorID == alice.memberID

    @pytest.mark.asyncio
    async def test_unknown_sponsor_falls_back_to_root(self, session, register, creator, caplog):
        with caplog.at_level(logging.WARNING):
            ghost_child = await register("orphan", "ghost")

        assert ghost_child.sponsorID == creator.memberID
        assert register.result("orphan").usedFallbackSponsor is True
        assert "not found" in caplog.text

    @pytest.mark.asyncio
    async def test_missing_sponsor_falls_back_to_root(self, session, register, creator):
        member = await register("alice")

        assert member.sponsorID == creator.memberID
        assert register.result("alice").usedFallbackSponsor is True

    @pytest.mark.asyncio
    async def test_self_sponsor_rejected(self, session, creator):
        member = Member(username="selfie", referralCode="selfie")
        session.add(member)
        session.flush()

        result = await RegistrationService(session).onMemberRegistered(member.memberID, member.memberID)

        assert result.sponsorId == creator.memberID
        assert result.usedFallbackSponsor is True

    @pytest.mark.asyncio
    async def test_root_username_override(self, session, register, creator):
        Config.set(Config.ROOT_USERNAME, "hub")
        hub = await register("hub", creator)
        member = await register("alice", "nobody")

        assert member.sponsorID == hub.memberID


class TestRegistration:

    @pytest.mark.asyncio
    async def test_duplicate_username(self, session, register):
        await register("alice")

        with pytest.raises(ValueError):
            await register("alice")

    @pytest.mark.asyncio
    async def test_placement_recorded(self, session, register, creator):
        alice = await register("alice")
        result = register.result("alice")

        assert result.placementParentId == creator.memberID
        assert result.placementSide == "left"
        assert alice.placementDepth == 1

    @pytest.mark.asyncio
    async def test_paid_amount_mismatch_distributes_fee(self, session, register, journal_sum, caplog):
        with caplog.at_level(logging.WARNING):
            alice = await register("alice", paid="15")

        assert journal_sum['event'](alice.memberID) == Decimal("20.00")
        assert "paid 15" in caplog.text

    @pytest.mark.asyncio
    async def test_matching_paid_amount_not_logged(self, session, register, caplog):
        with caplog.at_level(logging.WARNING, logger="mlm_system.services.registration_service"):
            await register("alice", paid=Decimal("20"))

        assert "paid" not in caplog.text

    @pytest.mark.asyncio
    async def test_replay_registration_posts_nothing(self, session, register):
        alice = await register("alice")
        before = session.query(Earning).count()

        result = await RegistrationService(session).onMemberRegistered(alice.memberID)

        assert session.query(Earning).count() == before
        assert result.distribution.postings == []
        assert result.distribution.conflicts > 0
        assert result.placementParentId == alice.placementParentID
