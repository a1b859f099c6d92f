# mlm_system/services/stats_service.py
"""
Read-only statistics for dashboards and reports.

All results are dataclass records. Per-level team stats are cached in an
injected LevelStatsCache; the distributor invalidates it on registration.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from config import Config
from models.earning import Earning
from models.member import Member
from models.missed_level_earning import MissedLevelEarning, MissedStatus
from mlm_system.config.compensation import (
    CompensationPlan,
    get_compensation_plan,
    theoretical_max_earnings,
)
from mlm_system.services.earnings_aggregator import EarningsAggregator
from mlm_system.services.level_unlock import LevelUnlockCalculator
from mlm_system.services.missed_earnings_service import MissedEarningsLedger
from mlm_system.services.team_census import TeamCensus
from mlm_system.utils.level_cache import LevelStatsCache

logger = logging.getLogger(__name__)


@dataclass
class LevelStats:
    level: int
    actualMembers: int
    expectedMembers: int
    fillPercentage: float
    unlocked: bool
    requiredDirectReferrals: int


@dataclass
class TeamStats:
    memberId: int
    directReferralCount: int
    unlockedLevels: int
    totalTeamSize: int
    teamFullyBuilt: bool
    levels: List[LevelStats] = field(default_factory=list)

    def level(self, level: int) -> LevelStats:
        return self.levels[level - 1]


@dataclass
class MissedEarningsSummary:
    memberId: int
    pendingTotal: Decimal
    byLevel: Dict[int, Decimal]
    transferredCount: int


@dataclass
class MaxEarningsLevel:
    level: int
    expectedMembers: int
    commissionPerMember: Decimal
    totalEarnings: Decimal


@dataclass
class MaxEarnings:
    total: Decimal
    levels: List[MaxEarningsLevel]


@dataclass
class SystemMissedLevel:
    level: int
    pendingAmount: Decimal
    pendingRecords: int
    members: int


class StatsService:
    """Query surface over members, ledger and missed earnings."""

    def __init__(
            self,
            session: Session,
            cache: Optional[LevelStatsCache] = None,
            plan: Optional[CompensationPlan] = None
    ):
        self.session = session
        self.plan = plan or get_compensation_plan()
        self.cache = cache if cache is not None else LevelStatsCache(
            ttlSeconds=Config.get(Config.LEVEL_STATS_CACHE_TTL, 300)
        )
        self.census = TeamCensus(session, self.plan)
        self.unlock = LevelUnlockCalculator(self.plan, self.census)
        self.aggregator = EarningsAggregator(session)

    def directReferralCount(self, member: Member) -> int:
        return self.census.directReferralCount(member)

    def unlockedLevels(self, member: Member) -> int:
        return self.unlock.unlockedLevelsFor(member)

    def totalEarnings(self, member: Member) -> Decimal:
        return self.aggregator.totalEarnings(member)

    def getLevelWiseTeamStats(self, member: Member) -> TeamStats:
        """
        Team size and fill percentage for each level 1..15.

        Cached per member for LEVEL_STATS_CACHE_TTL seconds.
        """
        cached = self.cache.get(member.memberID)
        if cached is not None:
            return cached

        counts = self.census.countByLevel(member)
        directCount = self.census.directReferralCount(member)
        unlocked = self.unlock.unlockedLevelsFor(member)
        totalTeam = sum(counts.values())

        levels = []
        for level in range(1, self.plan.maxLevels + 1):
            expected = self.plan.expectedMembersAtLevel(level)
            actual = counts.get(level, 0)
            levels.append(LevelStats(
                level=level,
                actualMembers=actual,
                expectedMembers=expected,
                fillPercentage=round(actual / expected * 100, 2),
                unlocked=level <= unlocked,
                requiredDirectReferrals=self.unlock.requiredDirectReferrals(level),
            ))

        stats = TeamStats(
            memberId=member.memberID,
            directReferralCount=directCount,
            unlockedLevels=unlocked,
            totalTeamSize=totalTeam,
            teamFullyBuilt=totalTeam >= self.plan.teamFullyBuiltThreshold,
            levels=levels,
        )
        self.cache.set(member.memberID, stats)
        return stats

    def getMissedEarningsSummary(self, member: Member) -> MissedEarningsSummary:
        ledger = MissedEarningsLedger(self.session, self.plan)
        transferred = self.session.query(func.count(MissedLevelEarning.missedID)).filter(
            MissedLevelEarning.memberID == member.memberID,
            MissedLevelEarning.status == MissedStatus.TRANSFERRED
        ).scalar() or 0

        return MissedEarningsSummary(
            memberId=member.memberID,
            pendingTotal=ledger.pendingTotal(member),
            byLevel=ledger.pendingByLevel(member),
            transferredCount=transferred,
        )

    def theoreticalMaxEarnings(self) -> MaxEarnings:
        """Earnings of a saturated tree; independent of any member."""
        data = theoretical_max_earnings(self.plan)
        return MaxEarnings(
            total=data["total"],
            levels=[
                MaxEarningsLevel(
                    level=row["level"],
                    expectedMembers=row["expectedMembers"],
                    commissionPerMember=row["commissionPerMember"],
                    totalEarnings=row["totalEarnings"],
                )
                for row in data["breakdown"]
            ],
        )

    def earningsHistory(self, member: Member, limit: int = 50, offset: int = 0) -> List[Earning]:
        """Member's ledger entries, newest first."""
        return self.session.query(Earning).filter(
            Earning.recipientID == member.memberID
        ).order_by(
            Earning.createdAt.desc(),
            Earning.earningID.desc()
        ).offset(offset).limit(limit).all()

    def systemMissedByLevel(self) -> List[SystemMissedLevel]:
        """Pending missed earnings across all members, per level."""
        rows = self.session.query(
            MissedLevelEarning.level,
            func.sum(MissedLevelEarning.amount),
            func.count(MissedLevelEarning.missedID),
            func.count(func.distinct(MissedLevelEarning.memberID))
        ).filter(
            MissedLevelEarning.status == MissedStatus.PENDING
        ).group_by(MissedLevelEarning.level).order_by(MissedLevelEarning.level).all()

        return [
            SystemMissedLevel(
                level=level,
                pendingAmount=Decimal(str(amount or 0)).quantize(Decimal("0.01")),
                pendingRecords=records,
                members=members,
            )
            for level, amount, records, members in rows
        ]
