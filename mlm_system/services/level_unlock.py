"""
Level unlock rules.

Direct Referrals → Levels Unlocked
    0-1  → 0
    2-4  → 4   (single jump)
    5    → 5
    N    → N   (up to 15)

Team of 100+ (levels 1-15) unlocks all 15 regardless of referrals.
"""
from typing import Optional
import logging

from models.member import Member
from mlm_system.config.compensation import (
    CompensationPlan,
    get_compensation_plan,
    LEVELS_AT_TWO_DIRECTS,
    MIN_DIRECTS_FOR_UNLOCK,
    PER_REFERRAL_UNLOCK_FROM,
)

logger = logging.getLogger(__name__)


class LevelUnlockCalculator:
    """Maps direct-referral count (and team completeness) to unlocked levels."""

    def __init__(self, plan: Optional[CompensationPlan] = None, census=None):
        self.plan = plan or get_compensation_plan()
        self.census = census

    def unlockedLevels(self, directReferralCount: int, teamFullyBuilt: bool = False) -> int:
        """
        Number of commission levels currently unlocked.

        Args:
            directReferralCount: Validated direct referrals
            teamFullyBuilt: Team across levels 1-15 reached the threshold

        Returns:
            Integer in [0, maxLevels]
        """
        maxLevels = self.plan.maxLevels

        if teamFullyBuilt:
            return maxLevels

        if directReferralCount < MIN_DIRECTS_FOR_UNLOCK:
            return 0

        if directReferralCount < PER_REFERRAL_UNLOCK_FROM:
            return min(LEVELS_AT_TWO_DIRECTS, maxLevels)

        return min(directReferralCount, maxLevels)

    def isLevelUnlocked(self, level: int, directReferralCount: int, teamFullyBuilt: bool = False) -> bool:
        return 1 <= level <= self.unlockedLevels(directReferralCount, teamFullyBuilt)

    def requiredDirectReferrals(self, level: int) -> int:
        """
        Direct referrals needed to unlock a level without the team bonus.

        Args:
            level: 1..maxLevels

        Returns:
            2 for levels 1-4, the level itself from 5 upward
        """
        if level < 1 or level > self.plan.maxLevels:
            raise ValueError(f"Level must be in 1..{self.plan.maxLevels}, got {level}")

        if level <= LEVELS_AT_TWO_DIRECTS:
            return MIN_DIRECTS_FOR_UNLOCK
        return max(level, PER_REFERRAL_UNLOCK_FROM)

    def unlockedLevelsFor(self, member: Member) -> int:
        """
        Unlocked levels for a stored member, from the live census.

        The creator always earns on every level.
        """
        if member.isCreator:
            return self.plan.maxLevels

        if self.census is None:
            raise RuntimeError("LevelUnlockCalculator needs a TeamCensus for unlockedLevelsFor()")

        directCount = self.census.directReferralCount(member)

        # Team size only matters below the full-unlock referral count
        if self.unlockedLevels(directCount) >= self.plan.maxLevels:
            return self.plan.maxLevels

        teamFullyBuilt = self.census.isTeamFullyBuilt(member)
        return self.unlockedLevels(directCount, teamFullyBuilt)
