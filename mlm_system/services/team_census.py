"""
Team census over the enrollment (sponsor) relationship.

Counts descendants by exact depth. The enrollment graph is not binary (a
sponsor may have any number of direct referrals), so traversal is a
depth-bounded breadth-first walk over sponsorID, one query per depth.
"""
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from models.member import Member
from mlm_system.config.compensation import CompensationPlan, get_compensation_plan

logger = logging.getLogger(__name__)


class TeamCensus:
    """Descendant counts per level for a member."""

    def __init__(self, session: Session, plan: Optional[CompensationPlan] = None):
        self.session = session
        self.plan = plan or get_compensation_plan()

    # ============================================================
    # TRAVERSAL
    # ============================================================

    def _levelsOf(self, member: Member, maxDepth: int) -> Dict[int, List[int]]:
        """
        Member IDs per depth, 1..maxDepth.

        Returns:
            {1: [ids of direct referrals], 2: [...], ...}, empty depths omitted
        """
        levels: Dict[int, List[int]] = {}
        visited = {member.memberID}
        frontier = [member.memberID]
        depth = 0

        while frontier and depth < maxDepth:
            depth += 1
            rows = self.session.query(Member.memberID).filter(
                Member.sponsorID.in_(frontier)
            ).order_by(Member.memberID).all()

            nextFrontier = []
            for (memberId,) in rows:
                if memberId in visited:
                    logger.error(f"Cycle in enrollment tree at member {memberId}, skipping")
                    continue
                visited.add(memberId)
                nextFrontier.append(memberId)

            if nextFrontier:
                levels[depth] = nextFrontier
            frontier = nextFrontier

        return levels

    # ============================================================
    # PUBLIC API
    # ============================================================

    def membersAtLevel(self, member: Member, level: int) -> List[int]:
        """
        IDs of descendants exactly `level` sponsor-steps below member.

        Args:
            member: Root of the count
            level: Depth, 1 = direct referrals

        Returns:
            Member IDs ordered by depth traversal
        """
        if level < 1:
            return []
        return self._levelsOf(member, level).get(level, [])

    def countAtLevel(self, member: Member, level: int) -> int:
        return len(self.membersAtLevel(member, level))

    def countByLevel(self, member: Member) -> Dict[int, int]:
        """
        Descendant count for every level 1..maxLevels in one traversal.

        Returns:
            {level: count} including zero counts
        """
        levels = self._levelsOf(member, self.plan.maxLevels)
        return {
            level: len(levels.get(level, []))
            for level in range(1, self.plan.maxLevels + 1)
        }

    def totalTeamSize(self, member: Member) -> int:
        """Descendants across levels 1..maxLevels."""
        return sum(self.countByLevel(member).values())

    def directReferralCount(self, member: Member) -> int:
        """
        Validated direct referrals: members whose sponsor pointer is this member.

        The sponsor pointer is the single canonical enrollment link.
        """
        return self.session.query(func.count(Member.memberID)).filter(
            Member.sponsorID == member.memberID
        ).scalar() or 0

    def isTeamFullyBuilt(self, member: Member) -> bool:
        return self.totalTeamSize(member) >= self.plan.teamFullyBuiltThreshold
