# mlm_system/utils/chain_walker.py
"""
Safe sponsor-chain walking utilities.
Prevents infinite loops and validates chain integrity.
"""
from typing import Optional, Callable, Set, List, Dict
from sqlalchemy.orm import Session
import logging

from models.member import Member
from config import Config

logger = logging.getLogger(__name__)

DEFAULT_CHAIN_DEPTH = 15


class SponsorChainWalker:
    """
    Safe utilities for walking the enrollment (sponsor) chain upward.
    Prevents infinite loops and validates chain integrity.
    """

    def __init__(self, session: Session):
        self.session = session
        self._root_member_id = None
        self._creator_member_id = None

    # ============================================================
    # DESIGNATED MEMBERS
    # ============================================================

    def get_root_member(self) -> Optional[Member]:
        """
        Get the designated root (fallback sponsor) member.

        Resolved by ROOT_USERNAME, falling back to the creator.
        """
        if self._root_member_id is not None:
            return self.session.get(Member, self._root_member_id)

        root = self.session.query(Member).filter_by(
            username=Config.get(Config.ROOT_USERNAME)
        ).first()

        if root is None:
            root = self.get_creator_member()

        if root is not None:
            self._root_member_id = root.memberID
        return root

    def get_creator_member(self) -> Optional[Member]:
        """Get the designated creator/admin member that receives the creator fee."""
        if self._creator_member_id is not None:
            return self.session.get(Member, self._creator_member_id)

        creator = self.session.query(Member).filter_by(isCreator=True).order_by(Member.memberID).first()
        if creator is None:
            creator = self.session.query(Member).filter_by(
                username=Config.get(Config.CREATOR_USERNAME)
            ).first()

        if creator is not None:
            self._creator_member_id = creator.memberID
        return creator

    # ============================================================
    # WALKING
    # ============================================================

    def walk_upline(
            self,
            start_member: Member,
            callback: Callable[[Member, int], bool],
            max_depth: int = DEFAULT_CHAIN_DEPTH
    ) -> int:
        """
        Safely walk up the sponsor chain, calling callback for each ancestor.

        Args:
            start_member: Starting member (not passed to callback)
            callback: Function(ancestor, level) -> continue_walking (bool)
            max_depth: Maximum number of ancestors to visit

        Returns:
            Number of ancestors processed
        """
        current = start_member
        level = 1
        processed = 0
        visited = {start_member.memberID}

        while current.sponsorID is not None and level <= max_depth:
            if current.sponsorID in visited:
                logger.error(
                    f"Cycle detected at member {current.memberID} "
                    f"(sponsor {current.sponsorID} already visited)"
                )
                break

            sponsor = self.session.get(Member, current.sponsorID)

            if sponsor is None:
                logger.warning(
                    f"Sponsor not found: memberID={current.sponsorID} "
                    f"for member {current.memberID}"
                )
                break

            visited.add(sponsor.memberID)

            should_continue = callback(sponsor, level)
            processed += 1

            if not should_continue:
                break

            current = sponsor
            level += 1

        return processed

    def chain(self, start_member: Member, max_depth: int = DEFAULT_CHAIN_DEPTH) -> List[Member]:
        """
        Ancestors of a member, nearest first.

        Stops at max_depth ancestors or at the member with no sponsor.
        The start member itself is never included.

        Args:
            start_member: Starting member
            max_depth: Maximum chain length

        Returns:
            [direct sponsor, sponsor's sponsor, ...]
        """
        ancestors = []

        def collect(ancestor, level):
            ancestors.append(ancestor)
            return True  # Continue

        self.walk_upline(start_member, collect, max_depth)
        return ancestors

    # ============================================================
    # INTEGRITY CHECKS
    # ============================================================

    def validate_chain_to_root(self, member_id: int) -> bool:
        """
        Validate that a member's sponsor chain reaches the root member.

        Args:
            member_id: Member ID to validate

        Returns:
            True if chain is valid, False otherwise
        """
        root = self.get_root_member()
        if root is None:
            logger.error("Root member not configured!")
            return False

        member = self.session.get(Member, member_id)
        if member is None:
            logger.error(f"Member {member_id} not found")
            return False

        visited = set()
        current = member
        max_depth = 10_000  # Safety limit, well beyond any real tree
        depth = 0

        while depth < max_depth:
            if current.memberID == root.memberID:
                logger.debug(f"Member {member_id} chain is valid (depth={depth})")
                return True

            if current.memberID in visited:
                logger.error(f"Cycle detected in chain for member {member_id}")
                return False

            visited.add(current.memberID)

            if current.sponsorID is None:
                logger.error(
                    f"Broken chain: member {current.memberID} has no sponsor "
                    f"and is not the root"
                )
                return False

            sponsor = self.session.get(Member, current.sponsorID)
            if sponsor is None:
                logger.error(
                    f"Broken chain: sponsor memberID={current.sponsorID} "
                    f"not found for member {current.memberID}"
                )
                return False

            current = sponsor
            depth += 1

        logger.error(f"Chain too deep (>{max_depth}) for member {member_id}")
        return False

    def find_orphan_branches(self) -> Set[int]:
        """
        Find all members whose chains don't reach the root.

        Returns:
            Set of member IDs in orphan branches
        """
        root = self.get_root_member()
        if root is None:
            logger.error("Root member not configured!")
            return set()

        orphans = set()
        members = self.session.query(Member).filter(
            Member.memberID != root.memberID
        ).all()

        for member in members:
            if not self.validate_chain_to_root(member.memberID):
                orphans.add(member.memberID)

        if orphans:
            logger.warning(f"Found {len(orphans)} members in orphan branches: {orphans}")
        else:
            logger.info("No orphan branches found")

        return orphans

    def find_sponsor_code_mismatches(self) -> List[Dict]:
        """
        Report members whose enrollment code disagrees with their sponsor pointer.

        sponsorID is the canonical enrollment link; the code fields are a
        second, legacy source of truth. Mismatches are data-repair work and
        never change commission results.

        Returns:
            List of dicts: memberId, sponsorId, sponsorCode, expectedCode
        """
        mismatches = []

        members = self.session.query(Member).filter(Member.sponsorID.isnot(None)).all()
        for member in members:
            sponsor = self.session.get(Member, member.sponsorID)
            expected = sponsor.referralCode if sponsor else None

            actual = (member.sponsorCode or "").lower()
            if not expected or actual != expected.lower():
                mismatches.append({
                    "memberId": member.memberID,
                    "sponsorId": member.sponsorID,
                    "sponsorCode": member.sponsorCode,
                    "expectedCode": expected,
                })

        if mismatches:
            logger.warning(f"Found {len(mismatches)} sponsor code mismatches")

        return mismatches
