# mlm_system/utils/tree_placement.py
"""
Binary placement tree: find the next open slot under a sponsor (spillover).
"""
from collections import deque
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from models.member import Member
from mlm_system.errors import StructuralError

logger = logging.getLogger(__name__)

LEFT = "left"
RIGHT = "right"


@dataclass(frozen=True)
class PlacementSlot:
    """An empty slot: parent member and side."""
    parent: Member
    side: str

    @property
    def depth(self) -> int:
        return (self.parent.placementDepth or 0) + 1


class TreePlacementResolver:
    """Breadth-first spillover placement in the binary tree."""

    def __init__(self, session: Session):
        self.session = session

    def place(self, sponsor: Optional[Member]) -> PlacementSlot:
        """
        Find the first open slot under sponsor.

        Sponsor's own slots first (left, then right), then breadth-first over
        the placement subtree, left child before right child.

        Args:
            sponsor: Member to place under

        Returns:
            PlacementSlot that is currently empty

        Raises:
            StructuralError: If sponsor is None, or the subtree has no open slot
                (only possible with corrupted child pointers)
        """
        if sponsor is None:
            raise StructuralError("No sponsor resolved for placement")

        if sponsor.leftChildID is None:
            return PlacementSlot(sponsor, LEFT)
        if sponsor.rightChildID is None:
            return PlacementSlot(sponsor, RIGHT)

        return self._breadthFirstSlot(sponsor)

    def _breadthFirstSlot(self, start: Member) -> PlacementSlot:
        # Every member is visited at most once, so the loop is bounded by the table size
        limit = self.session.query(func.count(Member.memberID)).scalar() or 0
        queue = deque([start.memberID])
        visited = set()

        while queue and len(visited) <= limit:
            memberId = queue.popleft()
            if memberId in visited:
                logger.error(f"Placement tree revisits member {memberId}, skipping")
                continue
            visited.add(memberId)

            node = self.session.get(Member, memberId)
            if node is None:
                logger.warning(f"Placement child {memberId} not found, skipping")
                continue

            if node.leftChildID is None:
                return PlacementSlot(node, LEFT)
            if node.rightChildID is None:
                return PlacementSlot(node, RIGHT)

            queue.append(node.leftChildID)
            queue.append(node.rightChildID)

        raise StructuralError(
            f"No open placement slot under member {start.memberID} "
            f"(visited {len(visited)} nodes)"
        )

    def attach(self, member: Member, slot: PlacementSlot) -> None:
        """
        Put member into slot: set the parent's child pointer and the placement fields.

        Args:
            member: Newly registered member (already flushed, has memberID)
            slot: Slot returned by place()

        Raises:
            StructuralError: If the slot was taken in the meantime
        """
        parent = slot.parent
        occupant = parent.slotOccupant(slot.side)
        if occupant is not None and occupant != member.memberID:
            raise StructuralError(
                f"Slot {slot.side} of member {parent.memberID} already holds {occupant}"
            )

        if slot.side == LEFT:
            parent.leftChildID = member.memberID
        else:
            parent.rightChildID = member.memberID

        member.placementParentID = parent.memberID
        member.placementSide = slot.side
        member.placementDepth = slot.depth

        self.session.flush()

        logger.debug(
            f"Placed member {member.memberID} at {slot.side} of {parent.memberID} "
            f"(depth {slot.depth})"
        )
