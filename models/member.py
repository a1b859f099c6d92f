"""
Member model - a node in both the enrollment (sponsor) tree and the binary placement tree.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Boolean, DECIMAL, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin, _get_current_time


class Member(Base, AuditMixin):
    __tablename__ = 'members'

    # Primary key
    memberID = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, nullable=False, unique=True)

    # Enrollment: the single direct enroller. Defines the commission chain.
    sponsorID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)

    # Binary placement slots (independent of sponsorship)
    leftChildID = Column(Integer, ForeignKey('members.memberID'), nullable=True, unique=True)
    rightChildID = Column(Integer, ForeignKey('members.memberID'), nullable=True, unique=True)
    placementParentID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)
    placementSide = Column(String(5), nullable=True)  # 'left' / 'right'
    placementDepth = Column(Integer, default=0, nullable=False)  # root = 0

    # Status
    isActive = Column(Boolean, default=True, nullable=False)
    isCreator = Column(Boolean, default=False, nullable=False)
    auditHold = Column(Boolean, default=False, nullable=False)  # set on ledger invariant violation
    registeredAt = Column(DateTime, default=_get_current_time, nullable=False)

    # Cached values (ledger and census are authoritative)
    unlockedLevels = Column(Integer, default=0, nullable=False)
    totalEarnings = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)

    # Enrollment codes (data repair only, sponsorID is canonical)
    referralCode = Column(String, nullable=True, index=True)
    sponsorCode = Column(String, nullable=True)

    # Relationships
    sponsor = relationship(
        'Member',
        remote_side=[memberID],
        foreign_keys=[sponsorID],
        viewonly=True,
    )
    leftChild = relationship(
        'Member',
        remote_side=[memberID],
        foreign_keys=[leftChildID],
        viewonly=True,
    )
    rightChild = relationship(
        'Member',
        remote_side=[memberID],
        foreign_keys=[rightChildID],
        viewonly=True,
    )

    def slotOccupant(self, side: str):
        """Member ID in the given placement slot, or None."""
        if side == 'left':
            return self.leftChildID
        if side == 'right':
            return self.rightChildID
        raise ValueError(f"Unknown placement side: {side}")

    def __repr__(self):
        return (
            f"<Member(memberID={self.memberID}, username={self.username}, "
            f"sponsorID={self.sponsorID}, unlockedLevels={self.unlockedLevels})>"
        )
