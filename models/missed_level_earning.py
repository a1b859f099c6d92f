"""
MissedLevelEarning model - commission owed on a level the member has not unlocked yet.

amount is the running total for the level (census × level income), overwritten
on every update, not accumulated. pending → transferred is one way.
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Float, ForeignKey, UniqueConstraint

from models.base import Base, AuditMixin


class MissedStatus:
    PENDING = "pending"
    TRANSFERRED = "transferred"


class MissedLevelEarning(Base, AuditMixin):
    __tablename__ = 'missed_level_earnings'
    __table_args__ = (
        UniqueConstraint('memberID', 'level', name='uq_missed_member_level'),
    )

    missedID = Column(Integer, primary_key=True, autoincrement=True)
    memberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)
    level = Column(Integer, nullable=False)

    amount = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)
    status = Column(String(16), default=MissedStatus.PENDING, nullable=False, index=True)
    reason = Column(String(32), default="level_locked", nullable=False)

    # Census snapshot at last update
    expectedMembers = Column(Integer, default=0, nullable=False)  # 2^level
    actualMembers = Column(Integer, default=0, nullable=False)
    levelCompletionPercentage = Column(Float, default=0.0, nullable=False)
    countedAt = Column(DateTime, nullable=True)  # last census update, not touched by transfer

    # Transfer
    transferredAt = Column(DateTime, nullable=True)
    transferredEarningID = Column(Integer, ForeignKey('earnings.earningID'), nullable=True)

    @property
    def isPending(self) -> bool:
        return self.status == MissedStatus.PENDING

    def __repr__(self):
        return (
            f"<MissedLevelEarning(memberID={self.memberID}, level={self.level}, "
            f"amount={self.amount}, status={self.status})>"
        )
