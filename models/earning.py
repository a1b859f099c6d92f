"""
Earning model - append-only commission ledger.

One row per posting. Rows are never updated or deleted; corrections are new rows.
postingKey is the idempotency guard: the same (kind, recipient, from-member, level)
can only be posted once, so replaying a registration adds nothing.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey
from sqlalchemy.orm import relationship

from models.base import Base, AuditMixin


class EarningKind:
    """Ledger entry kinds."""
    DIRECT_BONUS = "direct-bonus"
    LEVEL_INCOME = "level-income"
    CREATOR_FEE = "creator-fee"
    DEVELOPMENT_FEE = "development-fee"
    DEFERRED_TRANSFER = "deferred-transfer"

    # Locked level share parked in the deferred pool (no recipient)
    DEFERRED_HOLD = "deferred-hold"
    # Pool debit paired with a deferred-transfer (negative amount)
    DEFERRED_RELEASE = "deferred-release"
    # Level share with no ancestor at that depth, credited to the creator
    LEVEL_OVERFLOW = "level-overflow"

    ALL = (
        DIRECT_BONUS, LEVEL_INCOME, CREATOR_FEE, DEVELOPMENT_FEE, DEFERRED_TRANSFER,
        DEFERRED_HOLD, DEFERRED_RELEASE, LEVEL_OVERFLOW,
    )


class EarningStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"


# Level sentinels
DIRECT_BONUS_LEVEL = 0
CREATOR_FEE_LEVEL = -1
DEVELOPMENT_FEE_LEVEL = -2


def make_posting_key(kind: str, ownerId, fromMemberId, level: int) -> str:
    """
    Build the idempotency key for a posting.

    Args:
        kind: EarningKind value
        ownerId: Recipient (or beneficiary for pool entries), None for ledger-only sinks
        fromMemberId: Contributing member, None for per-level aggregates
        level: Level or sentinel

    Returns:
        Key like 'level-income:12:40:3'
    """
    owner = "-" if ownerId is None else str(ownerId)
    source = "-" if fromMemberId is None else str(fromMemberId)
    return f"{kind}:{owner}:{source}:{level}"


class Earning(Base, AuditMixin):
    __tablename__ = 'earnings'

    # Primary key
    earningID = Column(Integer, primary_key=True, autoincrement=True)

    # Parties
    recipientID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)  # None = ledger-only
    beneficiaryID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)  # pool entries
    fromMemberID = Column(Integer, ForeignKey('members.memberID'), nullable=True, index=True)
    eventMemberID = Column(Integer, ForeignKey('members.memberID'), nullable=False, index=True)

    # Posting details
    level = Column(Integer, nullable=False)
    amount = Column(DECIMAL(18, 2), nullable=False)
    kind = Column(String(32), nullable=False, index=True)
    status = Column(String(16), default=EarningStatus.CONFIRMED, nullable=False, index=True)
    postingKey = Column(String, nullable=False, unique=True)

    notes = Column(String, nullable=True)

    # Note: createdAt, updatedAt - from AuditMixin

    # Relationships
    recipient = relationship('Member', foreign_keys=[recipientID], viewonly=True)

    def __repr__(self):
        return (
            f"<Earning(earningID={self.earningID}, kind={self.kind}, "
            f"recipientID={self.recipientID}, level={self.level}, amount={self.amount})>"
        )
