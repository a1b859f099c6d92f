# mlm_system/services/earnings_aggregator.py
"""
Earnings aggregation - the ledger is the source of truth for Member.totalEarnings.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from models.earning import Earning, EarningStatus
from models.member import Member

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass
class EarningsAudit:
    """Cached vs ledger total for one member."""
    memberId: int
    cachedTotal: Decimal
    ledgerTotal: Decimal
    corrected: bool

    @property
    def difference(self) -> Decimal:
        return self.ledgerTotal - self.cachedTotal


class EarningsAggregator:
    """Recomputes member earnings from confirmed ledger entries."""

    def __init__(self, session: Session):
        self.session = session

    def totalEarnings(self, member: Member) -> Decimal:
        """Σ confirmed entries where the member is the recipient."""
        total = self.session.query(func.sum(Earning.amount)).filter(
            Earning.recipientID == member.memberID,
            Earning.status == EarningStatus.CONFIRMED
        ).scalar()
        return Decimal(str(total or 0)).quantize(CENT)

    async def auditMember(self, member: Member) -> EarningsAudit:
        """
        Compare cached totalEarnings with the ledger and fix the cache.

        Args:
            member: Member to audit

        Returns:
            EarningsAudit with corrected=True if the cache was wrong
        """
        # Listener writes go around the ORM, reload the cached column first
        self.session.flush()
        self.session.refresh(member, ["totalEarnings"])

        cached = Decimal(str(member.totalEarnings or 0)).quantize(CENT)
        ledger = self.totalEarnings(member)

        audit = EarningsAudit(
            memberId=member.memberID,
            cachedTotal=cached,
            ledgerTotal=ledger,
            corrected=False,
        )

        if cached != ledger:
            logger.warning(
                f"Earnings drift for member {member.memberID}: "
                f"cached {cached}, ledger {ledger}, correcting"
            )
            member.totalEarnings = ledger
            self.session.flush()
            audit.corrected = True

        return audit

    async def auditAll(self) -> List[EarningsAudit]:
        """
        Audit every member.

        Returns:
            Audits of members whose cache was corrected
        """
        corrections = []
        members = self.session.query(Member).order_by(Member.memberID).all()

        for member in members:
            audit = await self.auditMember(member)
            if audit.corrected:
                corrections.append(audit)

        if corrections:
            logger.warning(f"Earnings audit corrected {len(corrections)} of {len(members)} members")
        else:
            logger.info(f"Earnings audit: {len(members)} members consistent")

        return corrections
