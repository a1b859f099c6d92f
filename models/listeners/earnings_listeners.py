# models/listeners/earnings_listeners.py
"""
Earnings Event Listeners - keep Member.totalEarnings equal to the ledger.

Architecture:
    Earning (INSERT/UPDATE) → Member.totalEarnings = SUM(confirmed earnings)

Full recalculation on every change, never an increment, so a drifted counter
heals on the next posting for that member. Ledger-only entries (no recipient)
are skipped.

NOTE: EarningsAggregator.auditMember() is the out-of-band check for the same
      invariant (rows written outside the ORM do not fire these listeners).
"""
import logging

from sqlalchemy import event, func, select

logger = logging.getLogger(__name__)


def register_earnings_listeners():
    """
    Register event listeners for earnings synchronization.

    Called once during application startup from models/listeners/__init__.py
    """
    from models.earning import Earning, EarningStatus
    from models.member import Member

    earnings = Earning.__table__.c

    def recalc_total_earnings(mapper, connection, target):
        """
        Full recalculation of Member.totalEarnings from the ledger.

        Formula: Member.totalEarnings = SUM(Earning.amount)
                                        WHERE recipientID=X AND status='confirmed'
        """
        if target.recipientID is None:
            return

        result = connection.execute(
            select(func.coalesce(func.sum(earnings.amount), 0))
            .where(earnings.recipientID == target.recipientID)
            .where(earnings.status == EarningStatus.CONFIRMED)
        )
        real_total = result.scalar()

        # Overwrite (NOT increment!)
        connection.execute(
            Member.__table__.update()
            .where(Member.__table__.c.memberID == target.recipientID)
            .values(totalEarnings=real_total)
        )

        logger.debug(
            f"Earnings RECALC: member={target.recipientID}, "
            f"total={real_total}, trigger={target.postingKey}"
        )

    event.listen(Earning, 'after_insert', recalc_total_earnings)
    event.listen(Earning, 'after_update', recalc_total_earnings)


# =========================================================================
# SAFETY: Ledger rows are append-only
# =========================================================================

def register_ledger_protection():
    """
    Log an error when a posted Earning amount is modified.

    Amounts are immutable once posted; corrections must be new rows.
    """
    from models.earning import Earning

    @event.listens_for(Earning.amount, 'set')
    def warn_amount_rewrite(target, value, oldvalue, initiator):
        """Warn when a persisted posting amount is overwritten."""
        if target.earningID is not None and oldvalue is not None and value != oldvalue:
            logger.error(
                f"Ledger entry {target.earningID} ({target.postingKey}) amount rewritten: "
                f"{oldvalue} → {value}. Postings are append-only."
            )
