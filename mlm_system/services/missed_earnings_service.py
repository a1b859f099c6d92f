# mlm_system/services/missed_earnings_service.py
"""
Missed level earnings - commission owed on levels the member has not unlocked.

One record per (member, level). While pending, amount is the absolute total
the member would have earned at that level (census × level income) and is
overwritten on every update. Once the level unlocks the amount moves to the
ledger as one deferred-transfer, paired with a deferred-release that empties
the hold pool, and the record is closed for good.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from models.earning import Earning, EarningKind, make_posting_key
from models.member import Member
from models.missed_level_earning import MissedLevelEarning, MissedStatus
from mlm_system.config.compensation import CompensationPlan, get_compensation_plan
from mlm_system.errors import InvariantViolation, PostingConflict, StorageFailure
from mlm_system.services.level_unlock import LevelUnlockCalculator
from mlm_system.services.team_census import TeamCensus
from mlm_system.utils.keyed_lock import KeyedLock, recipientLocks
from mlm_system.utils.ledger_poster import LedgerPoster, Posting

logger = logging.getLogger(__name__)


class MissedEarningsLedger:
    """Deferred commission per (member, level) and its reconciliation."""

    def __init__(
            self,
            session: Session,
            plan: Optional[CompensationPlan] = None,
            locks: Optional[KeyedLock] = None,
            poster: Optional[LedgerPoster] = None
    ):
        self.session = session
        self.plan = plan or get_compensation_plan()
        self.locks = locks or recipientLocks
        self.poster = poster or LedgerPoster(session)
        self.census = TeamCensus(session, self.plan)
        self.unlock = LevelUnlockCalculator(self.plan, self.census)

    def _record(self, memberId: int, level: int) -> Optional[MissedLevelEarning]:
        return self.session.query(MissedLevelEarning).filter_by(
            memberID=memberId,
            level=level
        ).first()

    @staticmethod
    def _lockKey(memberId: int, level: int):
        # Shared by setLocked and reconcile
        return ("missed", memberId, level)

    # ============================================================
    # RECORDING
    # ============================================================

    async def setLocked(
            self,
            recipient: Member,
            level: int,
            amount: Decimal,
            actualMembers: Optional[int] = None
    ) -> MissedLevelEarning:
        """
        Create or overwrite the pending record for (recipient, level).

        Args:
            recipient: Member whose level is locked
            level: Locked level
            amount: Absolute total owed at that level (not a delta)
            actualMembers: Census count behind the amount

        Returns:
            The pending MissedLevelEarning

        Raises:
            InvariantViolation: Record was already transferred (level re-locked)
        """
        record, _ = await self.deferShare(recipient, level, amount, actualMembers)
        return record

    async def deferShare(
            self,
            recipient: Member,
            level: int,
            amount: Decimal,
            actualMembers: Optional[int] = None,
            hold: Optional[Posting] = None
    ) -> Tuple[MissedLevelEarning, Optional[Earning]]:
        """
        Set the pending amount and park one share in the hold pool, atomically.

        The record update and the deferred-hold posting share one savepoint:
        both land or neither does.

        Args:
            recipient: Member whose level is locked
            level: Locked level
            amount: Absolute total owed at that level
            actualMembers: Census count behind the amount
            hold: deferred-hold posting for the triggering registration

        Returns:
            (pending record, hold entry or None)

        Raises:
            InvariantViolation: Record was already transferred (level re-locked)
            PostingConflict: Hold already posted; nothing was written
            StorageFailure: Hold could not be written; nothing was written
        """
        async with self.locks.hold(self._lockKey(recipient.memberID, level)):
            expected = self.plan.expectedMembersAtLevel(level)
            if actualMembers is None:
                actualMembers = self.census.countAtLevel(recipient, level)

            try:
                with self.session.begin_nested():
                    record = self._writePending(recipient.memberID, level, amount, expected, actualMembers)
                    earning = self.poster.post(hold) if hold is not None else None
            except InvariantViolation:
                await self._holdForAudit(recipient)
                raise

            logger.debug(
                f"Missed level earning set: member={recipient.memberID}, "
                f"level={level}, amount={amount} ({actualMembers}/{expected})"
            )
            return record, earning

    def _writePending(
            self,
            memberId: int,
            level: int,
            amount: Decimal,
            expected: int,
            actualMembers: int
    ) -> MissedLevelEarning:
        """Upsert guarded by status: a transferred record is never rewritten."""
        record = self._record(memberId, level)
        if record is None:
            try:
                with self.session.begin_nested():
                    self.session.add(MissedLevelEarning(
                        memberID=memberId,
                        level=level,
                        amount=Decimal("0"),
                        status=MissedStatus.PENDING,
                    ))
                    self.session.flush()
            except IntegrityError:
                # Inserted concurrently, the guarded update below decides
                logger.debug(f"Missed record ({memberId}, {level}) created concurrently")
        elif record.isPending and amount < record.amount:
            logger.warning(
                f"Missed amount for member {memberId} level {level} "
                f"decreases {record.amount} → {amount}"
            )

        updated = self.session.query(MissedLevelEarning).filter(
            MissedLevelEarning.memberID == memberId,
            MissedLevelEarning.level == level,
            MissedLevelEarning.status == MissedStatus.PENDING
        ).update(
            {
                "amount": amount,
                "expectedMembers": expected,
                "actualMembers": actualMembers,
                "levelCompletionPercentage": round(actualMembers / expected * 100, 2) if expected else 0.0,
                "countedAt": datetime.now(timezone.utc).replace(tzinfo=None),
            },
            synchronize_session=False
        )

        if not updated:
            raise InvariantViolation(
                f"Level {level} of member {memberId} locked again after transfer",
                [memberId]
            )

        record = self._record(memberId, level)
        self.session.refresh(record)
        return record

    def countsUnheldShare(self, member: Member, level: int, contributor: Member) -> bool:
        """
        True if the record for (member, level) already owes the contributor's share.

        A registration whose hold never landed can still be counted by a
        later census update. That happened when the record counts more
        members than were held and the contributor registered before the
        last census update.
        """
        record = self._record(member.memberID, level)
        if record is None or record.countedAt is None:
            return False

        if contributor.registeredAt is None or contributor.registeredAt > record.countedAt:
            return False

        held = self.session.query(func.count(Earning.earningID)).filter(
            Earning.kind == EarningKind.DEFERRED_HOLD,
            Earning.beneficiaryID == member.memberID,
            Earning.level == level
        ).scalar() or 0
        return (record.actualMembers or 0) > held

    async def _holdForAudit(self, member: Member) -> None:
        if not member.auditHold:
            member.auditHold = True
            self.session.flush()
            logger.critical(f"Member {member.memberID} put on audit hold")

    # ============================================================
    # RECONCILIATION
    # ============================================================

    async def reconcile(
            self,
            recipient: Member,
            level: int,
            eventMemberId: Optional[int] = None
    ) -> Optional[Earning]:
        """
        Transfer the pending record for (recipient, level) to the ledger.

        Posts deferred-transfer (+amount) to the recipient and a
        deferred-release (-amount) from the hold pool, then closes the
        record. Runs under a per-(recipient, level) lock and flips status
        with a compare-and-swap, so concurrent callers transfer once.

        Args:
            recipient: Member owed the amount
            level: Level to reconcile
            eventMemberId: Registration that triggered this (recipient itself for sweeps)

        Returns:
            The deferred-transfer Earning, or None if nothing was pending

        Raises:
            StorageFailure: Transfer could not be written
        """
        if recipient.auditHold:
            logger.warning(f"Member {recipient.memberID} is on audit hold, reconciliation skipped")
            return None

        if eventMemberId is None:
            eventMemberId = recipient.memberID

        async with self.locks.hold(self._lockKey(recipient.memberID, level)):
            record = self._record(recipient.memberID, level)
            if record is None or not record.isPending:
                return None

            amount = record.amount
            transfer = None

            with self.session.begin_nested():
                # ═══ STEP 1: CLAIM THE RECORD ═══
                claimed = self.session.query(MissedLevelEarning).filter(
                    MissedLevelEarning.missedID == record.missedID,
                    MissedLevelEarning.status == MissedStatus.PENDING
                ).update(
                    {
                        "status": MissedStatus.TRANSFERRED,
                        "amount": Decimal("0"),
                        "transferredAt": datetime.now(timezone.utc).replace(tzinfo=None),
                    },
                    synchronize_session=False
                )

                if claimed:
                    # ═══ STEP 2: MOVE MONEY FROM POOL TO MEMBER ═══
                    transfer = self._postOnce(Posting(
                        kind=EarningKind.DEFERRED_TRANSFER,
                        amount=amount,
                        level=level,
                        eventMemberId=eventMemberId,
                        recipientId=recipient.memberID,
                        notes=f"Level {level} unlocked",
                    ))
                    self._postOnce(Posting(
                        kind=EarningKind.DEFERRED_RELEASE,
                        amount=-amount,
                        level=level,
                        eventMemberId=eventMemberId,
                        beneficiaryId=recipient.memberID,
                        notes=f"Released to member {recipient.memberID}",
                    ))

                    # ═══ STEP 3: LINK RECORD TO TRANSFER ═══
                    self.session.query(MissedLevelEarning).filter(
                        MissedLevelEarning.missedID == record.missedID
                    ).update(
                        {"transferredEarningID": transfer.earningID},
                        synchronize_session=False
                    )

            self.session.expire(record)

            if transfer is not None:
                logger.info(
                    f"Missed earning transferred: member={recipient.memberID}, "
                    f"level={level}, amount={amount}"
                )
            return transfer

    def _postOnce(self, posting: Posting) -> Earning:
        try:
            return self.poster.post(posting)
        except PostingConflict:
            logger.warning(f"{posting.postingKey} already posted, linking existing entry")
            return self.poster.find(posting.postingKey)

    def releaseFor(self, transfer: Earning) -> Optional[Earning]:
        """deferred-release entry paired with a deferred-transfer."""
        return self.poster.find(make_posting_key(
            EarningKind.DEFERRED_RELEASE,
            transfer.recipientID,
            None,
            transfer.level
        ))

    async def reconcileMember(
            self,
            member: Member,
            eventMemberId: Optional[int] = None,
            unlocked: Optional[int] = None
    ) -> List[Earning]:
        """
        Reconcile every pending level the member has unlocked by now.

        Also refreshes the cached Member.unlockedLevels (never lowered).

        Args:
            member: Member to reconcile
            eventMemberId: Triggering registration, if any
            unlocked: Unlocked levels if the caller already computed them

        Returns:
            deferred-transfer entries posted
        """
        if member.auditHold:
            logger.warning(f"Member {member.memberID} is on audit hold, reconciliation skipped")
            return []

        if unlocked is None:
            unlocked = self.unlock.unlockedLevelsFor(member)
        if unlocked > (member.unlockedLevels or 0):
            logger.info(
                f"Member {member.memberID} unlocked levels: "
                f"{member.unlockedLevels} → {unlocked}"
            )
            member.unlockedLevels = unlocked
            self.session.flush()

        pending = self.session.query(MissedLevelEarning).filter(
            MissedLevelEarning.memberID == member.memberID,
            MissedLevelEarning.status == MissedStatus.PENDING,
            MissedLevelEarning.level <= unlocked
        ).order_by(MissedLevelEarning.level).all()

        transfers = []
        for record in pending:
            transfer = await self.reconcile(member, record.level, eventMemberId)
            if transfer is not None:
                transfers.append(transfer)

        return transfers

    async def sweep(self) -> Dict:
        """
        Reconcile all members with pending records.

        Heals transfers missed by a failed or interrupted distribution.

        Returns:
            Dict with membersChecked, transfers, totalTransferred, errors
        """
        memberIds = [
            row[0] for row in self.session.query(MissedLevelEarning.memberID).filter(
                MissedLevelEarning.status == MissedStatus.PENDING
            ).distinct().order_by(MissedLevelEarning.memberID).all()
        ]

        stats = {
            "membersChecked": 0,
            "transfers": 0,
            "totalTransferred": Decimal("0"),
            "errors": 0,
        }

        for memberId in memberIds:
            member = self.session.get(Member, memberId)
            if member is None:
                logger.error(f"Missed earnings reference unknown member {memberId}")
                stats["errors"] += 1
                continue

            stats["membersChecked"] += 1
            try:
                transfers = await self.reconcileMember(member)
            except StorageFailure as e:
                logger.error(f"Sweep failed for member {memberId}: {e}", exc_info=True)
                stats["errors"] += 1
                continue

            stats["transfers"] += len(transfers)
            stats["totalTransferred"] += sum((t.amount for t in transfers), Decimal("0"))

        logger.info(
            f"Missed earnings sweep: {stats['membersChecked']} members, "
            f"{stats['transfers']} transfers, {stats['totalTransferred']} total"
        )
        return stats

    # ============================================================
    # QUERIES
    # ============================================================

    def pendingTotal(self, member: Member) -> Decimal:
        total = self.session.query(func.sum(MissedLevelEarning.amount)).filter(
            MissedLevelEarning.memberID == member.memberID,
            MissedLevelEarning.status == MissedStatus.PENDING
        ).scalar()
        return Decimal(str(total or 0)).quantize(Decimal("0.01"))

    def pendingByLevel(self, member: Member) -> Dict[int, Decimal]:
        """Pending amount per level, only levels with a pending record."""
        records = self.session.query(MissedLevelEarning).filter(
            MissedLevelEarning.memberID == member.memberID,
            MissedLevelEarning.status == MissedStatus.PENDING
        ).order_by(MissedLevelEarning.level).all()

        return {record.level: record.amount for record in records}
