# mlm_system/services/commission_service.py
"""
Commission distribution - splits one package fee across the sponsor chain.

Package fee F = D + 15 × L₁ + C + V:
    D   direct bonus to the direct sponsor, never gated
    L₁  per level 1..15; paid if the ancestor unlocked the level, otherwise
        parked in the hold pool and tracked as a missed level earning;
        levels with no ancestor overflow to the creator
    C   creator fee
    V   development fee, ledger-only

Every entry carries the new member as eventMemberID, so the entries of one
registration always add up to F.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from models.earning import (
    Earning,
    EarningKind,
    DIRECT_BONUS_LEVEL,
    CREATOR_FEE_LEVEL,
    DEVELOPMENT_FEE_LEVEL,
)
from models.member import Member
from models.missed_level_earning import MissedLevelEarning
from mlm_system.config.compensation import CompensationPlan, get_compensation_plan
from mlm_system.errors import InvariantViolation, PostingConflict, StorageFailure, StructuralError
from mlm_system.services.level_unlock import LevelUnlockCalculator
from mlm_system.services.missed_earnings_service import MissedEarningsLedger
from mlm_system.services.team_census import TeamCensus
from mlm_system.utils.chain_walker import SponsorChainWalker
from mlm_system.utils.keyed_lock import KeyedLock, recipientLocks
from mlm_system.utils.ledger_poster import LedgerPoster, Posting
from mlm_system.utils.level_cache import LevelStatsCache

logger = logging.getLogger(__name__)


@dataclass
class PostingFailure:
    """A posting that could not be written after retries."""
    postingKey: str
    kind: str
    level: int
    memberId: Optional[int]
    error: str


@dataclass
class DistributionResult:
    """Outcome of distributing one registration."""
    eventMemberId: int
    chain: List[int] = field(default_factory=list)
    postings: List[Earning] = field(default_factory=list)
    deferred: List[MissedLevelEarning] = field(default_factory=list)
    transfers: List[Earning] = field(default_factory=list)
    conflicts: int = 0
    failures: List[PostingFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures

    @property
    def totalPosted(self) -> Decimal:
        """Sum of entries written by this run (replays write nothing)."""
        return sum((e.amount for e in self.postings), Decimal("0"))

    def amountFor(self, memberId: int) -> Decimal:
        return sum(
            (e.amount for e in self.postings if e.recipientID == memberId),
            Decimal("0")
        )


class CommissionDistributor:
    """Turns one registration into ledger postings."""

    def __init__(
            self,
            session: Session,
            plan: Optional[CompensationPlan] = None,
            cache: Optional[LevelStatsCache] = None,
            locks: Optional[KeyedLock] = None
    ):
        self.session = session
        self.plan = plan or get_compensation_plan()
        self.cache = cache
        self.locks = locks or recipientLocks

        self.walker = SponsorChainWalker(session)
        self.census = TeamCensus(session, self.plan)
        self.unlock = LevelUnlockCalculator(self.plan, self.census)
        self.poster = LedgerPoster(session)
        self.missed = MissedEarningsLedger(session, self.plan, self.locks, self.poster)

    async def distribute(self, newMember: Member) -> DistributionResult:
        """
        Post all commission for a newly registered member.

        Safe to replay: already-posted entries are skipped by their posting key.

        Args:
            newMember: Member that was just registered and placed

        Returns:
            DistributionResult

        Raises:
            StructuralError: Member has no sponsor or no creator is configured
            InvariantViolation: Event entries do not add up to the package fee
        """
        if newMember.sponsorID is None:
            raise StructuralError(f"Member {newMember.memberID} has no sponsor")

        creator = self.walker.get_creator_member()
        if creator is None:
            raise StructuralError("No creator member configured")

        eventId = newMember.memberID
        chain = self.walker.chain(newMember, self.plan.maxLevels)
        result = DistributionResult(eventMemberId=eventId, chain=[m.memberID for m in chain])

        logger.info(
            f"Distributing package of member {eventId}: "
            f"{len(chain)} ancestors, creator {creator.memberID}"
        )

        # ═══ STEP 1: DIRECT BONUS ═══
        await self._post(result, Posting(
            kind=EarningKind.DIRECT_BONUS,
            amount=self.plan.directBonus,
            level=DIRECT_BONUS_LEVEL,
            eventMemberId=eventId,
            recipientId=chain[0].memberID,
            fromMemberId=eventId,
        ))

        # One census per ancestor, shared by the level loop and reconciliation
        unlockedByMember = {
            ancestor.memberID: self.unlock.unlockedLevelsFor(ancestor)
            for ancestor in chain
        }

        # ═══ STEP 2: LEVEL INCOME ═══
        for level in range(1, self.plan.maxLevels + 1):
            if level <= len(chain):
                ancestor = chain[level - 1]
                await self._distributeLevel(
                    result, ancestor, level, newMember, unlockedByMember[ancestor.memberID]
                )
            else:
                await self._post(result, Posting(
                    kind=EarningKind.LEVEL_OVERFLOW,
                    amount=self.plan.levelIncome,
                    level=level,
                    eventMemberId=eventId,
                    recipientId=creator.memberID,
                    fromMemberId=eventId,
                    notes="No ancestor at this level",
                ))

        # ═══ STEP 3: PLATFORM FEES ═══
        await self._post(result, Posting(
            kind=EarningKind.CREATOR_FEE,
            amount=self.plan.creatorFee,
            level=CREATOR_FEE_LEVEL,
            eventMemberId=eventId,
            recipientId=creator.memberID,
            fromMemberId=eventId,
        ))
        await self._post(result, Posting(
            kind=EarningKind.DEVELOPMENT_FEE,
            amount=self.plan.developmentFee,
            level=DEVELOPMENT_FEE_LEVEL,
            eventMemberId=eventId,
            fromMemberId=eventId,
        ))

        # ═══ STEP 4: RECONCILE THE CHAIN ═══
        for ancestor in chain:
            try:
                transfers = await self.missed.reconcileMember(
                    ancestor,
                    eventMemberId=eventId,
                    unlocked=unlockedByMember[ancestor.memberID]
                )
            except StorageFailure as e:
                logger.error(f"Reconciliation failed for member {ancestor.memberID}: {e}", exc_info=True)
                result.failures.append(PostingFailure(
                    postingKey=e.postingKey or "",
                    kind=EarningKind.DEFERRED_TRANSFER,
                    level=0,
                    memberId=ancestor.memberID,
                    error=str(e),
                ))
                continue
            result.transfers.extend(transfers)
            for transfer in transfers:
                result.postings.append(transfer)
                release = self.missed.releaseFor(transfer)
                if release is not None:
                    result.postings.append(release)

        # ═══ STEP 5: CACHES ═══
        if self.cache is not None:
            for ancestor in chain:
                self.cache.invalidate(ancestor.memberID)
            self.cache.invalidate(creator.memberID)

        # ═══ STEP 6: SPLIT AUDIT ═══
        if result.failures:
            logger.error(
                f"Distribution of member {eventId} incomplete: "
                f"{len(result.failures)} failed postings, replay to heal"
            )
        else:
            await self._auditEvent(eventId)

        logger.info(
            f"Distributed member {eventId}: {len(result.postings)} entries, "
            f"{len(result.deferred)} deferred, {len(result.transfers)} transfers, "
            f"{result.conflicts} already posted, total {result.totalPosted}"
        )
        return result

    async def _distributeLevel(
            self,
            result: DistributionResult,
            ancestor: Member,
            level: int,
            newMember: Member,
            unlocked: int
    ) -> None:
        """Pay or defer one level share for one ancestor."""
        eventId = newMember.memberID
        income = Posting(
            kind=EarningKind.LEVEL_INCOME,
            amount=self.plan.levelIncome,
            level=level,
            eventMemberId=eventId,
            recipientId=ancestor.memberID,
            fromMemberId=eventId,
        )
        hold = Posting(
            kind=EarningKind.DEFERRED_HOLD,
            amount=self.plan.levelIncome,
            level=level,
            eventMemberId=eventId,
            beneficiaryId=ancestor.memberID,
            fromMemberId=eventId,
        )

        # A replay must repeat the original decision, even if the level unlocked since
        if self.poster.exists(income.postingKey) or self.poster.exists(hold.postingKey):
            result.conflicts += 1
            return

        if level <= unlocked:
            if self.missed.countsUnheldShare(ancestor, level, newMember):
                # Share already owed through the missed record, only the pool is short
                logger.warning(
                    f"Level {level} share of member {eventId} already counted for "
                    f"member {ancestor.memberID}, holding instead of paying"
                )
                await self._post(result, hold)
                return

            await self._post(result, income)
            return

        # Locked: running total to the missed ledger, this share to the hold pool
        membersAtLevel = self.census.countAtLevel(ancestor, level)
        try:
            record, earning = await self.missed.deferShare(
                ancestor,
                level,
                self.plan.levelIncome * membersAtLevel,
                actualMembers=membersAtLevel,
                hold=hold
            )
        except PostingConflict:
            result.conflicts += 1
            logger.debug(f"Already posted: {hold.postingKey}")
            return
        except StorageFailure as e:
            logger.error(f"Deferring {hold.postingKey} failed: {e}", exc_info=True)
            result.failures.append(PostingFailure(
                postingKey=hold.postingKey,
                kind=EarningKind.DEFERRED_HOLD,
                level=level,
                memberId=ancestor.memberID,
                error=str(e),
            ))
            return
        except InvariantViolation as e:
            logger.error(f"Cannot defer level {level} for member {ancestor.memberID}: {e}", exc_info=True)
            result.failures.append(PostingFailure(
                postingKey=f"missed:{ancestor.memberID}:{level}",
                kind=EarningKind.DEFERRED_HOLD,
                level=level,
                memberId=ancestor.memberID,
                error=str(e),
            ))
            # Pool keeps the share while the member is on audit hold
            await self._post(result, hold)
            return

        result.deferred.append(record)
        result.postings.append(earning)

    async def _post(self, result: DistributionResult, posting: Posting) -> Optional[Earning]:
        """Write one posting; conflicts count as done, failures are recorded."""
        try:
            earning = self.poster.post(posting)
        except PostingConflict:
            result.conflicts += 1
            logger.debug(f"Already posted: {posting.postingKey}")
            return None
        except StorageFailure as e:
            logger.error(f"Posting {posting.postingKey} failed: {e}", exc_info=True)
            result.failures.append(PostingFailure(
                postingKey=posting.postingKey,
                kind=posting.kind,
                level=posting.level,
                memberId=posting.ownerId,
                error=str(e),
            ))
            return None

        result.postings.append(earning)
        return earning

    async def _auditEvent(self, eventId: int) -> None:
        """
        Check that the event's entries add up to the package fee.

        Raises:
            InvariantViolation: On mismatch; affected recipients go on audit hold
        """
        total = self.eventTotal(eventId)
        if total == self.plan.packageFee:
            return

        memberIds = sorted({
            row[0] for row in self.session.query(
                func.coalesce(Earning.recipientID, Earning.beneficiaryID)
            ).filter(Earning.eventMemberID == eventId).all()
            if row[0] is not None
        })

        for member in self.session.query(Member).filter(Member.memberID.in_(memberIds)).all():
            member.auditHold = True
        self.session.flush()

        message = (
            f"Split invariant broken for member {eventId}: "
            f"entries total {total}, package fee {self.plan.packageFee}"
        )
        logger.critical(f"{message}; audit hold on {memberIds}")
        raise InvariantViolation(message, memberIds)

    def eventTotal(self, eventId: int) -> Decimal:
        """Sum of all ledger entries caused by one registration."""
        total = self.session.query(func.sum(Earning.amount)).filter(
            Earning.eventMemberID == eventId
        ).scalar()
        return Decimal(str(total or 0)).quantize(Decimal("0.01"))

    def eventBreakdown(self, eventId: int) -> Dict[str, Decimal]:
        """Per-kind totals for one registration."""
        rows = self.session.query(Earning.kind, func.sum(Earning.amount)).filter(
            Earning.eventMemberID == eventId
        ).group_by(Earning.kind).all()
        return {kind: Decimal(str(amount or 0)).quantize(Decimal("0.01")) for kind, amount in rows}
