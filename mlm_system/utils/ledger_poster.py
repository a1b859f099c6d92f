# mlm_system/utils/ledger_poster.py
"""
Single-posting writer for the earnings ledger.

Every posting runs in its own SAVEPOINT so one failure never rolls back
the rest of the distribution. The unique postingKey turns a replayed
posting into PostingConflict; other storage errors become StorageFailure
and are retried for that posting only.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from config import Config
from models.earning import Earning, EarningStatus, make_posting_key
from mlm_system.errors import PostingConflict, StorageFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Posting:
    """One ledger entry to be written."""
    kind: str
    amount: Decimal
    level: int
    eventMemberId: int
    recipientId: Optional[int] = None
    beneficiaryId: Optional[int] = None
    fromMemberId: Optional[int] = None
    notes: Optional[str] = None

    @property
    def ownerId(self) -> Optional[int]:
        return self.recipientId if self.recipientId is not None else self.beneficiaryId

    @property
    def postingKey(self) -> str:
        return make_posting_key(self.kind, self.ownerId, self.fromMemberId, self.level)


class LedgerPoster:
    """Writes postings with savepoint isolation and bounded retry."""

    def __init__(self, session: Session, retryAttempts: Optional[int] = None):
        self.session = session
        if retryAttempts is None:
            retryAttempts = Config.get(Config.POSTING_RETRY_ATTEMPTS, 3)
        self.retryAttempts = max(1, int(retryAttempts))

    def post(self, posting: Posting) -> Earning:
        """
        Write a posting, retrying transient failures.

        Args:
            posting: Entry to write

        Returns:
            Persisted Earning

        Raises:
            PostingConflict: Entry with the same key already exists
            StorageFailure: Still failing after all attempts
        """
        lastError = None

        for attempt in range(1, self.retryAttempts + 1):
            try:
                return self._insert(posting)
            except StorageFailure as e:
                lastError = e
                logger.warning(
                    f"Posting {posting.postingKey} failed "
                    f"(attempt {attempt}/{self.retryAttempts}): {e}"
                )

        raise lastError

    def _insert(self, posting: Posting) -> Earning:
        key = posting.postingKey
        earning = Earning(
            recipientID=posting.recipientId,
            beneficiaryID=posting.beneficiaryId,
            fromMemberID=posting.fromMemberId,
            eventMemberID=posting.eventMemberId,
            level=posting.level,
            amount=posting.amount,
            kind=posting.kind,
            status=EarningStatus.CONFIRMED,
            postingKey=key,
            notes=posting.notes,
        )

        try:
            with self.session.begin_nested():
                self.session.add(earning)
                self.session.flush()
        except IntegrityError as e:
            if self.exists(key):
                raise PostingConflict(key) from None
            raise StorageFailure(f"Integrity error on {key}: {e.orig}", key) from e
        except SQLAlchemyError as e:
            raise StorageFailure(f"Storage error on {key}: {e}", key) from e

        logger.debug(f"Posted {key} amount={posting.amount}")
        return earning

    def exists(self, postingKey: str) -> bool:
        return self.session.query(Earning.earningID).filter_by(
            postingKey=postingKey
        ).first() is not None

    def find(self, postingKey: str) -> Optional[Earning]:
        return self.session.query(Earning).filter_by(postingKey=postingKey).first()
