# tests/test_ledger_poster.py
"""
Tests for LedgerPoster - posting keys, duplicate guard, retry.
"""
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from config import Config
from models import Earning, EarningKind
from mlm_system.errors import PostingConflict, StorageFailure
from mlm_system.utils.ledger_poster import LedgerPoster, Posting


def income(creator, level=3, fromId=None):
    return Posting(
        kind=EarningKind.LEVEL_INCOME,
        amount=Decimal("1"),
        level=level,
        eventMemberId=creator.memberID,
        recipientId=creator.memberID,
        fromMemberId=fromId or creator.memberID,
    )


class TestPosting:

    def test_key_uses_recipient(self, creator):
        posting = income(creator, level=3)
        assert posting.postingKey == f"level-income:{creator.memberID}:{creator.memberID}:3"

    def test_key_falls_back_to_beneficiary(self):
        hold = Posting(
            kind=EarningKind.DEFERRED_HOLD,
            amount=Decimal("1"),
            level=2,
            eventMemberId=7,
            beneficiaryId=5,
            fromMemberId=7,
        )
        assert hold.ownerId == 5
        assert hold.postingKey == "deferred-hold:5:7:2"

    def test_key_without_parties(self):
        fee = Posting(kind=EarningKind.DEVELOPMENT_FEE, amount=Decimal("1"), level=-2, eventMemberId=7)
        assert fee.postingKey == "development-fee:-:-:-2"


class TestLedgerPoster:

    def test_post_and_find(self, session, creator):
        poster = LedgerPoster(session)
        posting = income(creator)

        earning = poster.post(posting)

        assert earning.earningID is not None
        assert poster.exists(posting.postingKey)
        assert poster.find(posting.postingKey).earningID == earning.earningID

    def test_duplicate_is_conflict(self, session, creator):
        poster = LedgerPoster(session)
        poster.post(income(creator))

        with pytest.raises(PostingConflict) as error:
            poster.post(income(creator))

        assert error.value.postingKey == income(creator).postingKey
        assert session.query(Earning).count() == 1

    def test_conflict_keeps_earlier_postings(self, session, creator):
        poster = LedgerPoster(session)
        poster.post(income(creator, level=1))

        with pytest.raises(PostingConflict):
            poster.post(income(creator, level=1))
        poster.post(income(creator, level=2))

        assert session.query(Earning).count() == 2

    def test_retry_exhausted(self, session, creator, monkeypatch):
        calls = []

        def failing_flush(*args, **kwargs):
            calls.append(1)
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        poster = LedgerPoster(session, retryAttempts=3)
        monkeypatch.setattr(session, "flush", failing_flush)

        with pytest.raises(StorageFailure) as error:
            poster.post(income(creator))

        assert len(calls) == 3
        assert error.value.postingKey == income(creator).postingKey

    def test_retry_attempts_from_config(self, session):
        Config.set(Config.POSTING_RETRY_ATTEMPTS, 5)

        assert LedgerPoster(session).retryAttempts == 5
        assert LedgerPoster(session, retryAttempts=0).retryAttempts == 1
