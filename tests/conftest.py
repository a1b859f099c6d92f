# tests/conftest.py
"""
Pytest configuration and shared fixtures for the compensation engine tests.

Every test gets a fresh in-memory SQLite database with the creator seeded.

Run:
    pytest tests -v
"""
from decimal import Decimal
from typing import Dict, Optional

import pytest
from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from config import Config
from core.db import create_db_engine
from models import Base, Member, Earning, EarningStatus
from models.listeners import register_all_listeners
from mlm_system.services.registration_service import RegistrationService, RegistrationResult
from mlm_system.utils.level_cache import LevelStatsCache


# =============================================================================
# CONFIG
# =============================================================================

@pytest.fixture(autouse=True)
def default_config():
    """Default $20 plan for every test; tests may override with Config.set()."""
    Config.reset()
    yield
    Config.reset()


@pytest.fixture(scope="session", autouse=True)
def setup_listeners():
    """Register listeners once at test session start."""
    register_all_listeners()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create database session for each test."""
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


# =============================================================================
# MEMBER FIXTURES
# =============================================================================

@pytest.fixture
def creator(session):
    """Creator/root member (always fully unlocked, receives the creator fee)."""
    return RegistrationService(session).ensureCreator()


@pytest.fixture
def cache():
    return LevelStatsCache(ttlSeconds=300)


class Registrar:
    """Registers members through the full placement + distribution path."""

    def __init__(self, session, cache):
        self.session = session
        self.cache = cache
        self.results: Dict[str, RegistrationResult] = {}

    async def __call__(self, username: str, sponsor=None, paid=None) -> Member:
        service = RegistrationService(self.session, cache=self.cache)
        result = await service.registerMember(username, sponsor, paid)
        self.results[username] = result
        return self.session.get(Member, result.memberId)

    def result(self, username: str) -> RegistrationResult:
        return self.results[username]

    def distribution(self, username: str):
        return self.results[username].distribution


@pytest.fixture
def register(session, creator, cache):
    """
    Async helper: member = await register("alice", sponsor).

    sponsor may be a Member, an id, a username or a referral code;
    None falls back to the creator.
    """
    return Registrar(session, cache)


# =============================================================================
# HELPER FIXTURES
# =============================================================================

@pytest.fixture
def journal_sum(session):
    """
    Calculator for real ledger sums.

    Returns dict with:
        'event'     - Σ amount of every entry caused by one registration
        'recipient' - Σ confirmed amount credited to one member
        'level'     - Σ confirmed amount credited to one member for one level
    """

    def _money(value) -> Decimal:
        return Decimal(str(value or 0)).quantize(Decimal("0.01"))

    def _calc_event(event_member_id: int) -> Decimal:
        result = session.query(func.sum(Earning.amount)).filter(
            Earning.eventMemberID == event_member_id
        ).scalar()
        return _money(result)

    def _calc_recipient(member_id: int) -> Decimal:
        result = session.query(func.sum(Earning.amount)).filter(
            Earning.recipientID == member_id,
            Earning.status == EarningStatus.CONFIRMED
        ).scalar()
        return _money(result)

    def _calc_level(member_id: int, level: int, kinds: Optional[tuple] = None) -> Decimal:
        query = session.query(func.sum(Earning.amount)).filter(
            Earning.recipientID == member_id,
            Earning.level == level,
            Earning.status == EarningStatus.CONFIRMED
        )
        if kinds:
            query = query.filter(Earning.kind.in_(kinds))
        return _money(query.scalar())

    return {'event': _calc_event, 'recipient': _calc_recipient, 'level': _calc_level}
