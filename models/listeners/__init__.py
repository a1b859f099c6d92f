"""
SQLAlchemy listeners for the ledger.

    - earnings_listeners: Member.totalEarnings follows confirmed Earning rows,
      posted amounts are append-only

Activate once at startup (engine.py, tests/conftest.py).
"""
import logging

logger = logging.getLogger(__name__)

_listeners_registered = False


def register_all_listeners():
    """
    Attach the ledger listeners to the mappers.

    Repeated calls are no-ops, SQLAlchemy would otherwise fire each handler
    once per registration.
    """
    global _listeners_registered

    if _listeners_registered:
        logger.debug("Ledger listeners already attached")
        return

    from models.listeners.earnings_listeners import (
        register_earnings_listeners,
        register_ledger_protection
    )

    register_earnings_listeners()
    logger.info("Earnings sync listeners registered (Earning → Member.totalEarnings)")

    register_ledger_protection()
    logger.info("Ledger protection listeners registered (append-only amounts)")

    _listeners_registered = True
