# mlm_system/events/setup.py
"""
Setup engine event handlers.
Register all event handlers with the event bus.
"""
import logging
from typing import Optional

from mlm_system.events.event_bus import eventBus, MLMEvents
from mlm_system.events.handlers import make_member_registered_handler
from mlm_system.utils.level_cache import LevelStatsCache

logger = logging.getLogger(__name__)

_registered_handler = None


def setup_mlm_event_handlers(cache: Optional[LevelStatsCache] = None):
    """
    Register all engine event handlers with the event bus.

    This function should be called during application startup.
    """
    global _registered_handler

    logger.info("Setting up MLM event handlers...")

    if _registered_handler is not None:
        eventBus.unsubscribe(MLMEvents.MEMBER_REGISTERED, _registered_handler)

    _registered_handler = make_member_registered_handler(cache)
    eventBus.subscribe(MLMEvents.MEMBER_REGISTERED, _registered_handler)
    logger.debug(f"Registered handler for {MLMEvents.MEMBER_REGISTERED}")

    logger.info("MLM event handlers registered successfully")


def teardown_mlm_event_handlers():
    """
    Unregister all engine event handlers.
    Useful for testing or shutdown.
    """
    global _registered_handler

    logger.info("Tearing down MLM event handlers...")

    if _registered_handler is not None:
        eventBus.unsubscribe(MLMEvents.MEMBER_REGISTERED, _registered_handler)
        _registered_handler = None

    logger.info("MLM event handlers unregistered")
