# mlm_system/events/event_bus.py
"""
In-process async event bus.

Handlers are awaited in subscription order. A failing handler is logged and
does not stop the others.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


class MLMEvents:
    """Event names."""
    MEMBER_REGISTERED = "member.registered"
    MISSED_EARNINGS_SWEPT = "missed_earnings.swept"


class EventBus:
    """Publish/subscribe for engine events."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, eventName: str, handler: Handler) -> None:
        handlers = self._handlers.setdefault(eventName, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, eventName: str, handler: Handler) -> None:
        handlers = self._handlers.get(eventName, [])
        if handler in handlers:
            handlers.remove(handler)

    def handlers(self, eventName: str) -> List[Handler]:
        return list(self._handlers.get(eventName, []))

    async def emit(self, eventName: str, data: Dict[str, Any]) -> int:
        """
        Call every handler of an event.

        Args:
            eventName: MLMEvents value
            data: Event payload

        Returns:
            Number of handlers that completed without error
        """
        handlers = self.handlers(eventName)
        if not handlers:
            logger.debug(f"No handlers for {eventName}")
            return 0

        completed = 0
        for handler in handlers:
            try:
                await handler(data)
                completed += 1
            except Exception as e:
                logger.error(
                    f"Handler {getattr(handler, '__name__', handler)} failed for {eventName}: {e}",
                    exc_info=True
                )

        return completed

    def clear(self) -> None:
        self._handlers.clear()


eventBus = EventBus()
