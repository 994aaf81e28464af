"""Event bus for skin load observability."""

import logging
from collections import defaultdict
from threading import Lock
from typing import Callable, Optional

from .event import Event


logger = logging.getLogger(__name__)


# Type alias for event handlers
EventHandler = Callable[[Event], None]


class EventBus:
    """Synchronous pub/sub bus for skin load events.

    Handlers run on the emitting thread, in subscription order. Nothing is
    buffered: an event with no matching handler is dropped.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._global_handlers: list[EventHandler] = []
        self._lock = Lock()
        self._enabled = True

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe a handler to an event type.

        Args:
            event_type: Exact type, or a category wildcard such as "load.*".
            handler: Called with every matching event.
        """
        with self._lock:
            self._handlers[event_type].append(handler)
        logger.debug(f"Subscribed handler to {event_type}")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe a handler to all events."""
        with self._lock:
            self._global_handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """Remove a handler.

        Returns:
            True if handler was removed, False if not found.
        """
        with self._lock:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)
                return True
            return False

    def unsubscribe_all(self, handler: EventHandler) -> bool:
        with self._lock:
            if handler in self._global_handlers:
                self._global_handlers.remove(handler)
                return True
            return False

    def emit(self, event: Event) -> int:
        """Deliver an event to every matching handler.

        Handler errors are logged and do not reach the emitter.

        Returns:
            Number of handlers that ran without error.
        """
        if not self._enabled:
            return 0

        with self._lock:
            handlers = list(self._global_handlers)
            for event_type, type_handlers in self._handlers.items():
                if self._matches_type(event.type, event_type):
                    handlers.extend(type_handlers)

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Error in event handler for {event.type}: {e}")
        return delivered

    @staticmethod
    def _matches_type(actual_type: str, subscribed_type: str) -> bool:
        if actual_type == subscribed_type:
            return True
        # "script.*" matches "script.failed"
        if subscribed_type.endswith(".*"):
            return actual_type.startswith(subscribed_type[:-1])
        return False

    def clear(self) -> None:
        """Remove all handlers."""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        """Drop events until re-enabled."""
        self._enabled = False

    @property
    def handler_count(self) -> int:
        with self._lock:
            type_handlers = sum(len(h) for h in self._handlers.values())
            return type_handlers + len(self._global_handlers)


# Global singleton instance
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global event bus (for testing)."""
    global _event_bus
    if _event_bus is not None:
        _event_bus.clear()
    _event_bus = None
