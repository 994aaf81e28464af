"""Observability channel for skin loads - in-process events and bus."""

from .event import Event, EventType, Severity
from .bus import EventBus, EventHandler, get_event_bus, reset_event_bus

__all__ = [
    "Event",
    "EventType",
    "Severity",
    "EventBus",
    "EventHandler",
    "get_event_bus",
    "reset_event_bus",
]
