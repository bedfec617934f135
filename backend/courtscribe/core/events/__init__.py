"""Event system module."""

from courtscribe.core.events.bus import EventBus, get_event_bus
from courtscribe.core.events.types import Event, EventSeverity, EventType

__all__ = [
    "Event",
    "EventType",
    "EventSeverity",
    "EventBus",
    "get_event_bus",
]
