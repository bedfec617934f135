"""Event Bus implementation with SSE support."""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable

from fastapi.requests import HTTPConnection

from courtscribe.core.events.types import Event, EventSeverity, EventType

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus with:
    - Pub/sub for handlers
    - Buffer for recent events (SSE replay)
    - Multiple SSE subscriber queues

    One instance per application, kept on app.state.
    """

    def __init__(
        self,
        buffer_max_size: int = 1000,
        buffer_max_age: timedelta = timedelta(minutes=15),
    ) -> None:
        self._subscribers: dict[str, list[Callable]] = defaultdict(list)
        self._sse_clients: set[asyncio.Queue] = set()
        self._event_buffer: list[Event] = []
        self._buffer_max_size = buffer_max_size
        self._buffer_max_age = buffer_max_age

    # === SUBSCRIPTION ===

    def subscribe(
        self,
        event_type: str | EventType,
        handler: Callable[[Event], Any],
    ) -> None:
        """Subscribe a handler to an event type."""
        key = event_type.value if isinstance(event_type, EventType) else event_type
        self._subscribers[key].append(handler)
        logger.debug(f"Subscribed handler to {key}")

    def unsubscribe(
        self,
        event_type: str | EventType,
        handler: Callable,
    ) -> None:
        """Unsubscribe a handler from an event type."""
        key = event_type.value if isinstance(event_type, EventType) else event_type
        if handler in self._subscribers[key]:
            self._subscribers[key].remove(handler)

    def subscribe_all(self, handler: Callable[[Event], Any]) -> None:
        """Subscribe to all events (wildcard)."""
        self._subscribers["*"].append(handler)

    def unsubscribe_all(self, handler: Callable) -> None:
        if handler in self._subscribers["*"]:
            self._subscribers["*"].remove(handler)

    # === EMISSION ===

    async def emit(
        self,
        event_type: str | EventType,
        source: str,
        payload: dict[str, Any],
        organization_id: str | None = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> Event:
        """
        Emit an event:
        1. Create Event object
        2. Call all subscribers
        3. Add to SSE buffer
        4. Push to all SSE clients

        Handler failures are logged and never reach the emitter.
        """
        type_str = event_type.value if isinstance(event_type, EventType) else event_type

        event = Event(
            type=type_str,
            source=source,
            payload=payload,
            organization_id=organization_id,
            severity=severity,
        )

        handlers = self._subscribers.get(type_str, []) + self._subscribers.get("*", [])

        for handler in handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"Handler error for {type_str}: {e}")

        self._add_to_buffer(event)
        self._push_to_sse_clients(event)

        logger.debug(f"Emitted event: {type_str} from {source}")
        return event

    # === BUFFER MANAGEMENT ===

    def _add_to_buffer(self, event: Event) -> None:
        """Add event to ring buffer."""
        self._event_buffer.append(event)

        if len(self._event_buffer) > self._buffer_max_size:
            self._event_buffer = self._event_buffer[-self._buffer_max_size:]

        cutoff = datetime.utcnow() - self._buffer_max_age
        self._event_buffer = [e for e in self._event_buffer if e.timestamp > cutoff]

    def get_recent_events(
        self,
        minutes: int = 5,
        event_types: list[str] | None = None,
        organization_id: str | None = None,
        transcript_id: str | None = None,
    ) -> list[Event]:
        """Get recent events from buffer, newest first."""
        cutoff = datetime.utcnow() - timedelta(minutes=minutes)

        events = [e for e in self._event_buffer if e.timestamp > cutoff]

        if event_types:
            events = [e for e in events if e.type in event_types]

        if organization_id:
            events = [e for e in events if e.organization_id == organization_id]

        if transcript_id:
            events = [e for e in events if e.transcript_id == transcript_id]

        return events[::-1]

    # === SSE MANAGEMENT ===

    def register_sse_client(self, client_queue: asyncio.Queue) -> None:
        """Register a new SSE client."""
        self._sse_clients.add(client_queue)

    def unregister_sse_client(self, client_queue: asyncio.Queue) -> None:
        """Unregister an SSE client."""
        self._sse_clients.discard(client_queue)

    @property
    def client_count(self) -> int:
        return len(self._sse_clients)

    def _push_to_sse_clients(self, event: Event) -> None:
        """Push event to all SSE clients; clients that fell behind are dropped."""
        dead_clients: set[asyncio.Queue] = set()

        for client_queue in self._sse_clients:
            try:
                client_queue.put_nowait(event)
            except asyncio.QueueFull:
                dead_clients.add(client_queue)

        for dead in dead_clients:
            self._sse_clients.discard(dead)


def get_event_bus(connection: HTTPConnection) -> EventBus:
    """FastAPI dependency: the application's EventBus."""
    return connection.app.state.event_bus
