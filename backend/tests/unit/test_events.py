"""Unit tests for the event bus and SSE formatting."""

import asyncio
import json

import pytest

from courtscribe.core.events.bus import EventBus
from courtscribe.core.events.sse import event_generator, format_sse_event
from courtscribe.core.events.types import EventType


@pytest.mark.unit
@pytest.mark.asyncio
class TestEventBus:
    """Tests for EventBus."""

    async def test_emit_calls_typed_and_wildcard_handlers(self):
        bus = EventBus()
        typed, wildcard = [], []

        async def on_segment(event):
            typed.append(event.payload["text"])

        bus.subscribe(EventType.SEGMENT, on_segment)
        bus.subscribe_all(wildcard.append)

        await bus.emit(EventType.SEGMENT, source="core:live", payload={"text": "All rise"})
        await bus.emit(EventType.INTERIM, source="core:live", payload={"text": "All"})

        assert typed == ["All rise"]
        assert [e.type for e in wildcard] == [EventType.SEGMENT.value, EventType.INTERIM.value]

    async def test_handler_errors_do_not_reach_emitter(self):
        bus = EventBus()

        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe(EventType.SEGMENT, broken)

        event = await bus.emit(EventType.SEGMENT, source="core:live", payload={})
        assert event.type == EventType.SEGMENT.value

    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.SEGMENT, seen.append)
        bus.unsubscribe(EventType.SEGMENT, seen.append)
        bus.subscribe_all(seen.append)
        bus.unsubscribe_all(seen.append)

        await bus.emit(EventType.SEGMENT, source="core:live", payload={})

        assert seen == []

    async def test_recent_events_newest_first_and_filtered(self):
        bus = EventBus()
        await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-1", "n": 0}, organization_id="org-a")
        await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-2", "n": 1}, organization_id="org-a")
        await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-3", "n": 2}, organization_id="org-b")
        await bus.emit(EventType.INTERIM, "core:live", {"transcript_id": "t-1", "n": 3}, organization_id="org-a")

        recent = bus.get_recent_events(minutes=5)
        assert [e.payload["n"] for e in recent] == [3, 2, 1, 0]

        org_a = bus.get_recent_events(organization_id="org-a", event_types=[EventType.SEGMENT.value])
        assert [e.payload["n"] for e in org_a] == [1, 0]

        t1 = bus.get_recent_events(transcript_id="t-1")
        assert [e.payload["n"] for e in t1] == [3, 0]

    async def test_buffer_is_bounded(self):
        bus = EventBus(buffer_max_size=3)
        for n in range(5):
            await bus.emit(EventType.SEGMENT, "core:live", {"n": n})

        assert [e.payload["n"] for e in bus.get_recent_events()] == [4, 3, 2]

    async def test_slow_sse_client_is_dropped(self):
        bus = EventBus()
        queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        bus.register_sse_client(queue)

        await bus.emit(EventType.SEGMENT, "core:live", {})
        assert bus.client_count == 1
        await bus.emit(EventType.SEGMENT, "core:live", {})

        assert bus.client_count == 0
        assert queue.qsize() == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestEventGenerator:
    """SSE stream for one organization."""

    async def test_replays_history_oldest_first_for_own_org(self):
        bus = EventBus()
        await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-1", "n": 0}, organization_id="org-a")
        await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-9", "n": 1}, organization_id="org-b")
        await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-1", "n": 2}, organization_id="org-a")

        stream = event_generator(bus, "org-a")
        first = await stream.__anext__()
        second = await stream.__anext__()

        assert [json.loads(m["data"])["data"]["n"] for m in (first, second)] == [0, 2]
        assert bus.client_count == 1
        await stream.aclose()
        assert bus.client_count == 0

    async def test_live_events_filtered_by_org_and_transcript(self):
        bus = EventBus()
        stream = event_generator(bus, "org-a", transcript_id="t-1")

        next_message = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)
        await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-1", "n": 0}, organization_id="org-b")
        await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-2", "n": 1}, organization_id="org-a")
        await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-1", "n": 2}, organization_id="org-a")

        message = await asyncio.wait_for(next_message, timeout=1.0)

        assert json.loads(message["data"])["data"]["n"] == 2
        await stream.aclose()

    async def test_format_sse_event(self):
        bus = EventBus()
        event = await bus.emit(EventType.SEGMENT, "core:live", {"transcript_id": "t-1"})

        formatted = format_sse_event(event)

        assert formatted["event"] == EventType.SEGMENT.value
        assert formatted["id"] == str(event.id)
        assert json.loads(formatted["data"])["data"] == {"transcript_id": "t-1"}
