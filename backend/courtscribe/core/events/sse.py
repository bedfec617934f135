"""SSE (Server-Sent Events) endpoint for real-time transcription events."""

import asyncio
import json
from typing import Annotated, AsyncGenerator

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from courtscribe.core.auth.dependencies import CurrentTenantFromQueryToken
from courtscribe.core.events.bus import EventBus, get_event_bus
from courtscribe.core.events.types import Event

router = APIRouter()

KEEPALIVE_SECONDS = 15


def _matches(
    event: Event,
    organization_id: str,
    event_types: list[str] | None,
    transcript_id: str | None,
) -> bool:
    # System-wide events (organization_id None) go to everyone
    if event.organization_id is not None and event.organization_id != organization_id:
        return False
    if event_types and event.type not in event_types:
        return False
    if transcript_id and event.transcript_id != transcript_id:
        return False
    return True


async def event_generator(
    event_bus: EventBus,
    organization_id: str,
    event_types: list[str] | None = None,
    transcript_id: str | None = None,
    minutes: int = 5,
) -> AsyncGenerator[dict, None]:
    """
    Generator for SSE events of one organization.

    SSE format:
    event: <event_type>
    data: <json_payload>
    id: <event_id>
    """
    queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=100)
    event_bus.register_sse_client(queue)

    try:
        recent = event_bus.get_recent_events(
            minutes=minutes,
            event_types=event_types,
            organization_id=organization_id,
            transcript_id=transcript_id,
        )
        for event in reversed(recent):
            yield format_sse_event(event)

        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                yield {"event": "keepalive", "data": ""}
                continue

            if _matches(event, organization_id, event_types, transcript_id):
                yield format_sse_event(event)

    finally:
        event_bus.unregister_sse_client(queue)


def format_sse_event(event: Event) -> dict:
    """Format event for SSE."""
    event_data = {
        "id": str(event.id),
        "type": event.type,
        "data": event.payload,
        "timestamp": event.timestamp.isoformat(),
    }

    return {
        "event": event.type,
        "data": json.dumps(event_data, default=str),
        "id": str(event.id),
        "retry": 5000,
    }


@router.get("/stream")
async def stream_events(
    tenant: CurrentTenantFromQueryToken,
    event_bus: Annotated[EventBus, Depends(get_event_bus)],
    types: str | None = Query(None, description="Comma-separated event types"),
    transcript_id: str | None = Query(None, description="Only events for this transcript"),
    minutes: int = Query(5, ge=0, le=60, description="Initial history in minutes"),
) -> EventSourceResponse:
    """
    SSE endpoint for live transcription events.

    Parameters:
    - token: JWT access token (required for authentication)
    - types: Filter by event types (e.g., "transcription.interim,transcription.segment")
    - transcript_id: Filter to one transcript
    - minutes: How many minutes of history to send initially (0-60)

    Note: EventSource API doesn't support custom headers, so token must be passed as query parameter.
    """
    event_types = types.split(",") if types else None

    return EventSourceResponse(
        event_generator(event_bus, tenant.organization_id, event_types, transcript_id, minutes),
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.get("/recent")
async def get_recent_events(
    tenant: CurrentTenantFromQueryToken,
    event_bus: Annotated[EventBus, Depends(get_event_bus)],
    minutes: int = Query(5, ge=1, le=60),
    types: str | None = Query(None),
    transcript_id: str | None = Query(None),
) -> dict:
    """REST endpoint for recent events history."""
    event_types = types.split(",") if types else None

    events = event_bus.get_recent_events(
        minutes=minutes,
        event_types=event_types,
        organization_id=tenant.organization_id,
        transcript_id=transcript_id,
    )

    return {
        "events": [e.model_dump(mode="json") for e in events],
        "count": len(events),
    }
