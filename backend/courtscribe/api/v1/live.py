"""Live transcription API endpoints."""

import asyncio
import contextlib
import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, status
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from courtscribe.api.deps import LiveCoordinator, get_live_coordinator
from courtscribe.config import settings
from courtscribe.core.auth.dependencies import CurrentTenant, TenantContext, authenticate_websocket_token
from courtscribe.core.events.bus import EventBus, get_event_bus
from courtscribe.core.events.types import Event, EventType
from courtscribe.core.logging import get_logger
from courtscribe.core.stt.base import TranscriptionConfig, TranscriptionProviderType
from courtscribe.core.stt.factory import supported_providers
from courtscribe.core.transcription.coordinator import LiveSessionCoordinator, SessionInfo
from courtscribe.core.transcription.exceptions import (
    ConfigurationError,
    PersistenceError,
    ProviderConnectionError,
    SessionAlreadyActiveError,
    SessionNotFoundError,
    TranscriptNotFoundError,
    TranscriptionError,
)

router = APIRouter()
logger = get_logger(__name__)

# Events pushed back to a streaming client
STREAM_EVENT_TYPES = {
    EventType.INTERIM.value: "interim",
    EventType.SEGMENT.value: "segment",
    EventType.SEGMENT_FAILED.value: "segment_failed",
    EventType.TRANSCRIPTION_ERROR.value: "error",
}


class StartSessionRequest(BaseModel):
    provider: TranscriptionProviderType | None = None
    language: str | None = None
    enable_speaker_diarization: bool = False
    punctuate: bool = True
    profanity_filter: bool = False
    model: str | None = None
    sample_rate: int | None = None
    encoding: str | None = None


class SessionResponse(BaseModel):
    transcript_id: str
    provider: str
    is_active: bool
    segment_count: int
    pending_segments: int
    started_at: str


class SessionStatusResponse(BaseModel):
    transcript_id: str
    active: bool
    session: SessionResponse | None = None


class StopSessionResponse(BaseModel):
    transcript_id: str
    stopped: bool
    segment_count: int | None = None


def _session_response(info: SessionInfo) -> SessionResponse:
    return SessionResponse(
        transcript_id=info.transcript_id,
        provider=info.provider,
        is_active=info.is_active,
        segment_count=info.segment_count,
        pending_segments=info.pending_segments,
        started_at=info.started_at.isoformat(),
    )


def build_config(body: StartSessionRequest) -> TranscriptionConfig:
    """Recognition options from the request, API key from settings."""
    provider = body.provider.value if body.provider else settings.transcription_default_provider
    if provider in supported_providers() and not settings.api_key_for(provider):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"No API key configured for provider: {provider}",
        )

    return TranscriptionConfig(
        provider=provider,
        api_key=settings.api_key_for(provider),
        language=body.language or settings.stt_default_language,
        enable_speaker_diarization=body.enable_speaker_diarization,
        punctuate=body.punctuate,
        profanity_filter=body.profanity_filter,
        model=body.model,
        sample_rate=body.sample_rate,
        encoding=body.encoding,
    )


def _owned_session(
    coordinator: LiveSessionCoordinator,
    transcript_id: str,
    tenant: TenantContext,
) -> SessionInfo | None:
    info = coordinator.get_session(transcript_id)
    if info is None or info.organization_id != tenant.organization_id:
        return None
    return info


def _start_error(e: TranscriptionError) -> HTTPException:
    if isinstance(e, SessionAlreadyActiveError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, TranscriptNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transcript not found")
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, ProviderConnectionError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to start transcription")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/{transcript_id}", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_live_session(
    transcript_id: str,
    request: Request,
    tenant: CurrentTenant,
    coordinator: LiveCoordinator,
    body: StartSessionRequest | None = None,
) -> SessionResponse:
    """Start live transcription for a transcript."""
    shutdown = getattr(request.app.state, "shutdown_coordinator", None)
    if shutdown is not None and shutdown.is_shutdown_requested():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Server is shutting down",
        )

    config = build_config(body or StartSessionRequest())

    try:
        info = await coordinator.start_session(transcript_id, tenant.organization_id, config)
    except TranscriptionError as e:
        raise _start_error(e) from e

    return _session_response(info)


@router.post("/{transcript_id}/audio", status_code=status.HTTP_202_ACCEPTED)
async def send_live_audio(
    transcript_id: str,
    request: Request,
    tenant: CurrentTenant,
    coordinator: LiveCoordinator,
) -> dict:
    """Forward one chunk of encoded audio (raw request body)."""
    chunk = await request.body()
    if not chunk:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty audio chunk")

    if _owned_session(coordinator, transcript_id, tenant) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active session")

    try:
        await coordinator.send_audio(transcript_id, chunk)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active session") from e
    except ProviderConnectionError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    return {"transcript_id": transcript_id, "bytes": len(chunk)}


@router.delete("/{transcript_id}", response_model=StopSessionResponse)
async def stop_live_session(
    transcript_id: str,
    tenant: CurrentTenant,
    coordinator: LiveCoordinator,
) -> StopSessionResponse:
    """Stop live transcription. Stopping an idle transcript is a no-op."""
    if _owned_session(coordinator, transcript_id, tenant) is None:
        return StopSessionResponse(transcript_id=transcript_id, stopped=False)

    info = await coordinator.stop_session(transcript_id)
    return StopSessionResponse(
        transcript_id=transcript_id,
        stopped=info is not None,
        segment_count=info.segment_count if info else None,
    )


@router.get("/{transcript_id}", response_model=SessionStatusResponse)
async def get_live_session(
    transcript_id: str,
    tenant: CurrentTenant,
    coordinator: LiveCoordinator,
) -> SessionStatusResponse:
    """Live session status for a transcript."""
    info = _owned_session(coordinator, transcript_id, tenant)
    return SessionStatusResponse(
        transcript_id=transcript_id,
        active=info is not None and info.is_active,
        session=_session_response(info) if info else None,
    )


async def _pump_events(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


@router.websocket("/{transcript_id}/stream")
async def live_stream(
    websocket: WebSocket,
    transcript_id: str,
    coordinator: Annotated[LiveSessionCoordinator, Depends(get_live_coordinator)],
    event_bus: Annotated[EventBus, Depends(get_event_bus)],
    token: str | None = None,
    provider: TranscriptionProviderType | None = None,
    language: str | None = None,
    diarize: bool = False,
    encoding: str | None = None,
    sample_rate: int | None = None,
) -> None:
    """
    Stream audio for live transcription.

    Binary frames are audio; a {"type": "stop"} text frame ends the session.
    Interim results and persisted segments are pushed back as JSON. The
    session is stopped when the socket closes.
    """
    tenant = authenticate_websocket_token(token)
    if tenant is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    outgoing: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=500)

    def forward(event: Event) -> None:
        kind = STREAM_EVENT_TYPES.get(event.type)
        if kind is None or event.transcript_id != transcript_id:
            return
        if event.organization_id != tenant.organization_id:
            return
        with contextlib.suppress(asyncio.QueueFull):
            outgoing.put_nowait({"type": kind, **event.payload})

    try:
        config = build_config(
            StartSessionRequest(
                provider=provider,
                language=language,
                enable_speaker_diarization=diarize,
                encoding=encoding,
                sample_rate=sample_rate,
            )
        )
        event_bus.subscribe_all(forward)
        info = await coordinator.start_session(transcript_id, tenant.organization_id, config)
    except (HTTPException, TranscriptionError) as e:
        event_bus.unsubscribe_all(forward)
        detail = e.detail if isinstance(e, HTTPException) else str(e)
        await websocket.send_json({"type": "error", "error": detail})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.send_json({"type": "session_started", "session": info.to_dict()})
    pump = asyncio.create_task(_pump_events(websocket, outgoing))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("bytes"):
                try:
                    await coordinator.send_audio(transcript_id, message["bytes"])
                except (SessionNotFoundError, ProviderConnectionError) as e:
                    logger.warning("live_stream_audio_rejected", transcript_id=transcript_id, error=str(e))
                    break
            elif message.get("text"):
                try:
                    data = json.loads(message["text"])
                except json.JSONDecodeError:
                    continue
                if isinstance(data, dict) and data.get("type") == "stop":
                    break
    finally:
        final = await coordinator.stop_session(transcript_id)
        event_bus.unsubscribe_all(forward)
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)

    if websocket.client_state == WebSocketState.CONNECTED:
        while not outgoing.empty():
            await websocket.send_json(outgoing.get_nowait())
        await websocket.send_json({
            "type": "session_stopped",
            "segment_count": final.segment_count if final else None,
        })
        await websocket.close()
