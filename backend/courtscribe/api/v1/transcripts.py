"""Transcripts: queries, segments, speakers, annotations, manual transcription and recording upload."""

import json
from typing import Annotated, Any

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    HTTPException,
    Query,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from pydantic import BaseModel, Field

from courtscribe.api.deps import (
    LiveCoordinator,
    Transcriber,
    Transcripts,
    get_live_coordinator,
    get_transcript_service,
)
from courtscribe.config import settings
from courtscribe.core.auth.dependencies import CurrentTenant, authenticate_websocket_token
from courtscribe.core.events.bus import EventBus, get_event_bus
from courtscribe.core.events.types import EventType
from courtscribe.core.logging import get_logger
from courtscribe.core.stt.openai import OpenAITranscriber
from courtscribe.core.transcription.batch import transcribe_audio
from courtscribe.core.transcription.coordinator import LiveSessionCoordinator
from courtscribe.core.transcription.exceptions import (
    ManualEntryError,
    PersistenceError,
    TranscriptNotFoundError,
    TranscriptionError,
    UnknownSpeakerError,
)
from courtscribe.core.transcription.manual import (
    ManualTranscriptEntry,
    ManualTranscriptionEditor,
    format_elapsed,
)
from courtscribe.core.transcripts.models import (
    SegmentOrigin,
    Transcript,
    TranscriptAnnotation,
    TranscriptSegment,
    TranscriptSpeaker,
)
from courtscribe.core.transcripts.service import TranscriptService

router = APIRouter()
logger = get_logger(__name__)


class TranscriptResponse(BaseModel):
    id: str
    case_id: str
    hearing_id: str
    title: str
    status: str
    language: str | None
    transcription_service: str | None
    duration: int | None
    started_at: str | None
    completed_at: str | None
    created_by: str | None
    reviewed_by: str | None
    created_at: str


class TranscriptListResponse(BaseModel):
    transcripts: list[TranscriptResponse]
    total: int


class SpeakerCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    role: str = Field(..., min_length=1, max_length=50)
    user_id: str | None = None
    speaker_label: str | None = Field(None, max_length=20)
    notes: str | None = None


class SpeakerResponse(BaseModel):
    id: str
    transcript_id: str
    name: str
    role: str
    user_id: str | None
    speaker_label: str | None
    notes: str | None


class AnnotationCreateRequest(BaseModel):
    type: str = Field(..., min_length=1, max_length=50)
    content: str | None = None
    segment_id: str | None = None
    start_time: int | None = Field(None, ge=0)
    end_time: int | None = Field(None, ge=0)
    color: str | None = Field(None, max_length=20)


class AnnotationResponse(BaseModel):
    id: str
    transcript_id: str
    segment_id: str | None
    type: str
    content: str | None
    start_time: int | None
    end_time: int | None
    color: str | None
    created_by: str
    created_at: str


class SegmentResponse(BaseModel):
    id: str
    transcript_id: str
    segment_number: int
    start_time: int
    end_time: int
    text: str
    original_text: str | None
    confidence: int | None
    speaker_id: str | None
    origin: str
    is_edited: bool
    edited_by: str | None
    edited_at: str | None
    metadata: dict | None


class SegmentListResponse(BaseModel):
    segments: list[SegmentResponse]
    total: int


class SegmentUpdateRequest(BaseModel):
    text: str | None = Field(None, min_length=1)
    speaker_id: str | None = None


class TranscriptStatsResponse(BaseModel):
    total_segments: int
    total_words: int
    average_confidence: int | None
    edited_segments: int
    edited_percentage: int
    speaker_segments: dict[str, int]


class ManualEntryIn(BaseModel):
    id: str | None = None
    text: str = Field(..., min_length=1)
    timestamp: str = "0:00"
    speaker_id: str | None = None
    notes: str | None = None


class ManualSaveRequest(BaseModel):
    entries: list[ManualEntryIn]
    autosave: bool = False


class ManualSaveResponse(BaseModel):
    transcript_id: str
    segments: int
    status: str


class TranscriptDetailsResponse(BaseModel):
    transcript: TranscriptResponse
    speakers: list[SpeakerResponse]
    segments: list[SegmentResponse]
    annotations: list[AnnotationResponse]


def _isoformat(value) -> str | None:
    return value.isoformat() if value else None


def _transcript_response(t: Transcript) -> TranscriptResponse:
    return TranscriptResponse(
        id=str(t.id),
        case_id=t.case_id,
        hearing_id=t.hearing_id,
        title=t.title,
        status=t.status,
        language=t.language,
        transcription_service=t.transcription_service,
        duration=t.duration,
        started_at=_isoformat(t.started_at),
        completed_at=_isoformat(t.completed_at),
        created_by=t.created_by,
        reviewed_by=t.reviewed_by,
        created_at=t.created_at.isoformat(),
    )


def _speaker_response(s: TranscriptSpeaker) -> SpeakerResponse:
    return SpeakerResponse(
        id=str(s.id),
        transcript_id=str(s.transcript_id),
        name=s.name,
        role=s.role,
        user_id=s.user_id,
        speaker_label=s.speaker_label,
        notes=s.notes,
    )


def _annotation_response(a: TranscriptAnnotation) -> AnnotationResponse:
    return AnnotationResponse(
        id=str(a.id),
        transcript_id=str(a.transcript_id),
        segment_id=str(a.segment_id) if a.segment_id else None,
        type=a.type,
        content=a.content,
        start_time=a.start_time,
        end_time=a.end_time,
        color=a.color,
        created_by=a.created_by,
        created_at=a.created_at.isoformat(),
    )


def _segment_response(s: TranscriptSegment) -> SegmentResponse:
    return SegmentResponse(
        id=str(s.id),
        transcript_id=str(s.transcript_id),
        segment_number=s.segment_number,
        start_time=s.start_time,
        end_time=s.end_time,
        text=s.text,
        original_text=s.original_text,
        confidence=s.confidence,
        speaker_id=s.speaker_id,
        origin=s.origin,
        is_edited=s.is_edited,
        edited_by=s.edited_by,
        edited_at=s.edited_at.isoformat() if s.edited_at else None,
        metadata=s.segment_metadata,
    )


def _not_found(e: TranscriptNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transcript not found")


def _persistence_failed(e: PersistenceError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to save transcript",
    )


def _unknown_speaker(e: UnknownSpeakerError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _ensure_no_live_session(coordinator: LiveSessionCoordinator, transcript_id: str) -> None:
    # Covers a session that is still starting or still draining after stop
    if coordinator.get_session(transcript_id) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Live transcription is running for this transcript",
        )


# === TRANSCRIPTS ===


@router.get("/by-hearing/{hearing_id}", response_model=TranscriptListResponse)
async def list_transcripts_by_hearing(
    hearing_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
) -> TranscriptListResponse:
    transcripts = await service.list_transcripts_by_hearing(hearing_id, tenant.organization_id)
    return TranscriptListResponse(
        transcripts=[_transcript_response(t) for t in transcripts],
        total=len(transcripts),
    )


@router.get("/by-case/{case_id}", response_model=TranscriptListResponse)
async def list_transcripts_by_case(
    case_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
) -> TranscriptListResponse:
    transcripts = await service.list_transcripts_by_case(case_id, tenant.organization_id)
    return TranscriptListResponse(
        transcripts=[_transcript_response(t) for t in transcripts],
        total=len(transcripts),
    )


@router.get("/{transcript_id}", response_model=TranscriptDetailsResponse)
async def get_transcript_details(
    transcript_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
) -> TranscriptDetailsResponse:
    """Transcript with its speakers, segments and annotations."""
    try:
        details = await service.get_transcript_details(transcript_id, tenant.organization_id)
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e

    return TranscriptDetailsResponse(
        transcript=_transcript_response(details["transcript"]),
        speakers=[_speaker_response(s) for s in details["speakers"]],
        segments=[_segment_response(s) for s in details["segments"]],
        annotations=[_annotation_response(a) for a in details["annotations"]],
    )


# === SPEAKERS ===


@router.post(
    "/{transcript_id}/speakers",
    response_model=SpeakerResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_speaker(
    transcript_id: str,
    body: SpeakerCreateRequest,
    tenant: CurrentTenant,
    service: Transcripts,
) -> SpeakerResponse:
    try:
        speaker = await service.add_speaker(
            tenant.organization_id,
            transcript_id,
            name=body.name,
            role=body.role,
            user_id=body.user_id,
            speaker_label=body.speaker_label,
            notes=body.notes,
        )
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e
    except PersistenceError as e:
        raise _persistence_failed(e) from e
    return _speaker_response(speaker)


@router.get("/{transcript_id}/speakers", response_model=list[SpeakerResponse])
async def list_speakers(
    transcript_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
) -> list[SpeakerResponse]:
    try:
        speakers = await service.list_speakers(transcript_id, tenant.organization_id)
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e
    return [_speaker_response(s) for s in speakers]


# === ANNOTATIONS ===


@router.post(
    "/{transcript_id}/annotations",
    response_model=AnnotationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_annotation(
    transcript_id: str,
    body: AnnotationCreateRequest,
    tenant: CurrentTenant,
    service: Transcripts,
) -> AnnotationResponse:
    """Annotate a transcript, or one of its segments when segment_id is given."""
    try:
        annotation = await service.add_annotation(
            tenant.organization_id,
            transcript_id,
            annotation_type=body.type,
            created_by=tenant.user_id,
            content=body.content,
            segment_id=body.segment_id,
            start_time=body.start_time,
            end_time=body.end_time,
            color=body.color,
        )
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e
    except PersistenceError as e:
        raise _persistence_failed(e) from e
    return _annotation_response(annotation)


@router.get("/{transcript_id}/annotations", response_model=list[AnnotationResponse])
async def list_annotations(
    transcript_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
) -> list[AnnotationResponse]:
    try:
        annotations = await service.list_annotations(transcript_id, tenant.organization_id)
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e
    return [_annotation_response(a) for a in annotations]


@router.delete("/annotations/{annotation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_annotation(
    annotation_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
) -> None:
    """Delete an annotation. Only its author can; anyone else gets 404."""
    deleted = await service.delete_annotation(annotation_id, tenant.organization_id, tenant.user_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Annotation not found")


# === SEGMENTS ===


@router.get("/{transcript_id}/segments", response_model=SegmentListResponse)
async def list_segments(
    transcript_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
) -> SegmentListResponse:
    """All segments of a transcript in playback order."""
    try:
        segments = await service.list_segments(transcript_id, tenant.organization_id)
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e

    return SegmentListResponse(
        segments=[_segment_response(s) for s in segments],
        total=len(segments),
    )


@router.get("/{transcript_id}/segments/search", response_model=SegmentListResponse)
async def search_segments(
    transcript_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
    q: str = Query(..., min_length=1, description="Text to search for"),
) -> SegmentListResponse:
    """Case-insensitive search within a transcript."""
    try:
        segments = await service.search_segments(transcript_id, tenant.organization_id, q)
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e

    return SegmentListResponse(
        segments=[_segment_response(s) for s in segments],
        total=len(segments),
    )


@router.get("/{transcript_id}/stats", response_model=TranscriptStatsResponse)
async def get_transcript_stats(
    transcript_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
) -> TranscriptStatsResponse:
    try:
        stats = await service.get_transcript_stats(transcript_id, tenant.organization_id)
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e
    return TranscriptStatsResponse(**stats)


@router.patch("/segments/{segment_id}", response_model=SegmentResponse)
async def update_segment(
    segment_id: str,
    body: SegmentUpdateRequest,
    tenant: CurrentTenant,
    service: Transcripts,
) -> SegmentResponse:
    """Correct a segment's text or speaker."""
    if body.text is None and body.speaker_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update")

    try:
        segment = await service.update_segment(
            segment_id,
            tenant.organization_id,
            text=body.text,
            speaker_id=body.speaker_id,
            user_id=tenant.user_id,
        )
    except TranscriptNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Segment not found") from e
    except UnknownSpeakerError as e:
        raise _unknown_speaker(e) from e
    except PersistenceError as e:
        raise _persistence_failed(e) from e

    return _segment_response(segment)


# === MANUAL TRANSCRIPTION ===


@router.post("/{transcript_id}/manual", response_model=ManualSaveResponse)
async def save_manual_transcript(
    transcript_id: str,
    body: ManualSaveRequest,
    tenant: CurrentTenant,
    service: Transcripts,
    coordinator: LiveCoordinator,
    event_bus: Annotated[EventBus, Depends(get_event_bus)],
) -> ManualSaveResponse:
    """
    Save the full list of manual entries.

    autosave=true keeps the transcript in progress; otherwise it is completed.
    Rejected with 409 while a live session runs on the transcript.
    """
    _ensure_no_live_session(coordinator, transcript_id)
    if not body.entries:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No entries to save")

    entries = [
        ManualTranscriptEntry(
            text=e.text.strip(),
            timestamp=e.timestamp,
            speaker_id=e.speaker_id,
            notes=e.notes,
            **({"id": e.id} if e.id else {}),
        )
        for e in body.entries
    ]

    try:
        segments = await service.save_manual_entries(
            tenant.organization_id,
            transcript_id,
            entries,
            final=not body.autosave,
            user_id=tenant.user_id,
        )
        transcript = await service.get_transcript(transcript_id, tenant.organization_id)
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e
    except UnknownSpeakerError as e:
        raise _unknown_speaker(e) from e
    except PersistenceError as e:
        raise _persistence_failed(e) from e

    await event_bus.emit(
        EventType.MANUAL_SAVED,
        source="core:manual",
        payload={
            "transcript_id": transcript_id,
            "segments": len(segments),
            "autosave": body.autosave,
        },
        organization_id=tenant.organization_id,
    )

    return ManualSaveResponse(
        transcript_id=transcript_id,
        segments=len(segments),
        status=transcript.status,
    )


async def _load_manual_entries(
    service: TranscriptService,
    transcript_id: str,
    organization_id: str,
) -> list[ManualTranscriptEntry]:
    segments = await service.list_segments(transcript_id, organization_id)
    return [
        ManualTranscriptEntry(
            text=s.text,
            timestamp=format_elapsed(s.start_time // 1000),
            speaker_id=s.speaker_id,
            notes=(s.segment_metadata or {}).get("notes"),
        )
        for s in segments
        if s.origin == SegmentOrigin.MANUAL.value
    ]


async def _apply_editor_action(editor: ManualTranscriptionEditor, data: dict[str, Any]) -> dict[str, Any] | None:
    action = data.get("action")

    if action == "start_timer":
        editor.start_timer()
    elif action == "pause_timer":
        editor.pause_timer()
    elif action == "toggle_timer":
        editor.toggle_timer()
    elif action == "draft":
        editor.set_draft(data.get("text"), data.get("speaker_id"), data.get("notes"))
    elif action == "add_entry":
        if "text" in data:
            editor.add_entry(data["text"], data.get("speaker_id"), data.get("notes"))
        else:
            editor.add_draft()
    elif action == "remove_entry":
        editor.remove_entry(str(data.get("entry_id", "")))
    elif action == "save":
        segments = await editor.save()
        return {"type": "saved", "segments": len(segments), "editor": editor.snapshot()}
    elif action == "key":
        await editor.handle_key(str(data.get("key", "")), ctrl=bool(data.get("ctrl")))
    elif action != "state":
        raise ManualEntryError(f"Unknown action: {action}")

    return None


@router.websocket("/{transcript_id}/manual/stream")
async def manual_stream(
    websocket: WebSocket,
    transcript_id: str,
    service: Annotated[TranscriptService, Depends(get_transcript_service)],
    coordinator: Annotated[LiveSessionCoordinator, Depends(get_live_coordinator)],
    token: str | None = None,
) -> None:
    """
    Drive a manual transcription editor over a WebSocket.

    Each JSON message carries an "action"; every reply carries the editor
    state. Pending auto-saves are flushed when the socket closes.
    The first message also lists the transcript's speakers. The socket is
    refused (1013) while a live session runs on the transcript.
    """
    tenant = authenticate_websocket_token(token)
    if tenant is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        entries = await _load_manual_entries(service, transcript_id, tenant.organization_id)
        speakers = await service.list_speakers(transcript_id, tenant.organization_id)
    except TranscriptNotFoundError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    if coordinator.get_session(transcript_id) is not None:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
        return

    await websocket.accept()
    editor = ManualTranscriptionEditor(
        transcript_id,
        tenant.organization_id,
        store=service,
        autosave_delay=settings.manual_autosave_delay_seconds,
        entries=entries,
        user_id=tenant.user_id,
    )
    await websocket.send_json({
        "type": "state",
        "editor": editor.snapshot(),
        "speakers": [_speaker_response(s).model_dump() for s in speakers],
    })

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ManualEntryError("Message must be a JSON object")
                reply = await _apply_editor_action(editor, data)
            except (json.JSONDecodeError, TranscriptionError) as e:
                await websocket.send_json({"type": "error", "error": str(e), "editor": editor.snapshot()})
                continue

            await websocket.send_json(reply or {"type": "state", "editor": editor.snapshot()})
    except WebSocketDisconnect:
        logger.info("manual_stream_closed", transcript_id=transcript_id)
    finally:
        await editor.flush_pending()
        editor.close()


# === BATCH ===


async def _run_batch_transcription(
    service: TranscriptService,
    transcriber: OpenAITranscriber,
    event_bus: EventBus,
    transcript_id: str,
    organization_id: str,
    audio_data: bytes,
    filename: str,
    language: str | None,
    diarize: bool,
) -> None:
    try:
        await transcribe_audio(
            service,
            transcriber,
            transcript_id,
            organization_id,
            audio_data,
            filename=filename,
            language=language,
            diarize=diarize,
            event_bus=event_bus,
        )
    except Exception as e:
        # Status is already failed; background tasks have no caller to report to
        logger.error("batch_transcription_task_failed", transcript_id=transcript_id, error=str(e))


@router.post("/{transcript_id}/recording", status_code=status.HTTP_202_ACCEPTED)
async def upload_recording(
    transcript_id: str,
    tenant: CurrentTenant,
    service: Transcripts,
    coordinator: LiveCoordinator,
    transcriber: Transcriber,
    event_bus: Annotated[EventBus, Depends(get_event_bus)],
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    language: str | None = Query(None),
    diarize: bool = Query(False),
) -> dict:
    """
    Upload a hearing recording and transcribe it in the background.

    The result replaces any earlier upload for the transcript.
    """
    try:
        await service.get_transcript(transcript_id, tenant.organization_id)
    except TranscriptNotFoundError as e:
        raise _not_found(e) from e
    _ensure_no_live_session(coordinator, transcript_id)

    audio_data = await file.read()
    if not audio_data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty recording")

    background_tasks.add_task(
        _run_batch_transcription,
        service,
        transcriber,
        event_bus,
        transcript_id,
        tenant.organization_id,
        audio_data,
        file.filename or "audio.mp3",
        language,
        diarize,
    )

    return {"transcript_id": transcript_id, "status": "accepted", "bytes": len(audio_data)}
