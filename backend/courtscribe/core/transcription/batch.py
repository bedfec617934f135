"""Transcription of complete recordings (uploads) with OpenAI."""

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Any

from courtscribe.core.events.bus import EventBus
from courtscribe.core.events.types import EventSeverity, EventType
from courtscribe.core.logging import get_logger
from courtscribe.core.stt.openai import BatchTranscription, OpenAITranscriber
from courtscribe.core.transcripts.models import SegmentOrigin, TranscriptStatus

if TYPE_CHECKING:
    from courtscribe.core.transcription.gateway import SegmentGateway

logger = get_logger(__name__)

EVENT_SOURCE = "core:batch"


def _to_segments(transcript_id: str, transcription: BatchTranscription) -> list[dict[str, Any]]:
    segments = []
    for seg in transcription.segments:
        if not seg.text:
            continue
        segments.append({
            "transcript_id": transcript_id,
            "segment_number": len(segments),
            "start_time": int(round(seg.start * 1000)),
            "end_time": int(round(seg.end * 1000)),
            "text": seg.text,
            "origin": SegmentOrigin.BATCH.value,
            "metadata": {"speaker": seg.speaker, "model": transcription.model},
        })

    # whisper may return text without segments for very short clips
    if not segments and transcription.text.strip():
        segments.append({
            "transcript_id": transcript_id,
            "segment_number": 0,
            "start_time": 0,
            "end_time": int(round((transcription.duration or 0) * 1000)),
            "text": transcription.text.strip(),
            "origin": SegmentOrigin.BATCH.value,
            "metadata": {"speaker": None, "model": transcription.model},
        })
    return segments


async def transcribe_audio(
    gateway: "SegmentGateway",
    transcriber: OpenAITranscriber,
    transcript_id: str,
    organization_id: str,
    audio_data: bytes,
    filename: str = "audio.mp3",
    language: str | None = None,
    diarize: bool = False,
    event_bus: EventBus | None = None,
) -> int:
    """
    Transcribe a recording into a transcript.

    The transcript goes in-progress -> completed, or failed when the
    transcription or the segment write fails (the error is re-raised).
    Segments of an earlier batch run are replaced; live and manual segments
    keep their numbers and the new ones are numbered after them.

    Returns:
        Number of segments stored
    """
    transcript_id = str(transcript_id)
    await gateway.start_transcription(transcript_id, organization_id, transcriber.name)
    logger.info("batch_transcription_started", transcript_id=transcript_id, filename=filename)

    try:
        transcription = await transcriber.transcribe(
            audio_data,
            filename=filename,
            language=language,
            diarize=diarize,
        )
        segments = _to_segments(transcript_id, transcription)
        # A re-upload supersedes the previous batch result
        await gateway.replace_segments(
            organization_id,
            transcript_id,
            segments,
            origin=SegmentOrigin.BATCH.value,
            status=TranscriptStatus.COMPLETED.value,
        )
    except Exception as e:
        logger.error("batch_transcription_failed", transcript_id=transcript_id, error=str(e))
        await gateway.update_transcript_status(
            transcript_id, organization_id, TranscriptStatus.FAILED.value
        )
        if event_bus is not None:
            await event_bus.emit(
                EventType.BATCH_FAILED,
                source=EVENT_SOURCE,
                payload={"transcript_id": transcript_id, "error": str(e)},
                organization_id=organization_id,
                severity=EventSeverity.ERROR,
            )
        raise

    logger.info(
        "batch_transcription_completed",
        transcript_id=transcript_id,
        segments=len(segments),
        duration=transcription.duration,
    )
    if event_bus is not None:
        await event_bus.emit(
            EventType.BATCH_COMPLETED,
            source=EVENT_SOURCE,
            payload={"transcript_id": transcript_id, "segment_count": len(segments)},
            organization_id=organization_id,
            severity=EventSeverity.SUCCESS,
        )
    return len(segments)


async def transcribe_audio_file(
    gateway: "SegmentGateway",
    transcriber: OpenAITranscriber,
    transcript_id: str,
    organization_id: str,
    audio_path: str | Path,
    language: str | None = None,
    diarize: bool = False,
    event_bus: EventBus | None = None,
) -> int:
    """Read a recording from disk and transcribe it."""
    path = Path(audio_path)
    audio_data = await asyncio.to_thread(path.read_bytes)
    return await transcribe_audio(
        gateway,
        transcriber,
        transcript_id,
        organization_id,
        audio_data,
        filename=path.name,
        language=language,
        diarize=diarize,
        event_bus=event_bus,
    )
