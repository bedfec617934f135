"""Live transcription sessions: one streaming recognizer per transcript.

Final recognizer results are persisted strictly one at a time, in arrival
order, by a single worker per session. Numbering continues from the highest
segment number already stored for the transcript, so repeated sessions append.
Interim results are only published on the event bus.
"""

import asyncio
import contextlib
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from courtscribe.config import settings
from courtscribe.core.events.bus import EventBus
from courtscribe.core.events.types import EventSeverity, EventType
from courtscribe.core.logging import get_logger
from courtscribe.core.stt.base import SpeechToTextProvider, TranscriptionConfig, TranscriptionResult
from courtscribe.core.stt.factory import create_provider
from courtscribe.core.transcription.exceptions import (
    ProviderConnectionError,
    SessionAlreadyActiveError,
    SessionNotFoundError,
)
from courtscribe.core.transcription.gateway import SegmentGateway
from courtscribe.core.transcripts.models import TranscriptStatus

logger = get_logger(__name__)

EVENT_SOURCE = "core:live"

ProviderFactory = Callable[[TranscriptionConfig], SpeechToTextProvider]


@dataclass(frozen=True)
class SessionInfo:
    """Point-in-time view of a live session."""

    transcript_id: str
    organization_id: str
    provider: str
    is_active: bool
    segment_count: int
    pending_segments: int
    started_at: datetime

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data


class _LiveSession:
    def __init__(self, transcript_id: str, organization_id: str, provider_name: str) -> None:
        self.transcript_id = transcript_id
        self.organization_id = organization_id
        self.provider_name = provider_name
        self.started_at = datetime.now(timezone.utc)
        self.provider: SpeechToTextProvider | None = None
        self.is_active = False
        self.first_segment_number = 0
        self.segment_count = 0
        self.queue: asyncio.Queue[TranscriptionResult] = asyncio.Queue()
        self.worker: asyncio.Task | None = None
        self.stop_task: asyncio.Task | None = None
        self.start_finished = asyncio.Event()
        self.drained = False

    def snapshot(self) -> SessionInfo:
        return SessionInfo(
            transcript_id=self.transcript_id,
            organization_id=self.organization_id,
            provider=self.provider_name,
            is_active=self.is_active,
            segment_count=self.segment_count,
            pending_segments=self.queue.qsize(),
            started_at=self.started_at,
        )


def _provider_name(config: TranscriptionConfig) -> str:
    provider = config.provider
    return provider.value if hasattr(provider, "value") else str(provider).lower()


def _scale_confidence(confidence: float | None) -> int | None:
    if confidence is None:
        return None
    return round(confidence * 100)


class LiveSessionCoordinator:
    """
    Owns every live session of the process, keyed by transcript id.

    Created once per application and shared through app.state.
    """

    def __init__(
        self,
        gateway: SegmentGateway,
        event_bus: EventBus | None = None,
        provider_factory: ProviderFactory = create_provider,
        connect_timeout: float | None = None,
    ) -> None:
        self._gateway = gateway
        self._event_bus = event_bus
        self._provider_factory = provider_factory
        self._connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.stt_connect_timeout_seconds
        )
        self._sessions: dict[str, _LiveSession] = {}
        self._background: set[asyncio.Task] = set()

    # === LIFECYCLE ===

    async def start_session(
        self,
        transcript_id: str,
        organization_id: str,
        config: TranscriptionConfig,
    ) -> SessionInfo:
        """
        Start streaming transcription for a transcript.

        Raises:
            SessionAlreadyActiveError: a session for the transcript exists
            ConfigurationError: unsupported provider or missing API key
            ProviderConnectionError: the recognizer could not be reached
            TranscriptNotFoundError: transcript not visible to the organization
        """
        transcript_id = str(transcript_id)
        if transcript_id in self._sessions:
            raise SessionAlreadyActiveError(transcript_id)

        # Reserve the key before the first await
        session = _LiveSession(transcript_id, organization_id, _provider_name(config))
        self._sessions[transcript_id] = session

        try:
            provider = self._provider_factory(config)
            session.provider = provider
            session.provider_name = provider.name

            await self._gateway.start_transcription(transcript_id, organization_id, provider.name)
            session.first_segment_number = await self._gateway.next_segment_number(
                transcript_id, organization_id
            )

            async def handle_transcript(result: TranscriptionResult) -> None:
                await self._handle_transcript(session, result)

            async def handle_error(error: Exception) -> None:
                await self._handle_provider_error(session, error)

            provider.on_transcript(handle_transcript)
            provider.on_error(handle_error)

            try:
                await asyncio.wait_for(provider.connect(), timeout=self._connect_timeout)
            except asyncio.TimeoutError as e:
                raise ProviderConnectionError(
                    f"{provider.name} connection timed out after {self._connect_timeout}s"
                ) from e
        except Exception as e:
            logger.warning(
                "live_session_start_failed",
                transcript_id=transcript_id,
                provider=session.provider_name,
                error=str(e),
            )
            await self._abort_start(session)
            session.start_finished.set()
            raise

        session.is_active = True
        session.worker = asyncio.create_task(
            self._persist_worker(session), name=f"live-persist-{transcript_id}"
        )

        logger.info(
            "live_session_started",
            transcript_id=transcript_id,
            organization_id=organization_id,
            provider=session.provider_name,
        )
        await self._emit(
            EventType.SESSION_STARTED,
            session,
            {"provider": session.provider_name},
        )
        session.start_finished.set()
        return session.snapshot()

    async def _abort_start(self, session: _LiveSession) -> None:
        if self._sessions.get(session.transcript_id) is session:
            del self._sessions[session.transcript_id]
        if session.provider is not None:
            try:
                await session.provider.disconnect()
            except Exception as e:
                logger.warning(
                    "provider_disconnect_failed",
                    transcript_id=session.transcript_id,
                    error=str(e),
                )

    async def send_audio(self, transcript_id: str, chunk: bytes) -> None:
        """Forward audio to the session's recognizer."""
        session = self._sessions.get(str(transcript_id))
        if session is None or not session.is_active or session.provider is None:
            raise SessionNotFoundError(str(transcript_id))
        await session.provider.send_audio(chunk)

    async def stop_session(self, transcript_id: str) -> SessionInfo | None:
        """
        Stop a session and wait until every final result is persisted.

        Returns the final snapshot, or None when there was nothing to stop.
        A session that is still starting is stopped once its start completes.
        Concurrent callers share the same stop.
        """
        transcript_id = str(transcript_id)
        session = self._sessions.get(transcript_id)
        if session is None:
            return None

        if session.worker is None:
            # Let the start finish (bounded by the connect timeout), then stop it
            logger.info("live_session_stop_while_starting", transcript_id=transcript_id)
            await session.start_finished.wait()
            if self._sessions.get(transcript_id) is not session:
                return None

        if session.stop_task is None:
            session.stop_task = asyncio.create_task(
                self._shutdown_session(session), name=f"live-stop-{transcript_id}"
            )
        return await asyncio.shield(session.stop_task)

    async def _shutdown_session(self, session: _LiveSession) -> SessionInfo:
        session.is_active = False

        if session.provider is not None:
            # Flushes the recognizer; remaining finals land in the queue
            try:
                await session.provider.disconnect()
            except Exception as e:
                logger.warning(
                    "provider_disconnect_failed",
                    transcript_id=session.transcript_id,
                    error=str(e),
                )

        await session.queue.join()
        session.drained = True

        if session.worker is not None:
            session.worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await session.worker

        try:
            await self._gateway.update_transcript_status(
                session.transcript_id,
                session.organization_id,
                TranscriptStatus.COMPLETED.value,
            )
        except Exception as e:
            logger.error(
                "live_session_complete_failed",
                transcript_id=session.transcript_id,
                error=str(e),
            )
        finally:
            if self._sessions.get(session.transcript_id) is session:
                del self._sessions[session.transcript_id]

        info = session.snapshot()
        logger.info(
            "live_session_stopped",
            transcript_id=session.transcript_id,
            segments=info.segment_count,
        )
        await self._emit(
            EventType.SESSION_STOPPED,
            session,
            {"segment_count": info.segment_count},
        )
        return info

    async def stop_all_sessions(self) -> None:
        """Stop every session (application shutdown)."""
        transcript_ids = list(self._sessions)
        if not transcript_ids:
            return

        logger.info("live_sessions_stopping", count=len(transcript_ids))
        results = await asyncio.gather(
            *(self.stop_session(tid) for tid in transcript_ids),
            return_exceptions=True,
        )
        for tid, result in zip(transcript_ids, results):
            if isinstance(result, BaseException):
                logger.error("live_session_stop_failed", transcript_id=tid, error=str(result))

    # === QUERIES ===

    def is_session_active(self, transcript_id: str) -> bool:
        session = self._sessions.get(str(transcript_id))
        return session is not None and session.is_active

    def get_session(self, transcript_id: str) -> SessionInfo | None:
        session = self._sessions.get(str(transcript_id))
        return session.snapshot() if session is not None else None

    def active_sessions(self) -> list[SessionInfo]:
        return [s.snapshot() for s in self._sessions.values() if s.is_active]

    # === RECOGNIZER CALLBACKS ===

    async def _handle_transcript(self, session: _LiveSession, result: TranscriptionResult) -> None:
        if not result.text.strip():
            return

        if not result.is_final:
            await self._emit(
                EventType.INTERIM,
                session,
                {
                    "text": result.text,
                    "start_time": result.start_time,
                    "end_time": result.end_time,
                    "speaker": result.speaker,
                },
                severity=EventSeverity.DEBUG,
            )
            return

        if session.drained:
            logger.warning("live_final_after_stop_dropped", transcript_id=session.transcript_id)
            return

        session.queue.put_nowait(result)

    async def _persist_worker(self, session: _LiveSession) -> None:
        while True:
            result = await session.queue.get()
            try:
                await self._persist_final(session, result)
            finally:
                session.queue.task_done()

    async def _persist_final(self, session: _LiveSession, result: TranscriptionResult) -> None:
        segment_number = session.first_segment_number + session.segment_count
        confidence = _scale_confidence(result.confidence)

        try:
            segment = await self._gateway.create_segment(
                organization_id=session.organization_id,
                transcript_id=session.transcript_id,
                segment_number=segment_number,
                start_time=result.start_time,
                end_time=result.end_time,
                text=result.text,
                confidence=confidence,
                speaker_id=None,
                metadata={
                    "words": [asdict(word) for word in result.words],
                    "speaker": result.speaker,
                },
            )
        except Exception as e:
            # A rejected write is reported, not retried; the number is reused
            logger.error(
                "segment_persist_failed",
                transcript_id=session.transcript_id,
                segment_number=segment_number,
                error=str(e),
            )
            await self._emit(
                EventType.SEGMENT_FAILED,
                session,
                {"segment_number": segment_number, "text": result.text, "error": str(e)},
                severity=EventSeverity.ERROR,
            )
            return

        session.segment_count += 1
        logger.debug(
            "segment_persisted",
            transcript_id=session.transcript_id,
            segment_number=segment_number,
        )
        await self._emit(
            EventType.SEGMENT,
            session,
            {
                "segment_id": str(segment.id),
                "segment_number": segment_number,
                "text": result.text,
                "start_time": result.start_time,
                "end_time": result.end_time,
                "confidence": confidence,
                "speaker": result.speaker,
            },
        )

    async def _handle_provider_error(self, session: _LiveSession, error: Exception) -> None:
        logger.error(
            "live_session_provider_error",
            transcript_id=session.transcript_id,
            provider=session.provider_name,
            error=str(error),
        )
        await self._emit(
            EventType.TRANSCRIPTION_ERROR,
            session,
            {"error": str(error), "provider": session.provider_name},
            severity=EventSeverity.ERROR,
        )

        if session.worker is None:
            # Still starting: the failure reaches start_session's caller
            return

        task = asyncio.create_task(self._auto_stop(session))
        self._background.add(task)
        task.add_done_callback(self._background_done)

    async def _auto_stop(self, session: _LiveSession) -> None:
        if self._sessions.get(session.transcript_id) is not session:
            return
        await self.stop_session(session.transcript_id)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("live_session_auto_stop_failed", error=str(error))

    # === EVENTS ===

    async def _emit(
        self,
        event_type: EventType,
        session: _LiveSession,
        payload: dict[str, Any],
        severity: EventSeverity = EventSeverity.INFO,
    ) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.emit(
            event_type,
            source=EVENT_SOURCE,
            payload={"transcript_id": session.transcript_id, **payload},
            organization_id=session.organization_id,
            severity=severity,
        )
