"""Transcript persistence: segment gateway, manual saves, speakers, annotations and queries."""

from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courtscribe.core.logging import get_logger
from courtscribe.core.transcription.exceptions import (
    PersistenceError,
    TranscriptNotFoundError,
    UnknownSpeakerError,
)
from courtscribe.core.transcription.manual import ManualTranscriptEntry, entries_to_segments
from courtscribe.core.transcripts.models import (
    SegmentOrigin,
    Transcript,
    TranscriptAnnotation,
    TranscriptSegment,
    TranscriptSpeaker,
    TranscriptStatus,
)

logger = get_logger(__name__)

# Saving manual work never demotes a transcript that is already finished
_FINISHED_STATUSES = {TranscriptStatus.COMPLETED.value, TranscriptStatus.REVIEWED.value}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(value: str | UUID, transcript_id: str | UUID | None = None) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as e:
        raise TranscriptNotFoundError(str(transcript_id or value)) from e


class TranscriptService:
    """
    Database-backed implementation of SegmentGateway and ManualTranscriptStore.

    Every call runs in its own session and is scoped to one organization.
    Database failures surface as PersistenceError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as db:
            try:
                yield db
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error("transcript_db_error", error=str(e))
                raise PersistenceError(str(e)) from e

    async def _get_transcript(
        self,
        db: AsyncSession,
        transcript_id: str | UUID,
        organization_id: str,
    ) -> Transcript:
        result = await db.execute(
            select(Transcript).where(
                Transcript.id == _as_uuid(transcript_id),
                Transcript.organization_id == organization_id,
            )
        )
        transcript = result.scalar_one_or_none()
        if transcript is None:
            raise TranscriptNotFoundError(str(transcript_id))
        return transcript

    async def _check_speakers(
        self,
        db: AsyncSession,
        transcript: Transcript,
        speaker_ids: Iterable[str | None],
    ) -> None:
        wanted = {str(s) for s in speaker_ids if s}
        if not wanted:
            return
        result = await db.execute(
            select(TranscriptSpeaker.id).where(
                TranscriptSpeaker.transcript_id == transcript.id,
                TranscriptSpeaker.organization_id == transcript.organization_id,
            )
        )
        known = {str(speaker_id) for speaker_id in result.scalars()}
        unknown = sorted(wanted - known)
        if unknown:
            raise UnknownSpeakerError(unknown[0])

    # Transcripts

    async def create_transcript(
        self,
        organization_id: str,
        case_id: str,
        hearing_id: str,
        title: str,
        language: str = "en",
        created_by: str | None = None,
        status: str = TranscriptStatus.DRAFT.value,
    ) -> Transcript:
        async with self._session() as db:
            transcript = Transcript(
                organization_id=organization_id,
                case_id=case_id,
                hearing_id=hearing_id,
                title=title,
                language=language,
                status=TranscriptStatus(status).value,
                created_by=created_by,
            )
            db.add(transcript)
            await db.commit()
            await db.refresh(transcript)
            logger.info("transcript_created", transcript_id=str(transcript.id), hearing_id=hearing_id)
            return transcript

    async def get_transcript(self, transcript_id: str | UUID, organization_id: str) -> Transcript:
        async with self._session() as db:
            return await self._get_transcript(db, transcript_id, organization_id)

    async def list_transcripts_by_hearing(self, hearing_id: str, organization_id: str) -> list[Transcript]:
        """Transcripts of one hearing, newest first."""
        async with self._session() as db:
            result = await db.execute(
                select(Transcript)
                .where(
                    Transcript.hearing_id == hearing_id,
                    Transcript.organization_id == organization_id,
                )
                .order_by(Transcript.created_at.desc())
            )
            return list(result.scalars().all())

    async def list_transcripts_by_case(self, case_id: str, organization_id: str) -> list[Transcript]:
        """Transcripts of every hearing of a case, newest first."""
        async with self._session() as db:
            result = await db.execute(
                select(Transcript)
                .where(
                    Transcript.case_id == case_id,
                    Transcript.organization_id == organization_id,
                )
                .order_by(Transcript.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_transcript_details(
        self,
        transcript_id: str | UUID,
        organization_id: str,
    ) -> dict[str, Any]:
        """Transcript with its speakers, segments and annotations."""
        transcript = await self.get_transcript(transcript_id, organization_id)
        return {
            "transcript": transcript,
            "speakers": await self.list_speakers(transcript_id, organization_id),
            "segments": await self.list_segments(transcript_id, organization_id),
            "annotations": await self.list_annotations(transcript_id, organization_id),
        }

    async def start_transcription(
        self,
        transcript_id: str | UUID,
        organization_id: str,
        service_name: str,
    ) -> Transcript:
        """Mark a transcript in-progress and record which service produces it."""
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            transcript.status = TranscriptStatus.IN_PROGRESS.value
            transcript.transcription_service = service_name
            transcript.started_at = _utcnow()
            await db.commit()
            logger.info("transcription_started", transcript_id=str(transcript_id), service=service_name)
            return transcript

    async def update_transcript_status(
        self,
        transcript_id: str | UUID,
        organization_id: str,
        status: str,
        user_id: str | None = None,
    ) -> Transcript:
        """
        Set the transcript status.

        completed stamps completed_at; reviewed with a user records the
        reviewer.
        """
        status = TranscriptStatus(status).value
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            transcript.status = status
            if status == TranscriptStatus.COMPLETED.value:
                transcript.completed_at = _utcnow()
            elif status == TranscriptStatus.REVIEWED.value and user_id:
                transcript.reviewed_by = user_id
                transcript.reviewed_at = _utcnow()
            await db.commit()
            logger.info("transcript_status_updated", transcript_id=str(transcript_id), status=status)
            return transcript

    # Segments

    async def _next_number(self, db: AsyncSession, transcript: Transcript) -> int:
        result = await db.execute(
            select(func.max(TranscriptSegment.segment_number)).where(
                TranscriptSegment.transcript_id == transcript.id
            )
        )
        highest = result.scalar_one_or_none()
        return 0 if highest is None else highest + 1

    async def next_segment_number(self, transcript_id: str | UUID, organization_id: str) -> int:
        """Number the next appended segment gets: one past the highest stored."""
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            return await self._next_number(db, transcript)

    async def create_segment(
        self,
        organization_id: str,
        transcript_id: str | UUID,
        segment_number: int,
        start_time: int,
        end_time: int,
        text: str,
        confidence: int | None = None,
        speaker_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        origin: str = SegmentOrigin.LIVE.value,
    ) -> TranscriptSegment:
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            segment = TranscriptSegment(
                organization_id=organization_id,
                transcript_id=transcript.id,
                segment_number=segment_number,
                start_time=start_time,
                end_time=end_time,
                text=text,
                original_text=text,
                confidence=confidence,
                speaker_id=speaker_id,
                origin=SegmentOrigin(origin).value,
                segment_metadata=metadata,
            )
            db.add(segment)
            await db.commit()
            await db.refresh(segment)
            return segment

    async def create_segments_batch(
        self,
        organization_id: str,
        segments: Sequence[dict[str, Any]],
    ) -> list[TranscriptSegment]:
        """
        Insert several segments in one transaction.

        Each dict names its transcript_id and segment_number; a number already
        taken on that transcript fails the whole batch with PersistenceError.
        """
        if not segments:
            return []

        async with self._session() as db:
            transcript_ids = {_as_uuid(s["transcript_id"]) for s in segments}
            for transcript_id in transcript_ids:
                await self._get_transcript(db, transcript_id, organization_id)

            created = [self._build_segment(organization_id, data) for data in segments]
            db.add_all(created)
            await db.commit()
            return created

    @staticmethod
    def _build_segment(organization_id: str, data: dict[str, Any]) -> TranscriptSegment:
        return TranscriptSegment(
            organization_id=organization_id,
            transcript_id=_as_uuid(data["transcript_id"]),
            segment_number=data["segment_number"],
            start_time=data["start_time"],
            end_time=data["end_time"],
            text=data["text"],
            original_text=data["text"],
            confidence=data.get("confidence"),
            speaker_id=data.get("speaker_id"),
            origin=SegmentOrigin(data.get("origin", SegmentOrigin.LIVE.value)).value,
            segment_metadata=data.get("metadata"),
        )

    async def replace_segments(
        self,
        organization_id: str,
        transcript_id: str | UUID,
        segments: Sequence[dict[str, Any]],
        origin: str,
        status: str | None = None,
    ) -> list[TranscriptSegment]:
        """
        Replace every segment of one origin with a new batch.

        The remaining segments are renumbered 0..k-1 keeping their order and
        the new batch is appended as k, k+1, ... in list order; the numbers
        carried by the payloads are ignored. Runs in a single transaction,
        optionally setting the transcript status in the same commit.
        """
        origin = SegmentOrigin(origin).value
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            await self._check_speakers(db, transcript, (s.get("speaker_id") for s in segments))
            await db.execute(
                delete(TranscriptSegment).where(
                    TranscriptSegment.transcript_id == transcript.id,
                    TranscriptSegment.origin == origin,
                )
            )
            kept = await self._compact_numbers(db, transcript)
            created = [
                self._build_segment(
                    organization_id,
                    {
                        **data,
                        "transcript_id": transcript.id,
                        "origin": origin,
                        "segment_number": kept + index,
                    },
                )
                for index, data in enumerate(segments)
            ]
            db.add_all(created)

            if status is not None:
                transcript.status = status
                if status == TranscriptStatus.COMPLETED.value:
                    transcript.completed_at = _utcnow()

            await db.commit()
            return created

    async def _compact_numbers(self, db: AsyncSession, transcript: Transcript) -> int:
        """Close the gaps left by a delete; returns the number of segments kept."""
        result = await db.execute(
            select(TranscriptSegment.id, TranscriptSegment.segment_number)
            .where(TranscriptSegment.transcript_id == transcript.id)
            .order_by(TranscriptSegment.segment_number)
        )
        rows = result.all()
        # Ascending one-row updates only ever move a segment onto a freed number
        for number, (segment_id, current) in enumerate(rows):
            if current != number:
                await db.execute(
                    update(TranscriptSegment)
                    .where(TranscriptSegment.id == segment_id)
                    .values(segment_number=number)
                    .execution_options(synchronize_session=False)
                )
        return len(rows)

    async def save_manual_entries(
        self,
        organization_id: str,
        transcript_id: str | UUID,
        entries: Sequence[ManualTranscriptEntry],
        final: bool = False,
        user_id: str | None = None,
    ) -> list[TranscriptSegment]:
        """
        Persist the full manual entry list (last writer wins).

        Auto-save leaves the transcript in-progress; a final save completes it
        unless it is already completed or reviewed.
        """
        transcript = await self.get_transcript(transcript_id, organization_id)
        if final:
            status = (
                transcript.status
                if transcript.status in _FINISHED_STATUSES
                else TranscriptStatus.COMPLETED.value
            )
        else:
            status = (
                transcript.status
                if transcript.status in _FINISHED_STATUSES
                else TranscriptStatus.IN_PROGRESS.value
            )

        created = await self.replace_segments(
            organization_id,
            transcript_id,
            entries_to_segments(entries),
            origin=SegmentOrigin.MANUAL.value,
            status=status,
        )
        logger.info(
            "manual_entries_saved",
            transcript_id=str(transcript_id),
            entries=len(created),
            final=final,
            user_id=user_id,
        )
        return created

    async def list_segments(
        self,
        transcript_id: str | UUID,
        organization_id: str,
    ) -> list[TranscriptSegment]:
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            result = await db.execute(
                select(TranscriptSegment)
                .where(
                    TranscriptSegment.transcript_id == transcript.id,
                    TranscriptSegment.organization_id == organization_id,
                )
                .order_by(TranscriptSegment.segment_number)
            )
            return list(result.scalars().all())

    async def search_segments(
        self,
        transcript_id: str | UUID,
        organization_id: str,
        query: str,
    ) -> list[TranscriptSegment]:
        """Case-insensitive substring search within one transcript."""
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            result = await db.execute(
                select(TranscriptSegment)
                .where(
                    TranscriptSegment.transcript_id == transcript.id,
                    TranscriptSegment.organization_id == organization_id,
                    TranscriptSegment.text.ilike(f"%{query}%"),
                )
                .order_by(TranscriptSegment.segment_number)
            )
            return list(result.scalars().all())

    async def update_segment(
        self,
        segment_id: str | UUID,
        organization_id: str,
        text: str | None = None,
        speaker_id: str | None = None,
        user_id: str | None = None,
    ) -> TranscriptSegment:
        """Edit a segment; the recognizer's wording stays in original_text."""
        async with self._session() as db:
            result = await db.execute(
                select(TranscriptSegment).where(
                    TranscriptSegment.id == _as_uuid(segment_id),
                    TranscriptSegment.organization_id == organization_id,
                )
            )
            segment = result.scalar_one_or_none()
            if segment is None:
                raise TranscriptNotFoundError(str(segment_id))

            if text is not None:
                segment.text = text
            if speaker_id is not None:
                if speaker_id:
                    transcript = await self._get_transcript(db, segment.transcript_id, organization_id)
                    await self._check_speakers(db, transcript, [speaker_id])
                segment.speaker_id = speaker_id or None
            segment.is_edited = True
            segment.edited_by = user_id
            segment.edited_at = _utcnow()
            await db.commit()
            return segment

    # Speakers

    async def add_speaker(
        self,
        organization_id: str,
        transcript_id: str | UUID,
        name: str,
        role: str,
        user_id: str | None = None,
        speaker_label: str | None = None,
        notes: str | None = None,
    ) -> TranscriptSpeaker:
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            speaker = TranscriptSpeaker(
                organization_id=organization_id,
                transcript_id=transcript.id,
                name=name,
                role=role,
                user_id=user_id,
                speaker_label=speaker_label,
                notes=notes,
            )
            db.add(speaker)
            await db.commit()
            await db.refresh(speaker)
            logger.info("speaker_added", transcript_id=str(transcript_id), role=role)
            return speaker

    async def list_speakers(
        self,
        transcript_id: str | UUID,
        organization_id: str,
    ) -> list[TranscriptSpeaker]:
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            result = await db.execute(
                select(TranscriptSpeaker)
                .where(
                    TranscriptSpeaker.transcript_id == transcript.id,
                    TranscriptSpeaker.organization_id == organization_id,
                )
                .order_by(TranscriptSpeaker.created_at)
            )
            return list(result.scalars().all())

    # Annotations

    async def add_annotation(
        self,
        organization_id: str,
        transcript_id: str | UUID,
        annotation_type: str,
        created_by: str,
        content: str | None = None,
        segment_id: str | UUID | None = None,
        start_time: int | None = None,
        end_time: int | None = None,
        color: str | None = None,
    ) -> TranscriptAnnotation:
        """Annotate a transcript; segment_id must be a segment of the same transcript."""
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)

            segment_uuid = None
            if segment_id is not None:
                result = await db.execute(
                    select(TranscriptSegment.id).where(
                        TranscriptSegment.id == _as_uuid(segment_id),
                        TranscriptSegment.transcript_id == transcript.id,
                    )
                )
                segment_uuid = result.scalar_one_or_none()
                if segment_uuid is None:
                    raise TranscriptNotFoundError(str(segment_id))

            annotation = TranscriptAnnotation(
                organization_id=organization_id,
                transcript_id=transcript.id,
                segment_id=segment_uuid,
                type=annotation_type,
                content=content,
                start_time=start_time,
                end_time=end_time,
                color=color,
                created_by=created_by,
            )
            db.add(annotation)
            await db.commit()
            await db.refresh(annotation)
            return annotation

    async def list_annotations(
        self,
        transcript_id: str | UUID,
        organization_id: str,
    ) -> list[TranscriptAnnotation]:
        """Annotations of a transcript, newest first."""
        async with self._session() as db:
            transcript = await self._get_transcript(db, transcript_id, organization_id)
            result = await db.execute(
                select(TranscriptAnnotation)
                .where(
                    TranscriptAnnotation.transcript_id == transcript.id,
                    TranscriptAnnotation.organization_id == organization_id,
                )
                .order_by(TranscriptAnnotation.created_at.desc())
            )
            return list(result.scalars().all())

    async def delete_annotation(
        self,
        annotation_id: str | UUID,
        organization_id: str,
        user_id: str,
    ) -> bool:
        """Delete an annotation; only its author may. Returns False when nothing matched."""
        try:
            annotation_uuid = _as_uuid(annotation_id)
        except TranscriptNotFoundError:
            return False

        async with self._session() as db:
            result = await db.execute(
                delete(TranscriptAnnotation).where(
                    TranscriptAnnotation.id == annotation_uuid,
                    TranscriptAnnotation.organization_id == organization_id,
                    TranscriptAnnotation.created_by == user_id,
                )
            )
            await db.commit()
            return result.rowcount > 0

    # Statistics

    async def get_transcript_stats(
        self,
        transcript_id: str | UUID,
        organization_id: str,
    ) -> dict[str, Any]:
        segments = await self.list_segments(transcript_id, organization_id)

        total = len(segments)
        words = sum(len(s.text.split()) for s in segments)
        scored = [s.confidence for s in segments if s.confidence is not None]
        edited = sum(1 for s in segments if s.is_edited)
        speakers = Counter(s.speaker_id for s in segments if s.speaker_id)

        return {
            "total_segments": total,
            "total_words": words,
            "average_confidence": round(sum(scored) / len(scored)) if scored else None,
            "edited_segments": edited,
            "edited_percentage": round(edited * 100 / total) if total else 0,
            "speaker_segments": dict(speakers),
        }
