"""Transcript, segment, speaker and annotation models."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courtscribe.core.database.base import Base, JSONType, TimestampMixin, UUIDMixin


class TranscriptStatus(str, Enum):
    """Transcript lifecycle status."""

    DRAFT = "draft"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    REVIEWED = "reviewed"
    FAILED = "failed"


class SegmentOrigin(str, Enum):
    """Which path produced a segment."""

    LIVE = "live"
    MANUAL = "manual"
    BATCH = "batch"


class Transcript(Base, UUIDMixin, TimestampMixin):
    """
    Transcript of a hearing.

    Tenant-scoped: every query filters on organization_id.
    """

    __tablename__ = "transcripts"

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    case_id: Mapped[str] = mapped_column(String(100), nullable=False)
    hearing_id: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default=TranscriptStatus.DRAFT.value, nullable=False)
    language: Mapped[str | None] = mapped_column(String(10), default="en")

    # deepgram, assemblyai, whisper, manual
    transcription_service: Mapped[str | None] = mapped_column(String(50))
    recording_url: Mapped[str | None] = mapped_column(String(1000))
    duration: Mapped[int | None] = mapped_column(Integer)  # seconds

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[str | None] = mapped_column(String(100))
    reviewed_by: Mapped[str | None] = mapped_column(String(100))
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    segments: Mapped[list["TranscriptSegment"]] = relationship(
        back_populates="transcript",
        cascade="all, delete-orphan",
        order_by="TranscriptSegment.segment_number",
    )
    speakers: Mapped[list["TranscriptSpeaker"]] = relationship(
        back_populates="transcript",
        cascade="all, delete-orphan",
    )
    annotations: Mapped[list["TranscriptAnnotation"]] = relationship(
        back_populates="transcript",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_transcripts_org", "organization_id"),
        Index("idx_transcripts_hearing", "hearing_id"),
        Index("idx_transcripts_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Transcript {self.id} {self.status}>"


class TranscriptSegment(Base, UUIDMixin):
    """
    One ordered piece of transcript text.

    segment_number is unique and gap-free per transcript (0..N-1) and is the
    playback order across live sessions, manual saves and batch runs.
    speaker_id holds the id of a TranscriptSpeaker of the same transcript.
    """

    __tablename__ = "transcript_segments"

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    transcript_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("transcripts.id", ondelete="CASCADE"),
        nullable=False,
    )
    speaker_id: Mapped[str | None] = mapped_column(String(100))
    segment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[int] = mapped_column(Integer, nullable=False)  # ms from start
    end_time: Mapped[int] = mapped_column(Integer, nullable=False)  # ms from start
    text: Mapped[str] = mapped_column(Text, nullable=False)
    original_text: Mapped[str | None] = mapped_column(Text)  # unedited recognizer output
    confidence: Mapped[int | None] = mapped_column(Integer)  # 0-100
    origin: Mapped[str] = mapped_column(String(20), default=SegmentOrigin.LIVE.value, nullable=False)

    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    edited_by: Mapped[str | None] = mapped_column(String(100))
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # "metadata" is reserved on declarative classes
    segment_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        nullable=False,
    )

    transcript: Mapped["Transcript"] = relationship(back_populates="segments")

    __table_args__ = (
        Index("idx_segments_org", "organization_id"),
        Index("idx_segments_number", "transcript_id", "segment_number", unique=True),
        Index("idx_segments_start_time", "transcript_id", "start_time"),
    )

    def __repr__(self) -> str:
        return f"<TranscriptSegment {self.transcript_id}#{self.segment_number}>"


class TranscriptSpeaker(Base, UUIDMixin):
    """
    A participant of the hearing (judge, prosecutor, witness, clerk, ...).

    speaker_label is the recognizer's label for this person ("Speaker A",
    "0"); user_id links to a system user when the speaker has an account.
    """

    __tablename__ = "transcript_speakers"

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    transcript_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("transcripts.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(100))
    speaker_label: Mapped[str | None] = mapped_column(String(20))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=datetime.utcnow,
        nullable=False,
    )

    transcript: Mapped["Transcript"] = relationship(back_populates="speakers")

    __table_args__ = (
        Index("idx_speakers_org", "organization_id"),
        Index("idx_speakers_transcript", "transcript_id"),
        Index("idx_speakers_role", "role"),
    )

    def __repr__(self) -> str:
        return f"<TranscriptSpeaker {self.name} ({self.role})>"


class TranscriptAnnotation(Base, UUIDMixin, TimestampMixin):
    """Note, highlight or bookmark on a transcript, optionally tied to a segment."""

    __tablename__ = "transcript_annotations"

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    transcript_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("transcripts.id", ondelete="CASCADE"),
        nullable=False,
    )
    segment_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("transcript_segments.id", ondelete="CASCADE"),
    )
    # note, highlight, bookmark, objection, key_testimony
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[str | None] = mapped_column(Text)
    start_time: Mapped[int | None] = mapped_column(Integer)  # ms from start
    end_time: Mapped[int | None] = mapped_column(Integer)
    color: Mapped[str | None] = mapped_column(String(20))
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    transcript: Mapped["Transcript"] = relationship(back_populates="annotations")

    __table_args__ = (
        Index("idx_annotations_org", "organization_id"),
        Index("idx_annotations_transcript", "transcript_id"),
        Index("idx_annotations_segment", "segment_id"),
        Index("idx_annotations_type", "type"),
    )

    def __repr__(self) -> str:
        return f"<TranscriptAnnotation {self.type} on {self.transcript_id}>"
