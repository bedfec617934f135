"""Event types and models."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Core event types in the system."""

    # Live transcription
    SESSION_STARTED = "transcription.session_started"
    SESSION_STOPPED = "transcription.session_stopped"
    INTERIM = "transcription.interim"
    SEGMENT = "transcription.segment"
    SEGMENT_FAILED = "transcription.segment_failed"
    TRANSCRIPTION_ERROR = "transcription.error"

    # Manual and batch transcription
    MANUAL_SAVED = "transcription.manual_saved"
    BATCH_COMPLETED = "transcription.batch_completed"
    BATCH_FAILED = "transcription.batch_failed"

    # System events
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class EventSeverity(str, Enum):
    """Event severity."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class Event(BaseModel):
    """Event model for the event bus."""

    id: UUID = Field(default_factory=uuid4)
    type: str
    source: str  # Origin: "core:live", "core:manual", "core:batch"
    payload: dict[str, Any] = Field(default_factory=dict)
    severity: EventSeverity = EventSeverity.INFO
    organization_id: str | None = None  # None = system-wide
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def transcript_id(self) -> str | None:
        value = self.payload.get("transcript_id")
        return str(value) if value is not None else None
