"""Live and manual transcription."""

from courtscribe.core.transcription.exceptions import (
    ConfigurationError,
    ManualEntryError,
    PersistenceError,
    ProviderConnectionError,
    SessionAlreadyActiveError,
    SessionNotFoundError,
    TranscriptionError,
    TranscriptNotFoundError,
)

__all__ = [
    "ConfigurationError",
    "ManualEntryError",
    "PersistenceError",
    "ProviderConnectionError",
    "SessionAlreadyActiveError",
    "SessionNotFoundError",
    "TranscriptionError",
    "TranscriptNotFoundError",
]
