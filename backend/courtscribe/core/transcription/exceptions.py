"""Errors raised by the transcription subsystem."""


class TranscriptionError(Exception):
    """Base class for transcription errors."""


class ConfigurationError(TranscriptionError):
    """Unsupported provider or incomplete provider configuration."""


class ProviderConnectionError(TranscriptionError, ConnectionError):
    """Provider channel failed to open, timed out, or dropped mid-session."""


class SessionNotFoundError(TranscriptionError, LookupError):
    """No active live session for the transcript."""

    def __init__(self, transcript_id: str) -> None:
        super().__init__(f"No active session for transcript {transcript_id}")
        self.transcript_id = transcript_id


class SessionAlreadyActiveError(TranscriptionError):
    """A live session already exists for the transcript."""

    def __init__(self, transcript_id: str) -> None:
        super().__init__(f"Transcript {transcript_id} already has an active session")
        self.transcript_id = transcript_id


class TranscriptNotFoundError(TranscriptionError, LookupError):
    """Transcript does not exist in the caller's organization."""

    def __init__(self, transcript_id: str) -> None:
        super().__init__(f"Transcript {transcript_id} not found")
        self.transcript_id = transcript_id


class PersistenceError(TranscriptionError):
    """The persistence gateway rejected a write."""


class ManualEntryError(TranscriptionError, ValueError):
    """Invalid manual transcript entry or nothing to save."""


class UnknownSpeakerError(TranscriptionError, ValueError):
    """speaker_id does not name a speaker of the transcript."""

    def __init__(self, speaker_id: str) -> None:
        super().__init__(f"Unknown speaker: {speaker_id}")
        self.speaker_id = speaker_id
