"""Base speech-to-text provider interface."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Union


class TranscriptionProviderType(str, Enum):
    """Known speech-to-text back-ends."""

    DEEPGRAM = "deepgram"
    ASSEMBLYAI = "assemblyai"
    WHISPER = "whisper"
    GOOGLE = "google"


@dataclass
class TranscriptionConfig:
    """Connection and recognition options for one streaming session."""

    provider: TranscriptionProviderType | str
    api_key: str
    language: str | None = None
    enable_speaker_diarization: bool = False
    punctuate: bool = True
    profanity_filter: bool = False
    model: str | None = None  # provider-specific model name
    sample_rate: int | None = None  # only for raw PCM streams
    encoding: str | None = None  # e.g. "linear16"; None lets the provider detect containers


@dataclass
class TranscriptionWord:
    """Word with timestamp."""

    text: str
    start: int  # ms
    end: int  # ms
    confidence: float | None = None


@dataclass
class TranscriptionResult:
    """Normalized recognizer event.

    Interim results (is_final=False) may still be revised or retracted by the
    recognizer; only final results are committed text.
    """

    text: str
    start_time: int  # ms, recognizer-relative
    end_time: int  # ms, recognizer-relative
    is_final: bool
    confidence: float | None = None  # 0.0 - 1.0
    speaker: str | None = None
    words: list[TranscriptionWord] = field(default_factory=list)


TranscriptCallback = Callable[[TranscriptionResult], Union[Awaitable[None], None]]
ErrorCallback = Callable[[Exception], Union[Awaitable[None], None]]


class SpeechToTextProvider(ABC):
    """
    Abstract base class for streaming speech-to-text providers.

    Lifecycle: connect() -> send_audio()* -> disconnect().
    Exactly one transcript callback and one error callback are active at a
    time; registering again replaces the previous one.
    """

    def __init__(self, config: TranscriptionConfig) -> None:
        self.config = config
        self._transcript_callback: TranscriptCallback | None = None
        self._error_callback: ErrorCallback | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the streaming channel. Raises ProviderConnectionError on failure."""
        ...

    @abstractmethod
    async def send_audio(self, chunk: bytes) -> None:
        """Forward one chunk of encoded audio, preserving call order on the wire."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the channel. Safe to call when no channel is open."""
        ...

    @property
    def is_connected(self) -> bool:
        return False

    def on_transcript(self, callback: TranscriptCallback) -> None:
        self._transcript_callback = callback

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callback = callback

    async def _emit_transcript(self, result: TranscriptionResult) -> None:
        await _invoke(self._transcript_callback, result)

    async def _emit_error(self, error: Exception) -> None:
        await _invoke(self._error_callback, error)


async def _invoke(callback: Callable[[Any], Any] | None, arg: Any) -> None:
    if callback is None:
        return
    if asyncio.iscoroutinefunction(callback):
        await callback(arg)
    else:
        callback(arg)
