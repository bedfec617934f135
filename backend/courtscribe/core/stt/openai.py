"""OpenAI batch transcription for uploaded recordings."""

import io
from dataclasses import dataclass, field
from typing import Any

from openai import AsyncOpenAI

from courtscribe.config import settings


@dataclass
class BatchSegment:
    """Segment of a recording, optionally attributed to a speaker."""

    text: str
    start: float  # seconds
    end: float  # seconds
    speaker: str | None = None


@dataclass
class BatchTranscription:
    """Result of transcribing a whole recording."""

    text: str
    language: str
    duration: float | None = None  # seconds
    segments: list[BatchSegment] = field(default_factory=list)
    model: str = ""


def _field(obj: Any, name: str, default: Any = None) -> Any:
    # SDK responses are objects; some fields come back as plain dicts
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class OpenAITranscriber:
    """
    Non-streaming transcription of complete recordings.

    whisper-1 is used for plain transcripts (verbose_json gives segment
    timestamps); gpt-4o-transcribe-diarize when speakers are wanted.
    """

    TRANSCRIPTION_MODEL = "whisper-1"
    DIARIZATION_MODEL = "gpt-4o-transcribe-diarize"

    def __init__(self, api_key: str | None = None, client: AsyncOpenAI | None = None):
        self._client = client or AsyncOpenAI(api_key=api_key or settings.api_key_for("whisper"))

    @property
    def name(self) -> str:
        return "whisper"

    async def transcribe(
        self,
        audio_data: bytes,
        filename: str = "audio.mp3",
        language: str | None = None,
        diarize: bool = False,
    ) -> BatchTranscription:
        """
        Transcribe a recording.

        Args:
            audio_data: Raw audio bytes
            filename: Filename with extension for format detection
            language: Optional language code (e.g., "en", "pl")
            diarize: Attribute segments to speakers
        """
        audio_file = io.BytesIO(audio_data)
        audio_file.name = filename

        model = self.DIARIZATION_MODEL if diarize else self.TRANSCRIPTION_MODEL
        params: dict[str, Any] = {"model": model, "file": audio_file}
        if diarize:
            params["response_format"] = "diarized_json"
        else:
            params["response_format"] = "verbose_json"
            params["timestamp_granularities"] = ["segment"]
        if language:
            params["language"] = language

        response = await self._client.audio.transcriptions.create(**params)

        segments = [
            BatchSegment(
                text=(_field(seg, "text", "") or "").strip(),
                start=float(_field(seg, "start", 0.0) or 0.0),
                end=float(_field(seg, "end", 0.0) or 0.0),
                speaker=_field(seg, "speaker") if diarize else None,
            )
            for seg in (_field(response, "segments") or [])
        ]

        text = _field(response, "text", "") or ""
        if not text and segments:
            text = " ".join(seg.text for seg in segments)

        return BatchTranscription(
            text=text,
            language=_field(response, "language") or language or "unknown",
            duration=_field(response, "duration"),
            segments=segments,
            model=model,
        )
