"""AssemblyAI universal streaming (v3) provider."""

from typing import Any
from urllib.parse import urlencode

from courtscribe.config import settings
from courtscribe.core.stt.base import TranscriptionConfig, TranscriptionResult, TranscriptionWord
from courtscribe.core.stt.websocket import WebSocketProvider
from courtscribe.core.transcription.exceptions import ProviderConnectionError


class AssemblyAIProvider(WebSocketProvider):
    """
    AssemblyAI streaming over the v3 WebSocket API.

    Audio must be raw PCM. Results arrive as "Turn" messages; a turn is final
    once it has ended and its formatted text has been delivered. Word times
    are already in ms.
    """

    DEFAULT_SAMPLE_RATE = 16000
    DEFAULT_ENCODING = "pcm_s16le"

    close_message = {"type": "Terminate"}

    def __init__(
        self,
        config: TranscriptionConfig,
        url: str | None = None,
        connect_timeout: float | None = None,
    ) -> None:
        super().__init__(config, connect_timeout=connect_timeout)
        self._url = url or settings.assemblyai_url

    @property
    def name(self) -> str:
        return "assemblyai"

    def build_url(self) -> str:
        params: dict[str, Any] = {
            "sample_rate": self.config.sample_rate or self.DEFAULT_SAMPLE_RATE,
            "encoding": self.config.encoding or self.DEFAULT_ENCODING,
            "format_turns": "true",
        }
        if self.config.model:
            params["speech_model"] = self.config.model
        if self.config.enable_speaker_diarization:
            params["speaker_labels"] = "true"
        return f"{self._url}?{urlencode(params)}"

    def build_headers(self) -> dict[str, str]:
        return {"Authorization": self.config.api_key}

    def parse_message(self, message: dict[str, Any]) -> TranscriptionResult | None:
        if "error" in message:
            raise ProviderConnectionError(f"AssemblyAI error: {message['error']}")

        if message.get("type") != "Turn":
            # Begin / Termination
            return None

        raw_words = message.get("words") or []
        words = [
            TranscriptionWord(
                text=w.get("text", ""),
                start=int(w.get("start") or 0),
                end=int(w.get("end") or 0),
                confidence=w.get("confidence"),
            )
            for w in raw_words
        ]

        scores = [w.confidence for w in words if w.confidence is not None]
        confidence = sum(scores) / len(scores) if scores else None

        is_final = bool(message.get("end_of_turn")) and bool(message.get("turn_is_formatted"))
        speaker = message.get("speaker_label")

        return TranscriptionResult(
            text=message.get("transcript", ""),
            start_time=words[0].start if words else 0,
            end_time=words[-1].end if words else 0,
            is_final=is_final,
            confidence=confidence,
            speaker=str(speaker) if speaker is not None else None,
            words=words,
        )
