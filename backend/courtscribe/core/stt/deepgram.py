"""Deepgram streaming provider."""

from typing import Any
from urllib.parse import urlencode

from courtscribe.config import settings
from courtscribe.core.stt.base import TranscriptionConfig, TranscriptionResult, TranscriptionWord
from courtscribe.core.stt.websocket import WebSocketProvider
from courtscribe.core.transcription.exceptions import ProviderConnectionError


def _ms(seconds: float | None) -> int:
    return int(round((seconds or 0.0) * 1000))


def _flag(value: bool) -> str:
    return "true" if value else "false"


class DeepgramProvider(WebSocketProvider):
    """
    Deepgram live transcription (v1/listen).

    Deepgram reports times in seconds; results are converted to ms.
    Speaker labels come from the first word when diarization is on.
    """

    DEFAULT_MODEL = "nova-2"
    DEFAULT_LANGUAGE = "en-US"

    close_message = {"type": "CloseStream"}

    def __init__(
        self,
        config: TranscriptionConfig,
        url: str | None = None,
        connect_timeout: float | None = None,
    ) -> None:
        super().__init__(config, connect_timeout=connect_timeout)
        self._url = url or settings.deepgram_url

    @property
    def name(self) -> str:
        return "deepgram"

    def build_url(self) -> str:
        params: dict[str, Any] = {
            "model": self.config.model or self.DEFAULT_MODEL,
            "language": self.config.language or self.DEFAULT_LANGUAGE,
            "punctuate": _flag(self.config.punctuate),
            "diarize": _flag(self.config.enable_speaker_diarization),
            "smart_format": "true",
            "profanity_filter": _flag(self.config.profanity_filter),
            "interim_results": "true",
        }
        if self.config.encoding:
            params["encoding"] = self.config.encoding
        if self.config.sample_rate:
            params["sample_rate"] = self.config.sample_rate
        return f"{self._url}?{urlencode(params)}"

    def build_headers(self) -> dict[str, str]:
        return {"Authorization": f"Token {self.config.api_key}"}

    def parse_message(self, message: dict[str, Any]) -> TranscriptionResult | None:
        msg_type = message.get("type")

        if msg_type == "Error" or "err_code" in message:
            detail = message.get("description") or message.get("err_msg") or "unknown error"
            raise ProviderConnectionError(f"Deepgram error: {detail}")

        if msg_type != "Results":
            return None

        alternatives = (message.get("channel") or {}).get("alternatives") or []
        if not alternatives:
            return None
        best = alternatives[0]

        raw_words = best.get("words") or []
        words = [
            TranscriptionWord(
                text=w.get("punctuated_word") or w.get("word", ""),
                start=_ms(w.get("start")),
                end=_ms(w.get("end")),
                confidence=w.get("confidence"),
            )
            for w in raw_words
        ]

        speaker = None
        if raw_words and raw_words[0].get("speaker") is not None:
            speaker = str(raw_words[0]["speaker"])

        start = message.get("start") or 0.0
        duration = message.get("duration") or 0.0

        return TranscriptionResult(
            text=best.get("transcript", ""),
            start_time=_ms(start),
            end_time=_ms(start + duration),
            is_final=bool(message.get("is_final")),
            confidence=best.get("confidence"),
            speaker=speaker,
            words=words,
        )
