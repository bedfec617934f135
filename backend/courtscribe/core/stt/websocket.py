"""Shared WebSocket plumbing for streaming speech-to-text providers."""

import asyncio
import contextlib
import json
from abc import abstractmethod
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from courtscribe.config import settings
from courtscribe.core.logging import get_logger
from courtscribe.core.stt.base import SpeechToTextProvider, TranscriptionConfig, TranscriptionResult
from courtscribe.core.transcription.exceptions import ConfigurationError, ProviderConnectionError

logger = get_logger(__name__)


class WebSocketProvider(SpeechToTextProvider):
    """
    Streaming provider speaking JSON over a single WebSocket.

    Subclasses describe the wire format (URL, headers, message parsing, close
    message); this class owns the channel:

    - connect() opens the socket under a timeout and starts a reader task
    - the reader dispatches parsed results in arrival order
    - send_audio() writes binary frames in call order
    - disconnect() asks the provider to flush, drains final results, closes
    """

    # Sent as JSON before closing so the provider flushes pending finals
    close_message: dict[str, Any] | None = None
    drain_timeout: float = 2.0

    def __init__(
        self,
        config: TranscriptionConfig,
        connect_timeout: float | None = None,
    ) -> None:
        super().__init__(config)
        self._connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.stt_connect_timeout_seconds
        )
        self._ws: ClientConnection | None = None
        self._reader: asyncio.Task | None = None
        self._send_lock = asyncio.Lock()
        self._closing = False

    @abstractmethod
    def build_url(self) -> str:
        """Streaming endpoint including query parameters."""
        ...

    @abstractmethod
    def build_headers(self) -> dict[str, str]:
        """Handshake headers (authentication)."""
        ...

    @abstractmethod
    def parse_message(self, message: dict[str, Any]) -> TranscriptionResult | None:
        """
        Convert one provider message into a result.

        Returns None for messages that carry no transcript (metadata,
        session begin/end). Raises ProviderConnectionError for error messages.
        """
        ...

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._closing

    async def connect(self) -> None:
        if self._ws is not None:
            return
        if not self.config.api_key:
            raise ConfigurationError(f"No API key configured for provider: {self.name}")

        try:
            self._ws = await asyncio.wait_for(
                connect(self.build_url(), additional_headers=self.build_headers()),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning("stt_connect_timeout", provider=self.name, timeout=self._connect_timeout)
            raise ProviderConnectionError(
                f"{self.name} connection timed out after {self._connect_timeout}s"
            ) from e
        except (OSError, WebSocketException) as e:
            logger.warning("stt_connect_failed", provider=self.name, error=str(e))
            raise ProviderConnectionError(f"{self.name} connection failed: {e}") from e

        self._closing = False
        self._reader = asyncio.create_task(self._read_loop(self._ws), name=f"stt-reader-{self.name}")
        logger.info("stt_provider_connected", provider=self.name)

    async def send_audio(self, chunk: bytes) -> None:
        ws = self._ws
        if ws is None or self._closing:
            raise ProviderConnectionError(f"{self.name} is not connected")

        async with self._send_lock:
            try:
                await ws.send(chunk)
            except ConnectionClosed as e:
                raise ProviderConnectionError(f"{self.name} connection closed while sending audio") from e

    async def disconnect(self) -> None:
        ws = self._ws
        if ws is None or self._closing:
            return
        self._closing = True
        reader = self._reader

        try:
            if self.close_message is not None:
                async with self._send_lock:
                    await ws.send(json.dumps(self.close_message))
            if reader is not None and reader is not asyncio.current_task():
                await asyncio.wait_for(asyncio.shield(reader), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("stt_drain_timeout", provider=self.name, timeout=self.drain_timeout)
        except ConnectionClosed:
            logger.debug("stt_closed_before_drain", provider=self.name)
        finally:
            if reader is not None and not reader.done() and reader is not asyncio.current_task():
                reader.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reader
            await ws.close()
            self._ws = None
            self._reader = None
            logger.info("stt_provider_disconnected", provider=self.name)

    async def _read_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("stt_invalid_message", provider=self.name)
                    continue

                result = self.parse_message(message)
                if result is not None:
                    await self._emit_transcript(result)
        except ConnectionClosedError as e:
            if not self._closing:
                logger.warning("stt_connection_lost", provider=self.name, error=str(e))
                await self._emit_error(ProviderConnectionError(f"{self.name} connection lost: {e}"))
            return
        except ProviderConnectionError as e:
            logger.error("stt_provider_error", provider=self.name, error=str(e))
            await self._emit_error(e)
            return

        if not self._closing:
            logger.warning("stt_closed_by_provider", provider=self.name)
            await self._emit_error(ProviderConnectionError(f"{self.name} closed the connection"))
