"""Graceful shutdown coordinator.

On SIGTERM/SIGINT the registered cleanup callbacks run once (live sessions
are stopped so their final segments reach the database) and the previously
installed handler, usually uvicorn's, is chained so the server still exits.
"""

import asyncio
import signal
from typing import Any, Callable

from courtscribe.core.logging import get_logger

logger = get_logger(__name__)


class ShutdownCoordinator:
    """
    Coordinates graceful shutdown across application components.

    Usage:
        coordinator = ShutdownCoordinator(timeout=settings.shutdown_timeout_seconds)
        coordinator.setup_signal_handlers()
        coordinator.register_callback(live_coordinator.stop_all_sessions)

        if coordinator.is_shutdown_requested():
            # refuse new live sessions
            ...
    """

    def __init__(self, timeout: int = 30):
        self.timeout = timeout
        self.shutdown_event = asyncio.Event()
        self.is_shutting_down = False
        self._shutdown_callbacks: list[Callable] = []
        self._previous_handlers: dict[int, Any] = {}
        self._callbacks_started = False
        logger.info("shutdown_coordinator_initialized", timeout_seconds=timeout)

    def register_callback(self, callback: Callable) -> None:
        """Register a sync or async callback to run during shutdown."""
        self._shutdown_callbacks.append(callback)
        logger.debug("shutdown_callback_registered", callback_name=getattr(callback, "__name__", repr(callback)))

    def is_shutdown_requested(self) -> bool:
        return self.is_shutting_down

    def setup_signal_handlers(self) -> None:
        """Install SIGTERM and SIGINT handlers, chaining the existing ones."""

        def signal_handler(signum: int, frame: Any) -> None:
            sig_name = signal.Signals(signum).name
            logger.warning(
                "shutdown_signal_received",
                signal=sig_name,
                timeout_seconds=self.timeout,
            )
            self.is_shutting_down = True

            try:
                asyncio.get_running_loop().create_task(self.run_callbacks())
            except RuntimeError:
                # No running loop; the lifespan shutdown runs the callbacks
                logger.debug("shutdown_no_event_loop", signal=sig_name)

            previous = self._previous_handlers.get(signum)
            if callable(previous):
                previous(signum, frame)

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, signal_handler)

        logger.info("shutdown_handlers_registered", signals=["SIGTERM", "SIGINT"])

    async def run_callbacks(self) -> None:
        """Run every registered callback once, within the timeout."""
        if self._callbacks_started:
            await self.shutdown_event.wait()
            return
        self._callbacks_started = True
        self.is_shutting_down = True
        logger.info("shutdown_initiated", timeout_seconds=self.timeout)

        try:
            await asyncio.wait_for(self._run_all(), timeout=self.timeout)
            logger.info("shutdown_completed_gracefully")
        except asyncio.TimeoutError:
            logger.warning(
                "shutdown_timeout_exceeded",
                timeout_seconds=self.timeout,
                message="Some live sessions may not have been flushed",
            )
        finally:
            self.shutdown_event.set()

    async def _run_all(self) -> None:
        for callback in self._shutdown_callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback()
                else:
                    callback()
            except Exception as e:
                logger.error(
                    "shutdown_callback_error",
                    callback_name=getattr(callback, "__name__", repr(callback)),
                    error=str(e),
                )

    async def wait_for_shutdown(self) -> None:
        await self.shutdown_event.wait()
