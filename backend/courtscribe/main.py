"""FastAPI application factory."""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, AsyncGenerator

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from courtscribe.api.deps import LiveCoordinator
from courtscribe.api.v1.router import api_router
from courtscribe.config import settings
from courtscribe.core.database.migration_check import require_migrations
from courtscribe.core.database.session import async_session_factory, engine, get_db
from courtscribe.core.events.bus import EventBus
from courtscribe.core.events.types import EventSeverity, EventType
from courtscribe.core.logging import LoggingMiddleware, get_logger, setup_logging
from courtscribe.core.shutdown import ShutdownCoordinator
from courtscribe.core.stt.factory import supported_providers
from courtscribe.core.stt.openai import OpenAITranscriber
from courtscribe.core.transcription.coordinator import LiveSessionCoordinator
from courtscribe.core.transcripts.service import TranscriptService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle management."""

    # === STARTUP ===
    # Initialize structured logging FIRST
    setup_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
        is_development=settings.is_development,
        logs_dir=settings.logs_dir,
        log_to_file=settings.log_to_file,
        log_file_max_bytes=settings.log_file_max_bytes,
        log_file_backup_count=settings.log_file_backup_count,
    )

    logger = get_logger(__name__)
    logger.info("application_starting", app_name=settings.app_name, environment=settings.app_env)

    try:
        await require_migrations(
            engine, fail_on_outdated=settings.require_migrations_on_startup
        )
    except RuntimeError as e:
        logger.error("migration_check_failed", error=str(e))
        raise  # Stop application startup

    # 1. Core services
    event_bus = EventBus()
    transcript_service = TranscriptService(async_session_factory)
    live_coordinator = LiveSessionCoordinator(transcript_service, event_bus=event_bus)
    transcriber = (
        OpenAITranscriber(api_key=settings.api_key_for("whisper"))
        if settings.api_key_for("whisper")
        else None
    )

    # 2. Shutdown: flush live sessions before the process exits
    shutdown_coordinator = ShutdownCoordinator(timeout=settings.shutdown_timeout_seconds)
    shutdown_coordinator.register_callback(live_coordinator.stop_all_sessions)
    shutdown_coordinator.setup_signal_handlers()

    # 3. Store in app state
    app.state.event_bus = event_bus
    app.state.transcript_service = transcript_service
    app.state.live_coordinator = live_coordinator
    app.state.transcriber = transcriber
    app.state.shutdown_coordinator = shutdown_coordinator
    app.state.start_time = time.time()

    logger.info(
        "application_started_successfully",
        app_name=settings.app_name,
        providers=supported_providers(),
        batch_transcription=transcriber is not None,
    )

    await event_bus.emit(
        event_type=EventType.SYSTEM_STARTUP,
        source="system",
        payload={"app_name": settings.app_name, "environment": settings.app_env},
        severity=EventSeverity.SUCCESS,
    )

    yield

    # === SHUTDOWN ===
    shutdown_start = time.time()
    logger.info("application_shutting_down", app_name=settings.app_name)

    await event_bus.emit(
        event_type=EventType.SYSTEM_SHUTDOWN,
        source="system",
        payload={
            "app_name": settings.app_name,
            "uptime_seconds": time.time() - app.state.start_time,
            "active_sessions": len(live_coordinator.active_sessions()),
        },
        severity=EventSeverity.WARNING,
    )

    # Stops live sessions (no-op if a signal already did)
    await shutdown_coordinator.run_callbacks()

    await engine.dispose()

    logger.info(
        "application_shutdown_complete",
        app_name=settings.app_name,
        shutdown_duration_seconds=time.time() - shutdown_start,
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        description="Court hearing transcription: live, manual and recorded",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        openapi_url="/api/openapi.json" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (adds correlation IDs and request context)
    app.add_middleware(LoggingMiddleware)

    app.include_router(api_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check(
        db: Annotated[AsyncSession, Depends(get_db)],
        coordinator: LiveCoordinator,
    ) -> dict:
        """Health check - NO AUTH REQUIRED."""
        logger = get_logger(__name__)

        db_status = "unknown"
        db_latency = None
        try:
            db_start = time.time()
            await db.execute(text("SELECT 1"))
            db_latency = round((time.time() - db_start) * 1000, 2)
            db_status = "connected"
        except Exception as e:
            db_status = "error"
            logger.error("health_database_failed", error=str(e))

        start_time = getattr(app.state, "start_time", None)

        return {
            "status": "healthy" if db_status == "connected" else "degraded",
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "uptime_seconds": round(time.time() - start_time, 2) if start_time else None,
            "version": "0.1.0",
            "environment": settings.app_env,
            "database": {
                "status": db_status,
                "latency_ms": db_latency,
            },
            "live_sessions": len(coordinator.active_sessions()),
            "providers": {
                name: bool(settings.api_key_for(name)) for name in supported_providers()
            },
            "batch_transcription": getattr(app.state, "transcriber", None) is not None,
        }

    return app


app = create_app()
