"""
Shared pytest fixtures for CourtScribe tests.

Test categories:
    - Unit tests: mocked or in-memory collaborators, no database
    - Integration tests: the FastAPI app and TranscriptService over an
      in-memory SQLite database (aiosqlite)
"""

import os
from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# =============================================================================
# Environment Setup
# =============================================================================

load_dotenv()

# Override settings BEFORE importing courtscribe modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("REQUIRE_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DEEPGRAM_API_KEY", "test-deepgram-key")
os.environ.setdefault("ASSEMBLYAI_API_KEY", "test-assemblyai-key")

from courtscribe.core.auth.jwt import create_access_token  # noqa: E402
from courtscribe.core.database.base import Base  # noqa: E402
from courtscribe.core.database.session import get_db  # noqa: E402
from courtscribe.core.events.bus import EventBus  # noqa: E402
from courtscribe.core.stt.base import TranscriptionConfig  # noqa: E402
from courtscribe.core.transcription.coordinator import LiveSessionCoordinator  # noqa: E402
from courtscribe.core.transcripts import models  # noqa: E402, F401
from courtscribe.core.transcripts.service import TranscriptService  # noqa: E402

from tests.fakes import FakeClock, FakeGateway, FakeProvider  # noqa: E402

ORG_ID = "org-district-court"
OTHER_ORG_ID = "org-other-court"
USER_ID = "user-clerk-1"


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine shared by every session of one test.

    StaticPool keeps a single connection so the in-memory database
    survives across sessions.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def transcript_service(test_session_factory) -> TranscriptService:
    return TranscriptService(test_session_factory)


@pytest_asyncio.fixture
async def transcript(transcript_service: TranscriptService):
    """A draft transcript owned by ORG_ID."""
    return await transcript_service.create_transcript(
        organization_id=ORG_ID,
        case_id="case-707-21",
        hearing_id="hearing-1",
        title="Preliminary hearing",
        created_by=USER_ID,
    )


# =============================================================================
# Live Transcription Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def providers() -> list[FakeProvider]:
    """Every FakeProvider built by provider_factory, in creation order."""
    return []


@pytest.fixture
def provider_factory(providers: list[FakeProvider]):
    def factory(config: TranscriptionConfig) -> FakeProvider:
        provider = FakeProvider(config)
        providers.append(provider)
        return provider

    return factory


@pytest.fixture
def stt_config() -> TranscriptionConfig:
    return TranscriptionConfig(provider="deepgram", api_key="test-deepgram-key", language="en")


@pytest.fixture
def coordinator(fake_gateway, event_bus, provider_factory) -> LiveSessionCoordinator:
    return LiveSessionCoordinator(
        fake_gateway,
        event_bus=event_bus,
        provider_factory=provider_factory,
        connect_timeout=1.0,
    )


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def app(
    test_session_factory,
    transcript_service: TranscriptService,
    provider_factory,
) -> AsyncGenerator[FastAPI, None]:
    """Application with services wired as the lifespan would wire them.

    Lifespan events aren't triggered by ASGITransport, so app.state is set
    up here against the SQLite database and fake recognizers.
    """
    from courtscribe.main import create_app

    app_instance = create_app()

    event_bus = EventBus()
    app_instance.state.event_bus = event_bus
    app_instance.state.transcript_service = transcript_service
    app_instance.state.live_coordinator = LiveSessionCoordinator(
        transcript_service,
        event_bus=event_bus,
        provider_factory=provider_factory,
        connect_timeout=1.0,
    )
    app_instance.state.transcriber = None

    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app_instance.dependency_overrides[get_db] = override_get_db

    yield app_instance

    await app_instance.state.live_coordinator.stop_all_sessions()
    app_instance.dependency_overrides.clear()


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# =============================================================================
# Authentication Fixtures
# =============================================================================


@pytest.fixture
def access_token() -> str:
    return create_access_token(user_id=USER_ID, organization_id=ORG_ID)


@pytest.fixture
def auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def other_org_headers() -> dict[str, str]:
    token = create_access_token(user_id="user-other", organization_id=OTHER_ORG_ID)
    return {"Authorization": f"Bearer {token}"}


# =============================================================================
# Mock Fixtures
# =============================================================================


@pytest.fixture
def mock_event_bus():
    """Create a mock event bus for unit tests."""
    bus = MagicMock()
    bus.emit = AsyncMock()
    bus.subscribe = MagicMock()
    bus.unsubscribe = MagicMock()
    bus.get_recent_events = MagicMock(return_value=[])
    bus.register_sse_client = MagicMock()
    bus.unregister_sse_client = MagicMock()
    return bus


@pytest.fixture
def mock_store() -> MagicMock:
    """ManualTranscriptStore double."""
    store = MagicMock()
    store.save_manual_entries = AsyncMock(return_value=[])
    return store


@pytest.fixture
def sample_audio_chunk() -> bytes:
    """Minimal MP3 frame header followed by silence."""
    return bytes([0xFF, 0xFB, 0x90, 0x00] + [0x00] * 100)


def emitted_types(bus: EventBus) -> list[str]:
    """Event types in emission order."""
    return [e.type for e in reversed(bus.get_recent_events(minutes=60))]


def payloads(bus: EventBus, event_type: str) -> list[dict[str, Any]]:
    return [e.payload for e in reversed(bus.get_recent_events(minutes=60, event_types=[event_type]))]
