"""Unit tests for the provider registry."""

import pytest

from courtscribe.core.stt.assemblyai import AssemblyAIProvider
from courtscribe.core.stt.base import TranscriptionConfig, TranscriptionProviderType
from courtscribe.core.stt.deepgram import DeepgramProvider
from courtscribe.core.stt.factory import create_provider, supported_providers
from courtscribe.core.transcription.exceptions import ConfigurationError


@pytest.mark.unit
class TestCreateProvider:
    """Tests for create_provider()."""

    def test_deepgram(self):
        provider = create_provider(
            TranscriptionConfig(provider=TranscriptionProviderType.DEEPGRAM, api_key="k")
        )
        assert isinstance(provider, DeepgramProvider)
        assert provider.is_connected is False

    def test_provider_name_is_case_insensitive(self):
        provider = create_provider(TranscriptionConfig(provider="AssemblyAI", api_key="k"))
        assert isinstance(provider, AssemblyAIProvider)

    def test_batch_only_provider_is_rejected(self):
        config = TranscriptionConfig(provider=TranscriptionProviderType.WHISPER, api_key="k")
        with pytest.raises(ConfigurationError, match="Unsupported provider: whisper"):
            create_provider(config)

    def test_unknown_provider_is_rejected(self):
        with pytest.raises(ConfigurationError, match="Unsupported provider"):
            create_provider(TranscriptionConfig(provider="acme", api_key="k"))

    def test_missing_api_key(self):
        config = TranscriptionConfig(provider="deepgram", api_key="")
        with pytest.raises(ConfigurationError, match="No API key"):
            create_provider(config)

    def test_supported_providers(self):
        assert supported_providers() == ["assemblyai", "deepgram"]


@pytest.mark.unit
class TestProviderSettings:
    """API key lookup per provider."""

    def test_provider_key_falls_back_to_shared_key(self):
        from courtscribe.config import Settings

        settings = Settings(
            _env_file=None,
            deepgram_api_key="",
            assemblyai_api_key="aai",
            openai_api_key="",
            transcription_api_key="shared",
        )

        assert settings.api_key_for("deepgram") == "shared"
        assert settings.api_key_for("assemblyai") == "aai"
        assert settings.api_key_for("whisper") == "shared"
