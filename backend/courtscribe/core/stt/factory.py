"""Provider registry and factory."""

from courtscribe.core.stt.assemblyai import AssemblyAIProvider
from courtscribe.core.stt.base import SpeechToTextProvider, TranscriptionConfig, TranscriptionProviderType
from courtscribe.core.stt.deepgram import DeepgramProvider
from courtscribe.core.transcription.exceptions import ConfigurationError

_PROVIDERS: dict[str, type[SpeechToTextProvider]] = {
    TranscriptionProviderType.DEEPGRAM.value: DeepgramProvider,
    TranscriptionProviderType.ASSEMBLYAI.value: AssemblyAIProvider,
}


def _provider_key(provider: TranscriptionProviderType | str) -> str:
    if isinstance(provider, TranscriptionProviderType):
        return provider.value
    return str(provider).strip().lower()


def supported_providers() -> list[str]:
    return sorted(_PROVIDERS)


def create_provider(config: TranscriptionConfig) -> SpeechToTextProvider:
    """
    Build an unconnected provider for the configured back-end.

    Raises:
        ConfigurationError: unknown or non-streaming provider, or no API key
    """
    key = _provider_key(config.provider)
    provider_class = _PROVIDERS.get(key)
    if provider_class is None:
        raise ConfigurationError(f"Unsupported provider: {key}")
    if not config.api_key:
        raise ConfigurationError(f"No API key configured for provider: {key}")
    return provider_class(config)
