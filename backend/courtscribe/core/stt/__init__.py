"""Speech-to-text providers."""

from courtscribe.core.stt.base import (
    SpeechToTextProvider,
    TranscriptionConfig,
    TranscriptionProviderType,
    TranscriptionResult,
    TranscriptionWord,
)
from courtscribe.core.stt.factory import create_provider, supported_providers

__all__ = [
    "SpeechToTextProvider",
    "TranscriptionConfig",
    "TranscriptionProviderType",
    "TranscriptionResult",
    "TranscriptionWord",
    "create_provider",
    "supported_providers",
]
