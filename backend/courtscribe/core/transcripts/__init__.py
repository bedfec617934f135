"""Transcript models and persistence."""

from courtscribe.core.transcripts.models import (
    SegmentOrigin,
    Transcript,
    TranscriptSegment,
    TranscriptStatus,
)
from courtscribe.core.transcripts.service import TranscriptService

__all__ = [
    "SegmentOrigin",
    "Transcript",
    "TranscriptSegment",
    "TranscriptStatus",
    "TranscriptService",
]
