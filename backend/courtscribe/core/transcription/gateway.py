"""Persistence gateway contract used by the live and manual transcription paths."""

from typing import TYPE_CHECKING, Any, Protocol, Sequence

if TYPE_CHECKING:
    from courtscribe.core.transcription.manual import ManualTranscriptEntry
    from courtscribe.core.transcripts.models import Transcript, TranscriptSegment


class SegmentGateway(Protocol):
    """
    Durable store for transcript segments.

    All calls are fallible remote operations; implementations raise
    PersistenceError when a write is rejected and TranscriptNotFoundError when
    the transcript is not visible to the organization.

    Segment numbers are unique per transcript; a writer appending segments
    starts at next_segment_number().
    """

    async def next_segment_number(self, transcript_id: str, organization_id: str) -> int: ...

    async def create_segment(
        self,
        organization_id: str,
        transcript_id: str,
        segment_number: int,
        start_time: int,
        end_time: int,
        text: str,
        confidence: int | None = None,
        speaker_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        origin: str = "live",
    ) -> "TranscriptSegment": ...

    async def replace_segments(
        self,
        organization_id: str,
        transcript_id: str,
        segments: Sequence[dict[str, Any]],
        origin: str,
        status: str | None = None,
    ) -> list["TranscriptSegment"]: ...

    async def update_transcript_status(
        self,
        transcript_id: str,
        organization_id: str,
        status: str,
        user_id: str | None = None,
    ) -> "Transcript": ...

    async def start_transcription(
        self,
        transcript_id: str,
        organization_id: str,
        service_name: str,
    ) -> "Transcript": ...


class ManualTranscriptStore(Protocol):
    """Batch sink for the manual editor."""

    async def save_manual_entries(
        self,
        organization_id: str,
        transcript_id: str,
        entries: Sequence["ManualTranscriptEntry"],
        final: bool = False,
        user_id: str | None = None,
    ) -> list["TranscriptSegment"]: ...
