"""Manual transcription: typed entries stamped with a running hearing clock.

The editor keeps a working list of entries in memory and flushes the whole
list to a ManualTranscriptStore, either on a debounced auto-save (in-progress)
or on an explicit save (completed).
"""

import asyncio
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Sequence

from courtscribe.core.logging import get_logger
from courtscribe.core.transcription.exceptions import ManualEntryError
from courtscribe.core.transcription.gateway import ManualTranscriptStore

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]

MANUAL_SEGMENT_DURATION_MS = 1000
MANUAL_SEGMENT_CONFIDENCE = 100


def format_elapsed(seconds: int) -> str:
    """Format elapsed seconds as M:SS, or H:MM:SS from one hour on."""
    hours, rem = divmod(max(int(seconds), 0), 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_timestamp(timestamp: str) -> int:
    """Parse M:SS or H:MM:SS into milliseconds; anything else is 0."""
    try:
        parts = [int(p) for p in timestamp.strip().split(":")]
    except (AttributeError, ValueError):
        return 0

    if len(parts) == 2:
        minutes, secs = parts
        return (minutes * 60 + secs) * 1000
    if len(parts) == 3:
        hours, minutes, secs = parts
        return (hours * 3600 + minutes * 60 + secs) * 1000
    return 0


@dataclass
class ManualTranscriptEntry:
    """One typed utterance."""

    text: str
    timestamp: str = "0:00"
    speaker_id: str | None = None
    notes: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def entries_to_segments(entries: Sequence[ManualTranscriptEntry]) -> list[dict[str, Any]]:
    """Convert entries to segment payloads numbered from 0 in list order."""
    segments = []
    for index, entry in enumerate(entries):
        start = parse_timestamp(entry.timestamp)
        segments.append({
            "segment_number": index,
            "start_time": start,
            "end_time": start + MANUAL_SEGMENT_DURATION_MS,
            "text": entry.text,
            "confidence": MANUAL_SEGMENT_CONFIDENCE,
            "speaker_id": entry.speaker_id,
            "metadata": {"manual_entry": True, "notes": entry.notes},
        })
    return segments


class Debouncer:
    """
    Run an async action once, `delay` seconds after the last trigger.

    Each trigger() cancels the pending run and schedules a new one. A run
    that has already started is not cancelled by later triggers.
    """

    def __init__(
        self,
        delay: float,
        action: Callable[[], Awaitable[Any]],
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.delay = delay
        self._action = action
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        await self._sleep(self.delay)
        self._task = None
        await self._action()


class EditorState(str, Enum):
    IDLE = "idle"
    TIMING = "timing"


class ManualTranscriptionEditor:
    """
    Server-side state of one manual transcription session.

    The clock only advances while TIMING; entries are stamped with the clock
    value at the moment they are added.
    """

    def __init__(
        self,
        transcript_id: str,
        organization_id: str,
        store: ManualTranscriptStore,
        autosave_delay: float = 5.0,
        sleep: SleepFunc = asyncio.sleep,
        entries: Iterable[ManualTranscriptEntry] = (),
        user_id: str | None = None,
    ) -> None:
        self.transcript_id = transcript_id
        self.organization_id = organization_id
        self.user_id = user_id
        self._store = store
        self._sleep = sleep

        self.entries: list[ManualTranscriptEntry] = list(entries)
        self.state = EditorState.IDLE
        self.elapsed_seconds = 0
        self.last_saved_at: datetime | None = None
        self.is_saving = False

        self.draft_text = ""
        self.draft_speaker_id: str | None = None
        self.draft_notes: str | None = None

        self._timer_task: asyncio.Task | None = None
        self._save_lock = asyncio.Lock()
        self._autosave = Debouncer(autosave_delay, self._autosave_now, sleep=sleep)

    # Timer

    def start_timer(self) -> None:
        if self.state == EditorState.TIMING:
            return
        self.state = EditorState.TIMING
        self._timer_task = asyncio.create_task(self._tick())

    def pause_timer(self) -> None:
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
        self.state = EditorState.IDLE

    def toggle_timer(self) -> None:
        if self.state == EditorState.TIMING:
            self.pause_timer()
        else:
            self.start_timer()

    async def _tick(self) -> None:
        while True:
            await self._sleep(1)
            self.elapsed_seconds += 1

    # Entries

    @property
    def current_timestamp(self) -> str:
        return format_elapsed(self.elapsed_seconds)

    @property
    def word_count(self) -> int:
        return sum(len(entry.text.split()) for entry in self.entries)

    @property
    def autosave_pending(self) -> bool:
        return self._autosave.pending

    def set_draft(
        self,
        text: str | None = None,
        speaker_id: str | None = None,
        notes: str | None = None,
    ) -> None:
        if text is not None:
            self.draft_text = text
        if speaker_id is not None:
            self.draft_speaker_id = speaker_id or None
        if notes is not None:
            self.draft_notes = notes or None

    def add_entry(
        self,
        text: str,
        speaker_id: str | None = None,
        notes: str | None = None,
    ) -> ManualTranscriptEntry:
        if not text or not text.strip():
            raise ManualEntryError("Entry text must not be empty")

        entry = ManualTranscriptEntry(
            text=text.strip(),
            timestamp=self.current_timestamp,
            speaker_id=speaker_id,
            notes=notes,
        )
        self.entries.append(entry)
        self._entries_changed()
        return entry

    def add_draft(self) -> ManualTranscriptEntry:
        """Add the draft as an entry; the speaker stays selected for the next one."""
        entry = self.add_entry(self.draft_text, self.draft_speaker_id, self.draft_notes)
        self.draft_text = ""
        self.draft_notes = None
        return entry

    def remove_entry(self, entry_id: str) -> bool:
        before = len(self.entries)
        self.entries = [e for e in self.entries if e.id != entry_id]
        if len(self.entries) == before:
            return False
        self._entries_changed()
        return True

    def _entries_changed(self) -> None:
        if self.entries:
            self._autosave.trigger()
        else:
            self._autosave.cancel()

    # Saving

    async def save(self) -> list[Any]:
        """Save immediately and mark the transcript completed."""
        if not self.entries:
            raise ManualEntryError("No entries to save")
        self._autosave.cancel()
        return await self._flush(final=True)

    async def _flush(self, final: bool) -> list[Any]:
        # One write at a time; a save issued during an auto-save waits for it
        async with self._save_lock:
            entries = list(self.entries)
            self.is_saving = True
            try:
                segments = await self._store.save_manual_entries(
                    self.organization_id,
                    self.transcript_id,
                    entries,
                    final=final,
                    user_id=self.user_id,
                )
            finally:
                self.is_saving = False
        self.last_saved_at = datetime.now(timezone.utc)
        logger.info(
            "manual_transcript_saved",
            transcript_id=self.transcript_id,
            entries=len(entries),
            final=final,
        )
        return segments

    async def flush_pending(self) -> None:
        """Run a scheduled auto-save now instead of waiting for the delay."""
        if not self._autosave.pending:
            return
        self._autosave.cancel()
        await self._autosave_now()

    async def _autosave_now(self) -> None:
        if not self.entries:
            return
        try:
            await self._flush(final=False)
        except Exception:
            logger.exception("manual_autosave_failed", transcript_id=self.transcript_id)

    # Keyboard

    async def handle_key(self, key: str, ctrl: bool = False) -> bool:
        """Handle a shortcut. Returns True when the key was consumed."""
        if not ctrl:
            return False
        key = key.lower()
        if key == "enter":
            if self.draft_text.strip():
                self.add_draft()
            return True
        if key == "s":
            await self.save()
            return True
        return False

    def snapshot(self) -> dict[str, Any]:
        return {
            "transcript_id": self.transcript_id,
            "state": self.state.value,
            "elapsed_seconds": self.elapsed_seconds,
            "timestamp": self.current_timestamp,
            "entries": [entry.to_dict() for entry in self.entries],
            "word_count": self.word_count,
            "is_saving": self.is_saving,
            "autosave_pending": self.autosave_pending,
            "last_saved_at": self.last_saved_at.isoformat() if self.last_saved_at else None,
            "draft": {
                "text": self.draft_text,
                "speaker_id": self.draft_speaker_id,
                "notes": self.draft_notes,
            },
        }

    def close(self) -> None:
        self.pause_timer()
        self._autosave.cancel()
