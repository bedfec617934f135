"""Integration tests for TranscriptService against SQLite."""

from uuid import uuid4

import pytest

from courtscribe.core.transcription.coordinator import LiveSessionCoordinator
from courtscribe.core.transcription.exceptions import (
    PersistenceError,
    TranscriptNotFoundError,
    UnknownSpeakerError,
)
from courtscribe.core.transcription.manual import ManualTranscriptEntry
from courtscribe.core.transcripts.service import TranscriptService
from tests.conftest import ORG_ID, OTHER_ORG_ID, USER_ID
from tests.fakes import final


async def add_segment(service: TranscriptService, transcript, number: int, text: str, **kwargs):
    start = kwargs.pop("start_time", number * 1000)
    return await service.create_segment(
        organization_id=ORG_ID,
        transcript_id=str(transcript.id),
        segment_number=number,
        start_time=start,
        end_time=start + 900,
        text=text,
        **kwargs,
    )


@pytest.mark.integration
@pytest.mark.asyncio
class TestTranscripts:
    """Creating and transitioning transcripts."""

    async def test_create_transcript_defaults(self, transcript):
        assert transcript.status == "draft"
        assert transcript.organization_id == ORG_ID
        assert transcript.language == "en"
        assert transcript.created_by == USER_ID

    async def test_get_transcript_is_tenant_scoped(self, transcript_service, transcript):
        found = await transcript_service.get_transcript(str(transcript.id), ORG_ID)
        assert found.id == transcript.id

        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.get_transcript(str(transcript.id), OTHER_ORG_ID)

    async def test_get_transcript_with_malformed_id(self, transcript_service):
        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.get_transcript("not-a-uuid", ORG_ID)

    async def test_start_transcription(self, transcript_service, transcript):
        updated = await transcript_service.start_transcription(str(transcript.id), ORG_ID, "deepgram")

        assert updated.status == "in-progress"
        assert updated.transcription_service == "deepgram"
        assert updated.started_at is not None

    async def test_complete_stamps_completed_at(self, transcript_service, transcript):
        updated = await transcript_service.update_transcript_status(str(transcript.id), ORG_ID, "completed")

        assert updated.status == "completed"
        assert updated.completed_at is not None

    async def test_review_records_reviewer(self, transcript_service, transcript):
        updated = await transcript_service.update_transcript_status(
            str(transcript.id), ORG_ID, "reviewed", user_id="judge-1"
        )

        assert updated.reviewed_by == "judge-1"
        assert updated.reviewed_at is not None

    async def test_unknown_status_rejected(self, transcript_service, transcript):
        with pytest.raises(ValueError):
            await transcript_service.update_transcript_status(str(transcript.id), ORG_ID, "archived")


@pytest.mark.integration
@pytest.mark.asyncio
class TestSegments:
    """Writing and reading segments."""

    async def test_create_segment_keeps_original_text(self, transcript_service, transcript):
        segment = await add_segment(
            transcript_service,
            transcript,
            0,
            "Order in the court",
            confidence=95,
            metadata={"speaker": "0", "words": []},
        )

        assert segment.segment_number == 0
        assert segment.original_text == "Order in the court"
        assert segment.origin == "live"
        assert segment.segment_metadata == {"speaker": "0", "words": []}

    async def test_create_segment_for_other_org_transcript(self, transcript_service, transcript):
        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.create_segment(
                organization_id=OTHER_ORG_ID,
                transcript_id=str(transcript.id),
                segment_number=0,
                start_time=0,
                end_time=1000,
                text="Intrusion",
            )

    async def test_list_segments_ordered(self, transcript_service, transcript):
        await add_segment(transcript_service, transcript, 2, "Case number 707 slash 21")
        await add_segment(transcript_service, transcript, 0, "Order in the court")
        await add_segment(transcript_service, transcript, 1, "The defendant will rise")

        segments = await transcript_service.list_segments(str(transcript.id), ORG_ID)

        assert [s.text for s in segments] == [
            "Order in the court",
            "The defendant will rise",
            "Case number 707 slash 21",
        ]

    async def test_duplicate_number_rejected(self, transcript_service, transcript):
        await add_segment(transcript_service, transcript, 0, "First session")

        with pytest.raises(PersistenceError):
            await add_segment(transcript_service, transcript, 0, "Second session", start_time=60_000)

        segments = await transcript_service.list_segments(str(transcript.id), ORG_ID)
        assert [s.text for s in segments] == ["First session"]

    async def test_next_segment_number(self, transcript_service, transcript):
        transcript_id = str(transcript.id)
        assert await transcript_service.next_segment_number(transcript_id, ORG_ID) == 0

        await add_segment(transcript_service, transcript, 0, "Order in the court")
        await add_segment(transcript_service, transcript, 1, "Be seated")

        assert await transcript_service.next_segment_number(transcript_id, ORG_ID) == 2
        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.next_segment_number(transcript_id, OTHER_ORG_ID)

    async def test_create_segments_batch(self, transcript_service, transcript):
        created = await transcript_service.create_segments_batch(
            ORG_ID,
            [
                {
                    "transcript_id": str(transcript.id),
                    "segment_number": i,
                    "start_time": i * 1000,
                    "end_time": i * 1000 + 500,
                    "text": text,
                    "origin": "batch",
                }
                for i, text in enumerate(["All rise", "Be seated"])
            ],
        )

        assert len(created) == 2
        segments = await transcript_service.list_segments(str(transcript.id), ORG_ID)
        assert [s.origin for s in segments] == ["batch", "batch"]

    async def test_create_segments_batch_empty(self, transcript_service):
        assert await transcript_service.create_segments_batch(ORG_ID, []) == []

    async def test_create_segments_batch_rejects_foreign_transcript(self, transcript_service):
        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.create_segments_batch(
                ORG_ID,
                [{
                    "transcript_id": str(uuid4()),
                    "segment_number": 0,
                    "start_time": 0,
                    "end_time": 1,
                    "text": "x",
                }],
            )

    async def test_search_is_case_insensitive(self, transcript_service, transcript):
        await add_segment(transcript_service, transcript, 0, "Order in the court")
        await add_segment(transcript_service, transcript, 1, "The defendant will rise")

        results = await transcript_service.search_segments(str(transcript.id), ORG_ID, "DEFENDANT")

        assert [s.segment_number for s in results] == [1]

    async def test_update_segment(self, transcript_service, transcript):
        segment = await add_segment(transcript_service, transcript, 0, "Order in the cord")
        judge = await transcript_service.add_speaker(ORG_ID, str(transcript.id), "Hon. A. Nowak", "judge")

        updated = await transcript_service.update_segment(
            str(segment.id), ORG_ID, text="Order in the court", speaker_id=str(judge.id), user_id=USER_ID
        )

        assert updated.text == "Order in the court"
        assert updated.original_text == "Order in the cord"
        assert updated.speaker_id == str(judge.id)
        assert updated.is_edited is True
        assert updated.edited_by == USER_ID

    async def test_update_segment_unknown_speaker(self, transcript_service, transcript):
        segment = await add_segment(transcript_service, transcript, 0, "Order in the court")

        with pytest.raises(UnknownSpeakerError):
            await transcript_service.update_segment(str(segment.id), ORG_ID, speaker_id="judge")

        segments = await transcript_service.list_segments(str(transcript.id), ORG_ID)
        assert segments[0].speaker_id is None
        assert segments[0].is_edited is False

    async def test_update_segment_other_org(self, transcript_service, transcript):
        segment = await add_segment(transcript_service, transcript, 0, "Sealed")

        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.update_segment(str(segment.id), OTHER_ORG_ID, text="Leaked")

    async def test_stats(self, transcript_service, transcript):
        first = await add_segment(transcript_service, transcript, 0, "Order in the court", confidence=95, speaker_id="judge")
        await add_segment(transcript_service, transcript, 1, "Yes your honor", confidence=85, speaker_id="counsel")
        await add_segment(transcript_service, transcript, 2, "Proceed", speaker_id="judge")
        await transcript_service.update_segment(str(first.id), ORG_ID, text="Order in court")

        stats = await transcript_service.get_transcript_stats(str(transcript.id), ORG_ID)

        assert stats["total_segments"] == 3
        assert stats["total_words"] == 7
        assert stats["average_confidence"] == 90
        assert stats["edited_segments"] == 1
        assert stats["edited_percentage"] == 33
        assert stats["speaker_segments"] == {"judge": 2, "counsel": 1}

    async def test_stats_empty_transcript(self, transcript_service, transcript):
        stats = await transcript_service.get_transcript_stats(str(transcript.id), ORG_ID)

        assert stats["total_segments"] == 0
        assert stats["average_confidence"] is None
        assert stats["edited_percentage"] == 0


@pytest.mark.integration
@pytest.mark.asyncio
class TestManualSave:
    """Saving manual entry lists."""

    async def test_autosave_marks_in_progress(self, transcript_service, transcript):
        clerk = await transcript_service.add_speaker(ORG_ID, str(transcript.id), "J. Kowalski", "clerk")
        entries = [
            ManualTranscriptEntry(text="All rise.", timestamp="0:00", speaker_id=str(clerk.id)),
            ManualTranscriptEntry(text="Be seated.", timestamp="0:05"),
        ]

        created = await transcript_service.save_manual_entries(ORG_ID, str(transcript.id), entries)

        assert [s.segment_number for s in created] == [0, 1]
        refreshed = await transcript_service.get_transcript(str(transcript.id), ORG_ID)
        assert refreshed.status == "in-progress"

        segments = await transcript_service.list_segments(str(transcript.id), ORG_ID)
        assert [(s.text, s.start_time, s.origin, s.confidence) for s in segments] == [
            ("All rise.", 0, "manual", 100),
            ("Be seated.", 5000, "manual", 100),
        ]

    async def test_final_save_completes(self, transcript_service, transcript):
        await transcript_service.save_manual_entries(
            ORG_ID, str(transcript.id), [ManualTranscriptEntry(text="Adjourned.")], final=True
        )

        refreshed = await transcript_service.get_transcript(str(transcript.id), ORG_ID)
        assert refreshed.status == "completed"
        assert refreshed.completed_at is not None

    async def test_resave_replaces_manual_segments_only(self, transcript_service, transcript):
        await add_segment(transcript_service, transcript, 0, "Recognized live")
        await transcript_service.save_manual_entries(
            ORG_ID, str(transcript.id), [ManualTranscriptEntry(text="First draft.")]
        )

        await transcript_service.save_manual_entries(
            ORG_ID,
            str(transcript.id),
            [
                ManualTranscriptEntry(text="Corrected draft.", timestamp="0:01"),
                ManualTranscriptEntry(text="Second line.", timestamp="0:02"),
            ],
        )

        segments = await transcript_service.list_segments(str(transcript.id), ORG_ID)
        assert [(s.segment_number, s.origin, s.text) for s in segments] == [
            (0, "live", "Recognized live"),
            (1, "manual", "Corrected draft."),
            (2, "manual", "Second line."),
        ]

    async def test_unknown_speaker_rejects_whole_save(self, transcript_service, transcript):
        await transcript_service.save_manual_entries(
            ORG_ID, str(transcript.id), [ManualTranscriptEntry(text="Kept draft.")]
        )

        with pytest.raises(UnknownSpeakerError):
            await transcript_service.save_manual_entries(
                ORG_ID,
                str(transcript.id),
                [
                    ManualTranscriptEntry(text="Replacement."),
                    ManualTranscriptEntry(text="By nobody.", speaker_id="stranger"),
                ],
            )

        segments = await transcript_service.list_segments(str(transcript.id), ORG_ID)
        assert [s.text for s in segments] == ["Kept draft."]

    async def test_autosave_does_not_demote_reviewed(self, transcript_service, transcript):
        await transcript_service.update_transcript_status(str(transcript.id), ORG_ID, "reviewed", user_id="judge-1")

        await transcript_service.save_manual_entries(
            ORG_ID, str(transcript.id), [ManualTranscriptEntry(text="Late note.")]
        )

        refreshed = await transcript_service.get_transcript(str(transcript.id), ORG_ID)
        assert refreshed.status == "reviewed"

    async def test_save_for_other_org(self, transcript_service, transcript):
        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.save_manual_entries(
                OTHER_ORG_ID, str(transcript.id), [ManualTranscriptEntry(text="Nope.")]
            )


@pytest.mark.integration
@pytest.mark.asyncio
class TestSegmentNumbering:
    """Live, manual and batch writers share one gap-free numbering."""

    async def test_two_live_sessions_number_in_delivery_order(
        self, transcript_service, transcript, event_bus, stt_config, providers, provider_factory
    ):
        transcript_id = str(transcript.id)
        coordinator = LiveSessionCoordinator(
            transcript_service, event_bus=event_bus, provider_factory=provider_factory
        )

        await coordinator.start_session(transcript_id, ORG_ID, stt_config)
        await providers[0].deliver(final("Order in the court", 0, 1500))
        await providers[0].deliver(final("Please be seated", 1600, 3000))
        await coordinator.stop_session(transcript_id)

        await coordinator.start_session(transcript_id, ORG_ID, stt_config)
        await providers[1].deliver(final("Back on the record", 0, 1800))
        await providers[1].deliver(final("Call your next witness", 1900, 3200))
        await providers[1].deliver(final("The prosecution calls Ms. Zielinska", 3300, 5600))
        await coordinator.stop_session(transcript_id)

        segments = await transcript_service.list_segments(transcript_id, ORG_ID)
        assert [s.segment_number for s in segments] == list(range(5))
        assert [s.text for s in segments] == [
            "Order in the court",
            "Please be seated",
            "Back on the record",
            "Call your next witness",
            "The prosecution calls Ms. Zielinska",
        ]

    async def test_manual_save_numbers_after_live_segments(self, transcript_service, transcript):
        await add_segment(transcript_service, transcript, 0, "Recognized live")
        await add_segment(transcript_service, transcript, 1, "Recognized later")

        created = await transcript_service.save_manual_entries(
            ORG_ID,
            str(transcript.id),
            [ManualTranscriptEntry(text="Clerk note."), ManualTranscriptEntry(text="Second note.")],
        )

        assert [s.segment_number for s in created] == [2, 3]

    async def test_resave_closes_gaps(self, transcript_service, transcript):
        transcript_id = str(transcript.id)
        await add_segment(transcript_service, transcript, 0, "Live one")
        await transcript_service.save_manual_entries(
            ORG_ID,
            transcript_id,
            [ManualTranscriptEntry(text="Manual one."), ManualTranscriptEntry(text="Manual two.")],
        )
        await add_segment(transcript_service, transcript, 3, "Live two")

        await transcript_service.save_manual_entries(
            ORG_ID, transcript_id, [ManualTranscriptEntry(text="Manual only.")]
        )

        segments = await transcript_service.list_segments(transcript_id, ORG_ID)
        assert [(s.segment_number, s.text) for s in segments] == [
            (0, "Live one"),
            (1, "Live two"),
            (2, "Manual only."),
        ]
        assert await transcript_service.next_segment_number(transcript_id, ORG_ID) == 3

    async def test_batch_reupload_replaces_previous_run(self, transcript_service, transcript):
        transcript_id = str(transcript.id)
        await add_segment(transcript_service, transcript, 0, "Recognized live")

        def payload(texts):
            return [
                {"segment_number": i, "start_time": i * 1000, "end_time": i * 1000 + 900, "text": text}
                for i, text in enumerate(texts)
            ]

        await transcript_service.replace_segments(
            ORG_ID, transcript_id, payload(["First upload a", "First upload b"]), origin="batch"
        )
        await transcript_service.replace_segments(
            ORG_ID,
            transcript_id,
            payload(["Second upload a", "Second upload b"]),
            origin="batch",
            status="completed",
        )

        segments = await transcript_service.list_segments(transcript_id, ORG_ID)
        assert [(s.segment_number, s.origin, s.text) for s in segments] == [
            (0, "live", "Recognized live"),
            (1, "batch", "Second upload a"),
            (2, "batch", "Second upload b"),
        ]
        refreshed = await transcript_service.get_transcript(transcript_id, ORG_ID)
        assert refreshed.status == "completed"


@pytest.mark.integration
@pytest.mark.asyncio
class TestSpeakers:
    """Hearing participants attached to a transcript."""

    async def test_add_and_list(self, transcript_service, transcript):
        transcript_id = str(transcript.id)
        judge = await transcript_service.add_speaker(
            ORG_ID, transcript_id, "Hon. A. Nowak", "judge", user_id="judge-1", speaker_label="0"
        )
        await transcript_service.add_speaker(
            ORG_ID, transcript_id, "M. Wisniewska", "witness", notes="Expert in forensic accounting"
        )

        speakers = await transcript_service.list_speakers(transcript_id, ORG_ID)

        assert [(s.name, s.role) for s in speakers] == [
            ("Hon. A. Nowak", "judge"),
            ("M. Wisniewska", "witness"),
        ]
        assert judge.user_id == "judge-1"
        assert judge.speaker_label == "0"
        assert speakers[1].notes == "Expert in forensic accounting"

    async def test_speakers_are_tenant_scoped(self, transcript_service, transcript):
        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.add_speaker(OTHER_ORG_ID, str(transcript.id), "Intruder", "witness")
        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.list_speakers(str(transcript.id), OTHER_ORG_ID)

    async def test_speaker_of_other_transcript_is_unknown(self, transcript_service, transcript):
        other = await transcript_service.create_transcript(
            organization_id=ORG_ID, case_id="case-707-21", hearing_id="hearing-2", title="Second day"
        )
        foreign = await transcript_service.add_speaker(ORG_ID, str(other.id), "Defense counsel", "defense")

        with pytest.raises(UnknownSpeakerError) as excinfo:
            await transcript_service.save_manual_entries(
                ORG_ID,
                str(transcript.id),
                [ManualTranscriptEntry(text="Objection.", speaker_id=str(foreign.id))],
            )

        assert excinfo.value.speaker_id == str(foreign.id)


@pytest.mark.integration
@pytest.mark.asyncio
class TestAnnotations:
    """Notes, highlights and bookmarks on a transcript."""

    async def test_add_and_list_newest_first(self, transcript_service, transcript):
        transcript_id = str(transcript.id)
        segment = await add_segment(transcript_service, transcript, 0, "I object, your honor")

        await transcript_service.add_annotation(
            ORG_ID, transcript_id, "bookmark", USER_ID, start_time=0, end_time=1000
        )
        objection = await transcript_service.add_annotation(
            ORG_ID,
            transcript_id,
            "objection",
            USER_ID,
            content="Sustained",
            segment_id=str(segment.id),
            color="#ff0000",
        )

        annotations = await transcript_service.list_annotations(transcript_id, ORG_ID)

        assert [a.type for a in annotations] == ["objection", "bookmark"]
        assert objection.segment_id == segment.id
        assert objection.created_by == USER_ID
        assert objection.color == "#ff0000"

    async def test_segment_must_belong_to_transcript(self, transcript_service, transcript):
        other = await transcript_service.create_transcript(
            organization_id=ORG_ID, case_id="case-707-21", hearing_id="hearing-2", title="Second day"
        )
        foreign_segment = await transcript_service.create_segment(
            organization_id=ORG_ID,
            transcript_id=str(other.id),
            segment_number=0,
            start_time=0,
            end_time=900,
            text="Elsewhere",
        )

        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.add_annotation(
                ORG_ID, str(transcript.id), "note", USER_ID, segment_id=str(foreign_segment.id)
            )

    async def test_only_creator_can_delete(self, transcript_service, transcript):
        transcript_id = str(transcript.id)
        note = await transcript_service.add_annotation(
            ORG_ID, transcript_id, "note", USER_ID, content="Check exhibit 4"
        )

        assert await transcript_service.delete_annotation(str(note.id), ORG_ID, "someone-else") is False
        assert await transcript_service.delete_annotation(str(note.id), OTHER_ORG_ID, USER_ID) is False
        assert await transcript_service.delete_annotation(str(note.id), ORG_ID, USER_ID) is True
        assert await transcript_service.list_annotations(transcript_id, ORG_ID) == []

    async def test_delete_with_malformed_id(self, transcript_service):
        assert await transcript_service.delete_annotation("not-a-uuid", ORG_ID, USER_ID) is False


@pytest.mark.integration
@pytest.mark.asyncio
class TestTranscriptQueries:
    """Finding transcripts by hearing or case and loading them whole."""

    async def test_by_hearing_and_case(self, transcript_service, transcript):
        second_day = await transcript_service.create_transcript(
            organization_id=ORG_ID, case_id="case-707-21", hearing_id="hearing-2", title="Second day"
        )
        await transcript_service.create_transcript(
            organization_id=OTHER_ORG_ID, case_id="case-707-21", hearing_id="hearing-1", title="Other court"
        )

        by_hearing = await transcript_service.list_transcripts_by_hearing("hearing-1", ORG_ID)
        by_case = await transcript_service.list_transcripts_by_case("case-707-21", ORG_ID)

        assert [t.id for t in by_hearing] == [transcript.id]
        assert {t.id for t in by_case} == {transcript.id, second_day.id}
        assert await transcript_service.list_transcripts_by_case("case-1", ORG_ID) == []

    async def test_details(self, transcript_service, transcript):
        transcript_id = str(transcript.id)
        await transcript_service.add_speaker(ORG_ID, transcript_id, "Hon. A. Nowak", "judge")
        await add_segment(transcript_service, transcript, 0, "Order in the court")
        await transcript_service.add_annotation(ORG_ID, transcript_id, "note", USER_ID)

        details = await transcript_service.get_transcript_details(transcript_id, ORG_ID)

        assert details["transcript"].id == transcript.id
        assert [s.name for s in details["speakers"]] == ["Hon. A. Nowak"]
        assert [s.text for s in details["segments"]] == ["Order in the court"]
        assert [a.type for a in details["annotations"]] == ["note"]

    async def test_details_other_org(self, transcript_service, transcript):
        with pytest.raises(TranscriptNotFoundError):
            await transcript_service.get_transcript_details(str(transcript.id), OTHER_ORG_ID)
