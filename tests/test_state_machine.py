"""Tests for the meeting lifecycle state machine.

Covers every legal transition, the compare-and-swap guards that make
redelivered or out-of-order events no-ops, and the timestamps each
transition writes.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.meetai.meetings.schemas import MeetingStatus

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class TestLegalTransitions:
    """upcoming -> active -> processing -> completed, upcoming -> cancelled."""

    async def test_start_moves_upcoming_to_active(self, repository, state_machine):
        """start stamps started_at from the injected clock."""
        repository.add_meeting("m1")

        meeting = await state_machine.start("m1")

        assert meeting is not None
        assert meeting.status == MeetingStatus.ACTIVE
        assert meeting.started_at == T0

    async def test_end_moves_active_to_processing(self, repository, state_machine):
        """end stamps ended_at."""
        repository.add_meeting("m1")
        await state_machine.start("m1")

        meeting = await state_machine.end("m1")

        assert meeting.status == MeetingStatus.PROCESSING
        assert meeting.ended_at == T0 + timedelta(minutes=1)
        assert meeting.duration == 60.0

    async def test_complete_writes_transcript_and_summary(self, repository, state_machine):
        """complete is the only way into completed."""
        repository.add_meeting("m1", status=MeetingStatus.PROCESSING)

        meeting = await state_machine.complete("m1", "https://example/t.jsonl", "### Overview")

        assert meeting.status == MeetingStatus.COMPLETED
        assert meeting.transcript_url == "https://example/t.jsonl"
        assert meeting.summary == "### Overview"

    async def test_complete_allows_missing_summary(self, repository, state_machine):
        repository.add_meeting("m1", status=MeetingStatus.PROCESSING)

        meeting = await state_machine.complete("m1", "https://example/t.jsonl", None)

        assert meeting.status == MeetingStatus.COMPLETED
        assert meeting.summary is None

    async def test_attach_transcript_keeps_processing(self, repository, state_machine):
        repository.add_meeting("m1", status=MeetingStatus.PROCESSING)

        meeting = await state_machine.attach_transcript("m1", "https://example/t.jsonl")

        assert meeting.status == MeetingStatus.PROCESSING
        assert meeting.transcript_url == "https://example/t.jsonl"

    async def test_attach_transcript_ends_active_meeting_first(self, repository, state_machine):
        repository.add_meeting("m1", status=MeetingStatus.ACTIVE, started_at=T0)

        meeting = await state_machine.attach_transcript("m1", "https://example/t.jsonl")

        assert meeting.status == MeetingStatus.PROCESSING
        assert meeting.ended_at is not None
        assert meeting.transcript_url == "https://example/t.jsonl"
        assert await state_machine.end("m1") is None

    async def test_cancel_moves_upcoming_to_cancelled(self, repository, state_machine):
        repository.add_meeting("m1")

        meeting = await state_machine.cancel("m1")

        assert meeting.status == MeetingStatus.CANCELLED


class TestGuardedTransitions:
    """Writes from the wrong prior status never apply."""

    @pytest.mark.parametrize(
        "status",
        [MeetingStatus.ACTIVE, MeetingStatus.PROCESSING, MeetingStatus.COMPLETED, MeetingStatus.CANCELLED],
    )
    async def test_start_only_from_upcoming(self, repository, state_machine, status):
        repository.add_meeting("m1", status=status)

        assert await state_machine.start("m1") is None
        assert repository.meetings["m1"].status == status

    async def test_redelivered_start_does_not_move_started_at(self, repository, state_machine):
        """A second session_started for an active meeting is a no-op."""
        repository.add_meeting("m1")
        await state_machine.start("m1")

        assert await state_machine.start("m1") is None
        assert repository.meetings["m1"].started_at == T0

    async def test_end_before_start_is_skipped(self, repository, state_machine):
        repository.add_meeting("m1")

        assert await state_machine.end("m1") is None
        assert repository.meetings["m1"].status == MeetingStatus.UPCOMING
        assert repository.meetings["m1"].ended_at is None

    async def test_completed_meeting_never_regresses(self, repository, state_machine):
        """No event can move a completed meeting anywhere."""
        repository.add_meeting("m1", status=MeetingStatus.COMPLETED, summary="done")

        assert await state_machine.start("m1") is None
        assert await state_machine.end("m1") is None
        assert await state_machine.attach_transcript("m1", "https://example/other.jsonl") is None
        assert await state_machine.complete("m1", "https://example/other.jsonl", "new") is None
        assert await state_machine.cancel("m1") is None

        meeting = repository.meetings["m1"]
        assert meeting.status == MeetingStatus.COMPLETED
        assert meeting.summary == "done"
        assert meeting.transcript_url is None

    async def test_cancel_after_start_is_skipped(self, repository, state_machine):
        repository.add_meeting("m1", status=MeetingStatus.ACTIVE)

        assert await state_machine.cancel("m1") is None
        assert repository.meetings["m1"].status == MeetingStatus.ACTIVE

    async def test_unknown_meeting_returns_none(self, state_machine):
        assert await state_machine.start("missing") is None

    async def test_expected_status_passed_to_repository(self, repository, state_machine):
        """Each operation names its precondition so the write is conditional."""
        repository.add_meeting("m1")
        await state_machine.start("m1")
        await state_machine.end("m1")

        assert repository.transition_calls == [
            ("m1", frozenset({MeetingStatus.UPCOMING}), MeetingStatus.ACTIVE),
            ("m1", frozenset({MeetingStatus.ACTIVE}), MeetingStatus.PROCESSING),
        ]
