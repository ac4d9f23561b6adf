"""Tests for webhook verification, event parsing, and dispatch.

Signature checks run over raw bytes; event parsing is a tagged union;
the dispatcher applies lifecycle events through the state machine and
answers post-call chat messages through the reply pipeline.
"""

from __future__ import annotations

import pytest

from src.meetai.ai.pipeline import ReplyPipeline
from src.meetai.jobs.schemas import JobName
from src.meetai.meetings.schemas import MeetingStatus
from src.meetai.stream.chat import ChatMessage
from src.meetai.webhooks.dispatcher import APPLIED, FAILED, SKIPPED, WebhookDispatcher
from src.meetai.webhooks.events import (
    MessageNewEvent,
    SessionEndedEvent,
    SessionStartedEvent,
    TranscriptionReadyEvent,
    parse_event,
)
from src.meetai.webhooks.verifier import compute_signature, verify_signature


# ── Helpers ──────────────────────────────────────────────────────────────────


def _session_started(meeting_id: str | None = "m1") -> dict:
    return {"type": "call.session_started", "call": {"custom": {"meetingId": meeting_id}}}


def _session_ended(meeting_id: str | None = "m1") -> dict:
    return {"type": "call.session_ended", "call": {"custom": {"meetingId": meeting_id}}}


def _transcription_ready(call_cid: str = "default:m1", url: str | None = "https://example/t.jsonl") -> dict:
    return {
        "type": "call.transcription_ready",
        "call_cid": call_cid,
        "call_transcription": {"url": url},
    }


def _message_new(text: str = "What did we decide?", sender: str = "user-1", channel: str = "m1") -> dict:
    return {
        "type": "message.new",
        "channel_id": channel,
        "user": {"id": sender, "name": "Ada"},
        "message": {"id": "msg-9", "text": text},
    }


@pytest.fixture
def dispatcher(repository, state_machine, job_queue, chat_client, llm):
    pipeline = ReplyPipeline(llm, chat_client=chat_client, repository=repository)
    return WebhookDispatcher(repository, state_machine, job_queue, pipeline)


# ── Signature Verification ───────────────────────────────────────────────────


class TestVerifySignature:
    """HMAC-SHA256 hex digest over the exact body bytes."""

    def test_valid_signature_verifies(self):
        body = b'{"type":"call.session_started"}'
        assert verify_signature(body, compute_signature(body, "secret"), "secret")

    def test_uppercase_hex_verifies(self):
        body = b"{}"
        assert verify_signature(body, compute_signature(body, "secret").upper(), "secret")

    def test_single_byte_change_fails(self):
        """Re-serializing the body would break verification, so bytes matter."""
        body = b'{"a": 1}'
        signature = compute_signature(body, "secret")
        assert not verify_signature(b'{"a":1}', signature, "secret")

    def test_wrong_secret_fails(self):
        body = b"{}"
        assert not verify_signature(body, compute_signature(body, "other"), "secret")

    def test_empty_secret_never_verifies(self):
        body = b"{}"
        assert not verify_signature(body, compute_signature(body, ""), "")

    def test_empty_signature_fails(self):
        assert not verify_signature(b"{}", "", "secret")


# ── Event Parsing ────────────────────────────────────────────────────────────


class TestParseEvent:
    """Tagged-union parsing of decoded payloads."""

    def test_session_started(self):
        event = parse_event(_session_started("m1"))
        assert isinstance(event, SessionStartedEvent)
        assert event.meeting_id == "m1"

    def test_session_ended(self):
        event = parse_event(_session_ended("m1"))
        assert isinstance(event, SessionEndedEvent)
        assert event.meeting_id == "m1"

    def test_transcription_ready_splits_call_cid(self):
        """meeting id is the part after the first colon."""
        event = parse_event(_transcription_ready("default:abc:def"))
        assert isinstance(event, TranscriptionReadyEvent)
        assert event.meeting_id == "abc:def"
        assert event.transcript_url == "https://example/t.jsonl"

    def test_transcription_ready_without_colon_has_no_meeting(self):
        event = parse_event(_transcription_ready("nocolon"))
        assert event.meeting_id is None

    def test_message_new(self):
        event = parse_event(_message_new())
        assert isinstance(event, MessageNewEvent)
        assert event.sender_id == "user-1"
        assert event.text == "What did we decide?"
        assert event.message_id == "msg-9"

    def test_missing_custom_data_parses_without_meeting_id(self):
        event = parse_event({"type": "call.session_started"})
        assert isinstance(event, SessionStartedEvent)
        assert event.meeting_id is None

    def test_unsupported_type_returns_none(self):
        assert parse_event({"type": "call.recording_ready"}) is None

    def test_non_object_payload_returns_none(self):
        assert parse_event(["call.session_started"]) is None

    def test_wrong_shape_returns_none(self):
        assert parse_event({"type": "message.new", "user": "not-an-object"}) is None


# ── Dispatcher: Call Lifecycle ───────────────────────────────────────────────


class TestDispatchLifecycle:
    """session_started / session_ended / transcription_ready handling."""

    async def test_session_started_activates_meeting(self, dispatcher, repository):
        repository.add_meeting("m1")

        outcome = await dispatcher.dispatch(parse_event(_session_started()))

        assert outcome == APPLIED
        assert repository.meetings["m1"].status == MeetingStatus.ACTIVE

    async def test_session_started_without_meeting_id_is_skipped(self, dispatcher, repository):
        repository.add_meeting("m1")

        outcome = await dispatcher.dispatch(parse_event(_session_started(None)))

        assert outcome == SKIPPED
        assert repository.transition_calls == []

    async def test_session_started_for_unknown_meeting_is_skipped(self, dispatcher):
        assert await dispatcher.dispatch(parse_event(_session_started("ghost"))) == SKIPPED

    async def test_session_ended_moves_to_processing(self, dispatcher, repository):
        repository.add_meeting("m1", status=MeetingStatus.ACTIVE)

        outcome = await dispatcher.dispatch(parse_event(_session_ended()))

        assert outcome == APPLIED
        assert repository.meetings["m1"].status == MeetingStatus.PROCESSING
        assert repository.meetings["m1"].ended_at is not None

    async def test_transcription_ready_enqueues_processing_job(self, dispatcher, repository, job_queue):
        repository.add_meeting("m1", status=MeetingStatus.PROCESSING)

        outcome = await dispatcher.dispatch(parse_event(_transcription_ready()))

        assert outcome == APPLIED
        assert repository.meetings["m1"].transcript_url == "https://example/t.jsonl"
        assert len(job_queue.jobs) == 1
        job = job_queue.jobs[0]
        assert job.name == JobName.MEETING_PROCESSING.value
        assert job.payload == {"meetingId": "m1", "transcriptUrl": "https://example/t.jsonl"}

    async def test_transcription_before_session_ended_still_schedules_job(self, dispatcher, repository, job_queue):
        """A transcript that overtakes session_ended ends the call and is processed."""
        repository.add_meeting("m1", status=MeetingStatus.UPCOMING)
        await dispatcher.dispatch(parse_event(_session_started()))

        outcome = await dispatcher.dispatch(parse_event(_transcription_ready()))
        late_end = await dispatcher.dispatch(parse_event(_session_ended()))

        assert outcome == APPLIED
        assert late_end == SKIPPED
        meeting = repository.meetings["m1"]
        assert meeting.status == MeetingStatus.PROCESSING
        assert meeting.ended_at is not None
        assert meeting.transcript_url == "https://example/t.jsonl"
        assert [job.payload for job in job_queue.jobs] == [
            {"meetingId": "m1", "transcriptUrl": "https://example/t.jsonl"}
        ]

    async def test_transcription_ready_for_upcoming_meeting_is_skipped(self, dispatcher, repository, job_queue):
        repository.add_meeting("m1", status=MeetingStatus.UPCOMING)

        assert await dispatcher.dispatch(parse_event(_transcription_ready())) == SKIPPED
        assert job_queue.jobs == []
        assert repository.meetings["m1"].status == MeetingStatus.UPCOMING
        assert repository.meetings["m1"].transcript_url is None

    async def test_transcription_ready_for_completed_meeting_is_skipped(self, dispatcher, repository, job_queue):
        repository.add_meeting("m1", status=MeetingStatus.COMPLETED, transcript_url="https://example/t.jsonl")

        assert await dispatcher.dispatch(parse_event(_transcription_ready())) == SKIPPED
        assert job_queue.jobs == []

    async def test_transcription_ready_without_url_is_skipped(self, dispatcher, repository, job_queue):
        repository.add_meeting("m1", status=MeetingStatus.PROCESSING)

        assert await dispatcher.dispatch(parse_event(_transcription_ready(url=None))) == SKIPPED
        assert job_queue.jobs == []

    async def test_repository_errors_propagate(self, dispatcher, repository):
        """Database failures surface so the provider redelivers."""
        repository.add_meeting("m1")
        repository.fail_with = RuntimeError("database unavailable")

        with pytest.raises(RuntimeError):
            await dispatcher.dispatch(parse_event(_session_started()))

    async def test_queue_errors_propagate(self, dispatcher, repository, job_queue):
        repository.add_meeting("m1", status=MeetingStatus.PROCESSING)
        job_queue.fail_with = ConnectionError("redis unavailable")

        with pytest.raises(ConnectionError):
            await dispatcher.dispatch(parse_event(_transcription_ready()))


# ── Dispatcher: Chat ─────────────────────────────────────────────────────────


class TestDispatchMessageNew:
    """Agent replies in the post-call chat channel."""

    async def test_reply_posted_as_agent(self, dispatcher, repository, chat_client, llm):
        repository.add_meeting("m1", status=MeetingStatus.COMPLETED, summary="We chose option B.")

        outcome = await dispatcher.dispatch(parse_event(_message_new()))

        assert outcome == APPLIED
        assert chat_client.sent == [("m1", "Sure, here is the answer.", "agent-1")]
        assert "We chose option B." in llm.last_prompt
        assert "Answer like a patient tutor." in llm.last_prompt

    async def test_message_for_non_completed_meeting_is_skipped(self, dispatcher, repository, chat_client, llm):
        repository.add_meeting("m1", status=MeetingStatus.PROCESSING)

        assert await dispatcher.dispatch(parse_event(_message_new())) == SKIPPED
        assert llm.requests == []
        assert chat_client.calls == []

    async def test_message_for_unknown_channel_is_skipped(self, dispatcher, llm):
        assert await dispatcher.dispatch(parse_event(_message_new(channel="ghost"))) == SKIPPED
        assert llm.requests == []

    async def test_agent_own_message_is_ignored(self, dispatcher, repository, chat_client, llm):
        """The agent never answers itself."""
        repository.add_meeting("m1", status=MeetingStatus.COMPLETED)

        assert await dispatcher.dispatch(parse_event(_message_new(sender="agent-1"))) == SKIPPED
        assert llm.requests == []
        assert chat_client.calls == []

    async def test_blank_text_is_skipped(self, dispatcher, repository, llm):
        repository.add_meeting("m1", status=MeetingStatus.COMPLETED)

        assert await dispatcher.dispatch(parse_event(_message_new(text="   "))) == SKIPPED
        assert llm.requests == []

    async def test_missing_agent_is_skipped(self, dispatcher, repository, llm):
        repository.add_meeting("m1", status=MeetingStatus.COMPLETED, agent_id="deleted-agent")

        assert await dispatcher.dispatch(parse_event(_message_new())) == SKIPPED
        assert llm.requests == []

    async def test_generation_failure_is_contained(self, dispatcher, repository, chat_client, llm):
        repository.add_meeting("m1", status=MeetingStatus.COMPLETED)
        llm.error = RuntimeError("provider down")

        assert await dispatcher.dispatch(parse_event(_message_new())) == FAILED
        assert chat_client.sent == []

    async def test_send_failure_is_contained(self, dispatcher, repository, chat_client):
        repository.add_meeting("m1", status=MeetingStatus.COMPLETED)
        chat_client.send_error = RuntimeError("chat rejected")

        assert await dispatcher.dispatch(parse_event(_message_new())) == FAILED

    async def test_triggering_message_excluded_from_history(self, dispatcher, repository, chat_client, llm):
        repository.add_meeting("m1", status=MeetingStatus.COMPLETED)
        chat_client.messages = [
            ChatMessage(id="msg-1", user_id="user-1", user_name="Ada", text="Hi there"),
            ChatMessage(id="msg-9", user_id="user-1", user_name="Ada", text="What did we decide?"),
        ]

        await dispatcher.dispatch(parse_event(_message_new()))

        history = llm.last_prompt.split("Conversation history:\n", 1)[1].split("\n\nUser question:", 1)[0]
        assert history == "Ada: Hi there"
