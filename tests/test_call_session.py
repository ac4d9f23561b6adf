"""Tests for the client-side call session controller and reply client.

Media, recognition, and synthesis are replaced by in-memory fakes driven
through asyncio queues and events.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from src.meetai.session.controller import (
    AUDIO_PRIMER,
    CallSessionController,
    CallView,
    format_duration,
)
from src.meetai.session.ports import CallingState
from src.meetai.session.reply_client import HttpReplyClient


# ── Fakes ────────────────────────────────────────────────────────────────────


class FakeCall:
    def __init__(self, state: CallingState = CallingState.IDLE, participants: int = 2) -> None:
        self._state = state
        self.participants = participants
        self.join_calls = 0
        self.leave_calls = 0
        self.leave_error: Exception | None = None

    @property
    def calling_state(self) -> CallingState:
        return self._state

    @property
    def participant_count(self) -> int:
        return self.participants

    async def join(self) -> None:
        self.join_calls += 1
        self._state = CallingState.JOINED

    async def leave(self) -> None:
        self.leave_calls += 1
        self._state = CallingState.LEFT
        if self.leave_error is not None:
            raise self.leave_error


class FakeRecognizer:
    def __init__(self) -> None:
        self.utterances: asyncio.Queue[str | None] = asyncio.Queue()
        self.stop_calls = 0
        self.listen_calls = 0

    async def listen(self) -> str | None:
        self.listen_calls += 1
        return await self.utterances.get()

    def stop(self) -> None:
        self.stop_calls += 1


class GatedCall(FakeCall):
    """Join blocks until ``gate`` is set, like a slow media handshake."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def join(self) -> None:
        self.join_calls += 1
        self._state = CallingState.JOINING
        await self.gate.wait()
        self._state = CallingState.JOINED


class SilentRecognizer(FakeRecognizer):
    """Returns an empty capture immediately, every time."""

    async def listen(self) -> str | None:
        self.listen_calls += 1
        return None


class FakeSynthesizer:
    """Records speech; when ``block`` is set, playback waits for ``release``."""

    def __init__(self, block: bool = False) -> None:
        self.block = block
        self.release = asyncio.Event()
        self.spoken: list[str] = []
        self.voices_loaded = 0
        self.cancel_calls = 0

    async def load_voices(self) -> None:
        self.voices_loaded += 1

    async def speak(self, text: str) -> None:
        self.spoken.append(text)
        if self.block and text != AUDIO_PRIMER:
            await self.release.wait()

    def cancel(self) -> None:
        self.cancel_calls += 1


class FakeReplyClient:
    def __init__(self, reply: str | None = "Here's what I think.") -> None:
        self.reply_text = reply
        self.requests: list[tuple[str, str, str]] = []

    async def reply(self, meeting_id: str, meeting_name: str, text: str) -> str | None:
        self.requests.append((meeting_id, meeting_name, text))
        return self.reply_text


async def _until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def call() -> FakeCall:
    return FakeCall()


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def reply_client() -> FakeReplyClient:
    return FakeReplyClient()


@pytest.fixture
def controller(call, recognizer, synthesizer, reply_client, clock) -> CallSessionController:
    return CallSessionController(
        meeting_id="m1",
        meeting_name="Standup",
        call=call,
        recognizer=recognizer,
        synthesizer=synthesizer,
        reply_client=reply_client,
        clock=clock,
    )


# ── Join ─────────────────────────────────────────────────────────────────────


class TestJoin:
    async def test_join_primes_audio_loads_voices_then_joins(self, controller, call, synthesizer):
        assert await controller.join() is True

        assert controller.view == CallView.JOINED
        assert synthesizer.spoken == [AUDIO_PRIMER]
        assert synthesizer.voices_loaded == 1
        assert call.join_calls == 1
        assert controller.audio_unlocked is True
        await controller.leave()

    async def test_second_join_is_ignored(self, controller, call):
        await controller.join()

        assert await controller.join() is False
        assert call.join_calls == 1
        await controller.leave()

    async def test_join_ignored_when_call_already_joined(self, recognizer, synthesizer, reply_client):
        call = FakeCall(state=CallingState.JOINED)
        controller = CallSessionController("m1", "Standup", call, recognizer, synthesizer, reply_client)

        assert await controller.join() is False
        assert call.join_calls == 0
        assert synthesizer.spoken == []

    async def test_audio_primer_is_per_controller(self, recognizer, reply_client):
        """Each controller primes its own audio once."""
        first_synth, second_synth = FakeSynthesizer(), FakeSynthesizer()
        first = CallSessionController("m1", "A", FakeCall(), recognizer, first_synth, reply_client)
        second = CallSessionController("m2", "B", FakeCall(), FakeRecognizer(), second_synth, reply_client)

        await first.join()
        await second.join()

        assert first_synth.spoken == [AUDIO_PRIMER]
        assert second_synth.spoken == [AUDIO_PRIMER]
        await first.leave()
        await second.leave()


# ── Conversation ─────────────────────────────────────────────────────────────


class TestConversation:
    async def test_utterance_is_answered_aloud(self, controller, recognizer, synthesizer, reply_client):
        await controller.join()

        await recognizer.utterances.put("  what's next?  ")
        await _until(lambda: "Here's what I think." in synthesizer.spoken)

        assert reply_client.requests == [("m1", "Standup", "what's next?")]
        await controller.leave()

    async def test_blank_utterance_sends_nothing(self, controller, reply_client):
        await controller.join()

        assert await controller.handle_utterance("   ") is None
        assert await controller.handle_utterance(None) is None
        assert reply_client.requests == []
        await controller.leave()

    async def test_empty_reply_is_not_spoken(self, controller, synthesizer, reply_client):
        reply_client.reply_text = ""
        await controller.join()

        assert await controller.handle_utterance("hello") is None
        assert synthesizer.spoken == [AUDIO_PRIMER]
        await controller.leave()

    async def test_empty_captures_back_off(self, call, synthesizer, reply_client, clock):
        recognizer = SilentRecognizer()
        controller = CallSessionController(
            "m1", "Standup", call, recognizer, synthesizer, reply_client, clock=clock, capture_retry_delay=0.05,
        )
        await controller.join()

        await asyncio.sleep(0.02)

        assert 1 <= recognizer.listen_calls <= 2
        assert reply_client.requests == []
        await controller.leave()

    async def test_speaking_indicator_follows_playback(self, recognizer, reply_client, call, clock):
        synthesizer = FakeSynthesizer(block=True)
        controller = CallSessionController("m1", "Standup", call, recognizer, synthesizer, reply_client, clock=clock)
        changes: list[bool] = []
        controller.on_speaking_changed(changes.append)
        await controller.join()

        task = controller.speak("first")
        await _until(lambda: controller.speaking)
        synthesizer.release.set()
        await task

        assert controller.speaking is False
        assert changes == [True, False]
        await controller.leave()

    async def test_new_reply_interrupts_current_one(self, recognizer, reply_client, call, clock):
        synthesizer = FakeSynthesizer(block=True)
        controller = CallSessionController("m1", "Standup", call, recognizer, synthesizer, reply_client, clock=clock)
        await controller.join()

        first = controller.speak("first")
        await _until(lambda: "first" in synthesizer.spoken)
        second = controller.speak("second")
        await _until(lambda: "second" in synthesizer.spoken)

        assert first.cancelled()
        assert synthesizer.cancel_calls == 1
        assert controller.speaking is True

        synthesizer.release.set()
        await second
        assert controller.speaking is False
        await controller.leave()


# ── Leave ────────────────────────────────────────────────────────────────────


class TestLeave:
    async def test_leave_returns_summary(self, controller, call, recognizer):
        await controller.join()

        summary = await controller.leave()

        assert controller.view == CallView.ENDED
        assert summary.meeting_name == "Standup"
        assert summary.duration == "1m 0s"
        assert summary.duration_seconds == 60
        assert summary.participants == 2
        assert summary.ended_at == "09:01"
        assert call.leave_calls == 1
        assert recognizer.stop_calls == 1

    async def test_leave_twice_returns_same_summary(self, controller, call):
        await controller.join()

        first = await controller.leave()
        second = await controller.leave()

        assert first == second
        assert call.leave_calls == 1

    async def test_failing_call_leave_still_ends(self, controller, call):
        call.leave_error = RuntimeError("socket closed")
        await controller.join()

        summary = await controller.leave()

        assert summary is not None
        assert controller.view == CallView.ENDED

    async def test_leave_cancels_playback(self, recognizer, reply_client, call, clock):
        synthesizer = FakeSynthesizer(block=True)
        controller = CallSessionController("m1", "Standup", call, recognizer, synthesizer, reply_client, clock=clock)
        await controller.join()
        controller.speak("a long answer")
        await _until(lambda: controller.speaking)

        await controller.leave()

        assert controller.speaking is False
        assert synthesizer.cancel_calls == 1

    async def test_leave_before_join(self, controller, call):
        assert await controller.leave() is None
        assert controller.view == CallView.LOBBY
        assert call.leave_calls == 0

    async def test_participants_floor_is_one(self, recognizer, synthesizer, reply_client, clock):
        call = FakeCall(participants=0)
        controller = CallSessionController("m1", "Standup", call, recognizer, synthesizer, reply_client, clock=clock)
        await controller.join()

        summary = await controller.leave()

        assert summary.participants == 1

    async def test_leave_during_join_leaves_the_joined_call(self, recognizer, synthesizer, reply_client, clock):
        """Leaving while the join handshake is in flight ends the session once it lands."""
        call = GatedCall()
        controller = CallSessionController("m1", "Standup", call, recognizer, synthesizer, reply_client, clock=clock)

        join = asyncio.create_task(controller.join())
        await _until(lambda: call.join_calls == 1)
        leave = asyncio.create_task(controller.leave())
        await asyncio.sleep(0)
        call.gate.set()

        assert await join is True
        summary = await leave
        for _ in range(5):
            await asyncio.sleep(0)

        assert summary is not None
        assert controller.view == CallView.ENDED
        assert call.leave_calls == 1
        assert call.calling_state == CallingState.LEFT
        assert recognizer.listen_calls == 0

    async def test_context_manager_leaves(self, controller, call):
        async with controller:
            await controller.join()

        assert controller.view == CallView.ENDED
        assert call.leave_calls == 1


@pytest.mark.parametrize("seconds,expected", [(0, "0m 0s"), (59.9, "0m 59s"), (61, "1m 1s"), (-5, "0m 0s")])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


# ── Reply Client ─────────────────────────────────────────────────────────────


class TestHttpReplyClient:
    def _client(self, handler) -> HttpReplyClient:
        return HttpReplyClient("http://service.test", transport=httpx.MockTransport(handler))

    async def test_posts_question_and_returns_textdata(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"textdata": "Hi!"})

        assert await self._client(handler).reply("m1", "Standup", "hello") == "Hi!"
        assert seen[0].url.path == "/api/v1/ai/chat"
        assert json.loads(seen[0].content) == {"meetingId": "m1", "meetingName": "Standup", "text": "hello"}

    async def test_server_error_is_no_reply(self):
        client = self._client(lambda request: httpx.Response(500, json={"error": "Failed to generate reply"}))
        assert await client.reply("m1", "Standup", "hello") is None

    async def test_null_textdata_is_no_reply(self):
        client = self._client(lambda request: httpx.Response(200, json={"textdata": None}))
        assert await client.reply("m1", "Standup", "hello") is None

    async def test_non_json_body_is_no_reply(self):
        client = self._client(lambda request: httpx.Response(200, text="<html>"))
        assert await client.reply("m1", "Standup", "hello") is None
