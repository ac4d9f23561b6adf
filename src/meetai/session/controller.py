"""Per-call session controller: join, converse, leave.

View state::

    lobby -> joined -> ended

While joined, a background loop captures one utterance at a time, sends
it to the reply client, and speaks any non-empty reply. A reply that
arrives while the previous one is still playing cancels it and starts the
new one. The speaking indicator follows the synthesizer's own completion:
it is raised when playback starts and cleared when the current playback
returns or is cancelled. A cancelled playback that has been superseded
leaves the indicator to its successor.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import structlog

from src.meetai.session.ports import (
    CallConnection,
    CallingState,
    ReplyClient,
    SpeechRecognizer,
    SpeechSynthesizer,
)

logger = structlog.get_logger(__name__)

# Near-silent utterance that unlocks audio output before the first real reply.
AUDIO_PRIMER = " "


class CallView(str, Enum):
    LOBBY = "lobby"
    JOINED = "joined"
    ENDED = "ended"


@dataclass(frozen=True)
class CallSummary:
    """What the ended view shows."""

    meeting_name: str
    duration: str
    duration_seconds: int
    participants: int
    ended_at: str


def format_duration(seconds: float) -> str:
    """Whole seconds as ``"<m>m <s>s"``."""
    total = max(int(seconds), 0)
    return f"{total // 60}m {total % 60}s"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallSessionController:
    """Drives one call from the participant's side.

    All gating flags (audio primed, voices loaded) live on the instance;
    two controllers in the same process never share them.

    Args:
        meeting_id: Meeting (and call) id.
        meeting_name: Display name, echoed to the reply endpoint and summary.
        call: CallConnection for the media session.
        recognizer: SpeechRecognizer for user speech.
        synthesizer: SpeechSynthesizer for agent replies.
        reply_client: ReplyClient for the AI reply endpoint.
        clock: Returns the current time; injected for tests.
        capture_retry_delay: Seconds to wait after a capture error or an
            empty capture.
    """

    def __init__(
        self,
        meeting_id: str,
        meeting_name: str,
        call: CallConnection,
        recognizer: SpeechRecognizer,
        synthesizer: SpeechSynthesizer,
        reply_client: ReplyClient,
        clock: Callable[[], datetime] = _utcnow,
        capture_retry_delay: float = 0.5,
    ) -> None:
        self._meeting_id = meeting_id
        self._meeting_name = meeting_name
        self._call = call
        self._recognizer = recognizer
        self._synthesizer = synthesizer
        self._reply_client = reply_client
        self._clock = clock
        self._capture_retry_delay = capture_retry_delay

        self._view = CallView.LOBBY
        self._joining = False
        self._join_settled = asyncio.Event()
        self._leave_requested = False
        self._audio_unlocked = False
        self._voices_loaded = False
        self._speaking = False
        self._speaking_listeners: list[Callable[[bool], None]] = []

        self._loop_task: asyncio.Task | None = None
        self._speech_task: asyncio.Task | None = None

        self._started_at: datetime | None = None
        self._ended_at: datetime | None = None
        self._participants = 1
        self._summary: CallSummary | None = None

        self._log = logger.bind(meeting_id=meeting_id)

    # ── State ────────────────────────────────────────────────────────────

    @property
    def view(self) -> CallView:
        return self._view

    @property
    def speaking(self) -> bool:
        return self._speaking

    @property
    def audio_unlocked(self) -> bool:
        return self._audio_unlocked

    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    @property
    def ended_at(self) -> datetime | None:
        return self._ended_at

    def on_speaking_changed(self, listener: Callable[[bool], None]) -> None:
        """Subscribe to speaking-indicator changes."""
        self._speaking_listeners.append(listener)

    def _set_speaking(self, value: bool) -> None:
        if self._speaking == value:
            return
        self._speaking = value
        for listener in list(self._speaking_listeners):
            try:
                listener(value)
            except Exception:
                self._log.warning("session.speaking_listener_failed", exc_info=True)

    # ── Join ─────────────────────────────────────────────────────────────

    async def join(self) -> bool:
        """lobby -> joined.

        Returns:
            True if this call joined; False when ignored because the
            controller is not in the lobby or the call is already
            joined/joining.
        """
        if self._view != CallView.LOBBY or self._joining:
            self._log.debug("session.join_ignored", view=self._view.value)
            return False
        if self._call.calling_state in (CallingState.JOINED, CallingState.JOINING):
            self._log.debug("session.join_ignored", calling_state=self._call.calling_state.value)
            return False

        self._join_settled.clear()
        self._joining = True
        try:
            await self._unlock_audio()
            await self._ensure_voices()
            await self._call.join()
            self._started_at = self._clock()
            self._view = CallView.JOINED
            if self._leave_requested:
                # leave() is waiting on this join and will end the session.
                self._log.info("session.left_while_joining")
            else:
                self._loop_task = asyncio.create_task(self._run_loop())
        finally:
            self._joining = False
            self._join_settled.set()

        self._log.info("session.joined")
        return True

    async def _unlock_audio(self) -> None:
        if self._audio_unlocked:
            return
        self._audio_unlocked = True
        try:
            await self._synthesizer.speak(AUDIO_PRIMER)
        except Exception:
            self._log.warning("session.audio_unlock_failed", exc_info=True)

    async def _ensure_voices(self) -> None:
        if self._voices_loaded:
            return
        await self._synthesizer.load_voices()
        self._voices_loaded = True

    # ── Conversation loop ────────────────────────────────────────────────

    async def _run_loop(self) -> None:
        while self._view == CallView.JOINED:
            try:
                text = await self._recognizer.listen()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._log.warning("session.capture_failed", exc_info=True)
                await asyncio.sleep(self._capture_retry_delay)
                continue
            if not text or not text.strip():
                await asyncio.sleep(self._capture_retry_delay)
                continue
            await self.handle_utterance(text)
            # yield so a recognizer that returns immediately cannot starve leave()
            await asyncio.sleep(0)

    async def handle_utterance(self, text: str | None) -> str | None:
        """Send one captured utterance for a reply and speak the result.

        Returns:
            The reply being spoken, or None when there was nothing to say.
        """
        if not text or not text.strip() or self._view != CallView.JOINED:
            return None
        reply = await self._reply_client.reply(self._meeting_id, self._meeting_name, text.strip())
        if not reply or not reply.strip() or self._view != CallView.JOINED:
            return None
        self.speak(reply.strip())
        return reply.strip()

    def speak(self, text: str) -> asyncio.Task:
        """Start speaking ``text``, cancelling any playback in progress."""
        self._cancel_speech()
        self._speech_task = asyncio.create_task(self._speak(text))
        return self._speech_task

    async def _speak(self, text: str) -> None:
        task = asyncio.current_task()
        self._set_speaking(True)
        try:
            await self._synthesizer.speak(text)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._log.warning("session.synthesis_failed", exc_info=True)
        finally:
            if self._speech_task is task:
                self._speech_task = None
                self._set_speaking(False)

    def _cancel_speech(self) -> None:
        task = self._speech_task
        if task is not None and not task.done():
            self._synthesizer.cancel()
            task.cancel()

    # ── Leave ────────────────────────────────────────────────────────────

    async def leave(self) -> CallSummary | None:
        """joined -> ended.

        Cancels playback, stops capture, stops the loop, then leaves the
        call. A failing ``call.leave()`` is logged; the session still ends.
        Called while ``join()`` is in flight, it waits for the join to settle
        so the call it produced is left rather than orphaned.

        Returns:
            The call summary, or None if the session was never joined.
        """
        if self._joining:
            self._leave_requested = True
            await self._join_settled.wait()
        if self._view == CallView.ENDED:
            return self._summary
        if self._view != CallView.JOINED:
            await self._teardown()
            return None

        self._view = CallView.ENDED
        self._ended_at = self._clock()
        try:
            self._participants = max(self._call.participant_count, 1)
        except Exception:
            self._log.warning("session.participant_count_failed", exc_info=True)

        await self._teardown()

        try:
            await self._call.leave()
        except Exception:
            self._log.warning("session.leave_failed", exc_info=True)

        self._summary = self._build_summary()
        self._log.info(
            "session.ended",
            duration=self._summary.duration,
            participants=self._summary.participants,
        )
        return self._summary

    async def _teardown(self) -> None:
        speech_task = self._speech_task
        self._cancel_speech()
        self._speech_task = None
        self._set_speaking(False)

        try:
            self._recognizer.stop()
        except Exception:
            self._log.warning("session.capture_stop_failed", exc_info=True)

        loop_task = self._loop_task
        self._loop_task = None
        if loop_task is not None and not loop_task.done():
            loop_task.cancel()

        pending = [t for t in (speech_task, loop_task) if t is not None]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _build_summary(self) -> CallSummary:
        started = self._started_at or self._ended_at
        seconds = int((self._ended_at - started).total_seconds()) if started and self._ended_at else 0
        return CallSummary(
            meeting_name=self._meeting_name,
            duration=format_duration(seconds),
            duration_seconds=max(seconds, 0),
            participants=self._participants,
            ended_at=self._ended_at.strftime("%H:%M") if self._ended_at else "",
        )

    # ── Context manager ──────────────────────────────────────────────────

    async def __aenter__(self) -> CallSessionController:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.leave()
