"""Routes verified webhook events to their handlers.

One handler per event type, looked up in a registry keyed by the event's
``type`` tag. Handlers return a short outcome string used for logging
and metrics:

- ``applied``: the event changed state or produced a reply
- ``skipped``: well-formed but nothing to do (missing ids, unknown
  meeting, status precondition not met, sender is the agent)
- ``failed``: a contained chat reply failure (generation or delivery);
  chat replies are best effort and never fail the webhook

Database and queue errors propagate so the endpoint answers 5xx and the
provider redelivers; every handler is safe to run twice.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from src.meetai.jobs.schemas import JobName
from src.meetai.meetings.schemas import MeetingStatus
from src.meetai.webhooks.events import (
    EventType,
    MessageNewEvent,
    SessionEndedEvent,
    SessionStartedEvent,
    TranscriptionReadyEvent,
    WebhookEvent,
)

logger = structlog.get_logger(__name__)

APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"


class WebhookDispatcher:
    """Applies provider events to meetings.

    Args:
        repository: MeetingRepository for meeting and agent lookups.
        state_machine: MeetingStateMachine for all status writes.
        job_queue: JobQueue used to schedule transcript processing.
        reply_pipeline: ReplyPipeline for post-call chat replies.
    """

    def __init__(self, repository, state_machine, job_queue, reply_pipeline) -> None:
        self._repository = repository
        self._state_machine = state_machine
        self._job_queue = job_queue
        self._reply_pipeline = reply_pipeline
        self._handlers: dict[str, Callable[..., Awaitable[str]]] = {
            EventType.SESSION_STARTED: self._on_session_started,
            EventType.SESSION_ENDED: self._on_session_ended,
            EventType.TRANSCRIPTION_READY: self._on_transcription_ready,
            EventType.MESSAGE_NEW: self._on_message_new,
        }

    async def dispatch(self, event: WebhookEvent) -> str:
        """Run the handler registered for ``event.type``."""
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.debug("webhook.no_handler", event_type=event.type)
            return SKIPPED
        outcome = await handler(event)
        logger.info("webhook.dispatched", event_type=event.type, outcome=outcome)
        return outcome

    # ── Call lifecycle ───────────────────────────────────────────────────

    async def _on_session_started(self, event: SessionStartedEvent) -> str:
        meeting_id = event.meeting_id
        if not meeting_id:
            logger.warning("webhook.missing_meeting_id", event_type=event.type)
            return SKIPPED
        meeting = await self._state_machine.start(meeting_id)
        return APPLIED if meeting else SKIPPED

    async def _on_session_ended(self, event: SessionEndedEvent) -> str:
        meeting_id = event.meeting_id
        if not meeting_id:
            logger.warning("webhook.missing_meeting_id", event_type=event.type)
            return SKIPPED
        meeting = await self._state_machine.end(meeting_id)
        return APPLIED if meeting else SKIPPED

    async def _on_transcription_ready(self, event: TranscriptionReadyEvent) -> str:
        meeting_id = event.meeting_id
        transcript_url = event.transcript_url
        if not meeting_id or not transcript_url:
            logger.warning(
                "webhook.transcription_incomplete",
                has_meeting_id=bool(meeting_id),
                has_url=bool(transcript_url),
            )
            return SKIPPED

        meeting = await self._state_machine.attach_transcript(meeting_id, transcript_url)
        if meeting is None:
            return SKIPPED

        job = await self._job_queue.enqueue(
            JobName.MEETING_PROCESSING.value,
            {"meetingId": meeting_id, "transcriptUrl": transcript_url},
        )
        logger.info(
            "webhook.processing_scheduled",
            meeting_id=meeting_id,
            job_id=job.job_id,
        )
        return APPLIED

    # ── Chat ─────────────────────────────────────────────────────────────

    async def _on_message_new(self, event: MessageNewEvent) -> str:
        sender_id = event.sender_id
        channel_id = event.channel_id
        text = (event.text or "").strip()
        if not sender_id or not channel_id or not text:
            logger.warning("webhook.message_incomplete", channel_id=channel_id)
            return SKIPPED

        meeting = await self._repository.get_meeting(channel_id)
        if meeting is None or meeting.status != MeetingStatus.COMPLETED:
            logger.debug("webhook.message_not_for_completed_meeting", channel_id=channel_id)
            return SKIPPED

        agent = await self._repository.get_agent(meeting.agent_id)
        if agent is None:
            logger.warning("webhook.agent_missing", meeting_id=meeting.id, agent_id=meeting.agent_id)
            return SKIPPED
        if agent.id == sender_id:
            return SKIPPED

        try:
            await self._reply_pipeline.reply_in_channel(
                meeting,
                agent,
                channel_id,
                text,
                exclude_message_id=event.message_id,
            )
        except Exception:
            logger.warning(
                "webhook.chat_reply_failed",
                meeting_id=meeting.id,
                channel_id=channel_id,
                exc_info=True,
            )
            return FAILED
        return APPLIED
