"""``meetings/processing`` job: finalize a meeting once its transcript exists.

Steps:
1. Validate the payload (``meetingId`` and ``transcriptUrl`` required;
   anything else is non-retryable).
2. Fetch the transcript. Transport failures and 5xx propagate so the
   worker retries with backoff; a 4xx from the store is non-retryable.
3. Summarize it with the LLM. Best effort: on failure the meeting still
   completes, without a summary.
4. processing -> completed through the state machine.
"""

from __future__ import annotations

import structlog

from src.meetai.ai.prompts import build_summary_messages
from src.meetai.jobs.errors import NonRetryableJobError
from src.meetai.jobs.schemas import Job
from src.meetai.meetings.schemas import Meeting, MeetingStatus, TranscriptItem
from src.meetai.meetings.transcripts import TranscriptFetchError

logger = structlog.get_logger(__name__)


class MeetingCompletionHandler:
    """Job handler registered under ``JobName.MEETING_PROCESSING``.

    Args:
        repository: MeetingRepository.
        state_machine: MeetingStateMachine.
        fetcher: TranscriptFetcher.
        resolver: SpeakerResolver, used to name speakers in the summary prompt.
        llm_service: LLMService; None disables summarization.
    """

    def __init__(self, repository, state_machine, fetcher, resolver, llm_service=None) -> None:
        self._repository = repository
        self._state_machine = state_machine
        self._fetcher = fetcher
        self._resolver = resolver
        self._llm = llm_service

    async def __call__(self, job: Job) -> None:
        meeting_id = job.payload.get("meetingId")
        transcript_url = job.payload.get("transcriptUrl")
        if not isinstance(meeting_id, str) or not meeting_id:
            raise NonRetryableJobError("payload is missing meetingId")
        if not isinstance(transcript_url, str) or not transcript_url:
            raise NonRetryableJobError("payload is missing transcriptUrl")

        log = logger.bind(meeting_id=meeting_id, job_id=job.job_id, attempt=job.attempt)

        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None or meeting.status != MeetingStatus.PROCESSING:
            log.info(
                "processing.skipped",
                reason="meeting_missing" if meeting is None else "not_processing",
            )
            return

        try:
            items = await self._fetcher.fetch(transcript_url)
        except TranscriptFetchError as exc:
            if exc.permanent:
                raise NonRetryableJobError(f"transcript store answered {exc.status_code}") from exc
            raise
        summary = await self._summarize(meeting, items)

        completed = await self._state_machine.complete(meeting_id, transcript_url, summary)
        if completed is None:
            log.info("processing.completion_skipped")
            return
        log.info("processing.completed", has_summary=summary is not None, items=len(items))

    async def _summarize(self, meeting: Meeting, items: list[TranscriptItem]) -> str | None:
        if not items or self._llm is None:
            return None
        try:
            resolved = await self._resolver.resolve(items)
            lines = [(entry.start_ts, entry.user.name, entry.text) for entry in resolved]
            result = await self._llm.completion(
                build_summary_messages(meeting.name, lines),
                temperature=0.2,
                max_tokens=2048,
            )
        except Exception:
            logger.warning("processing.summary_failed", meeting_id=meeting.id, exc_info=True)
            return None
        summary = (result.get("content") or "").strip()
        return summary or None
