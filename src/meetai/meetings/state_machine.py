"""Meeting lifecycle state machine.

Legal transitions::

    upcoming -> active -> processing -> completed
    upcoming -> cancelled

A transcript arriving for an active meeting ends it first (active ->
processing), then records the URL.

Each operation is a single compare-and-swap write keyed on the expected
prior status (see ``MeetingRepository.transition``). A write that does not
apply returns None and is logged at info level; provider redelivery and
out-of-order events land here routinely and are not errors.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from src.meetai.meetings.schemas import Meeting, MeetingStatus

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MeetingStateMachine:
    """Applies lifecycle transitions to meeting records.

    Args:
        repository: MeetingRepository (or any object with ``transition``).
        clock: Returns the current time; injected for tests.
    """

    def __init__(self, repository, clock: Callable[[], datetime] = _utcnow) -> None:
        self._repository = repository
        self._clock = clock

    async def start(self, meeting_id: str) -> Meeting | None:
        """upcoming -> active, stamping started_at."""
        return await self._apply(
            "start",
            meeting_id,
            {MeetingStatus.UPCOMING},
            MeetingStatus.ACTIVE,
            started_at=self._clock(),
        )

    async def end(self, meeting_id: str) -> Meeting | None:
        """active -> processing, stamping ended_at."""
        return await self._apply(
            "end",
            meeting_id,
            {MeetingStatus.ACTIVE},
            MeetingStatus.PROCESSING,
            ended_at=self._clock(),
        )

    async def attach_transcript(self, meeting_id: str, transcript_url: str) -> Meeting | None:
        """Record the transcript location, ending the call first if needed.

        The URL is only ever written to a processing meeting. A transcript
        that overtakes ``call.session_ended`` performs the end transition
        itself (stamping ``ended_at``); the late session_ended is then a
        no-op.
        """
        meeting = await self._write_transcript_url(meeting_id, transcript_url)
        if meeting is not None:
            return meeting
        await self.end(meeting_id)
        return await self._write_transcript_url(meeting_id, transcript_url)

    async def _write_transcript_url(self, meeting_id: str, transcript_url: str) -> Meeting | None:
        return await self._apply(
            "attach_transcript",
            meeting_id,
            {MeetingStatus.PROCESSING},
            MeetingStatus.PROCESSING,
            transcript_url=transcript_url,
        )

    async def complete(
        self,
        meeting_id: str,
        transcript_url: str,
        summary: str | None,
    ) -> Meeting | None:
        """processing -> completed, writing transcript_url and summary."""
        return await self._apply(
            "complete",
            meeting_id,
            {MeetingStatus.PROCESSING},
            MeetingStatus.COMPLETED,
            transcript_url=transcript_url,
            summary=summary,
        )

    async def cancel(self, meeting_id: str) -> Meeting | None:
        """upcoming -> cancelled. Only reachable from a user action."""
        return await self._apply(
            "cancel",
            meeting_id,
            {MeetingStatus.UPCOMING},
            MeetingStatus.CANCELLED,
        )

    async def _apply(
        self,
        operation: str,
        meeting_id: str,
        expected: set[MeetingStatus],
        new_status: MeetingStatus,
        **values,
    ) -> Meeting | None:
        meeting = await self._repository.transition(
            meeting_id, expected, new_status, **values
        )
        if meeting is None:
            logger.info(
                "meeting.transition_skipped",
                operation=operation,
                meeting_id=meeting_id,
                expected=sorted(s.value for s in expected),
                target=new_status.value,
            )
            return None

        logger.info(
            "meeting.transitioned",
            operation=operation,
            meeting_id=meeting_id,
            status=meeting.status.value,
        )
        return meeting
