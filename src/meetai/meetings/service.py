"""User-initiated meeting operations: create (with call provisioning) and cancel."""

from __future__ import annotations

import structlog

from src.meetai.meetings.schemas import Meeting, MeetingCreate, MeetingStatus

logger = structlog.get_logger(__name__)


class MeetingNotFoundError(Exception):
    """No meeting with the given id."""


class AgentNotFoundError(Exception):
    """The agent does not exist or belongs to another user."""


class InvalidTransitionError(Exception):
    """The meeting is not in a status that allows the requested operation."""

    def __init__(self, meeting_id: str, status: MeetingStatus, operation: str) -> None:
        super().__init__(f"Cannot {operation} meeting {meeting_id} in status '{status.value}'")
        self.meeting_id = meeting_id
        self.status = status
        self.operation = operation


class MeetingService:
    """Create and cancel meetings.

    Args:
        repository: MeetingRepository.
        state_machine: MeetingStateMachine.
        video_client: StreamVideoClient used to provision the call.
    """

    def __init__(self, repository, state_machine, video_client) -> None:
        self._repository = repository
        self._state_machine = state_machine
        self._video = video_client

    async def create_meeting(self, data: MeetingCreate) -> Meeting:
        """Persist an ``upcoming`` meeting and provision its call.

        The call id equals the meeting id and carries ``meetingId`` and
        ``meetingName`` in its custom data so lifecycle webhooks can find
        the meeting again.

        Raises:
            AgentNotFoundError: If the agent is missing or not owned by the user.
            ProviderError: If the call could not be provisioned. The meeting
                row stays ``upcoming``; the user may cancel it.
        """
        agent = await self._repository.get_agent(data.agent_id)
        if agent is None or agent.user_id != data.user_id:
            raise AgentNotFoundError(data.agent_id)

        meeting = await self._repository.create_meeting(data)
        logger.info("meeting.created", meeting_id=meeting.id, agent_id=agent.id, user_id=data.user_id)

        try:
            await self._video.create_call(
                meeting_id=meeting.id,
                meeting_name=meeting.name,
                created_by_id=data.user_id,
            )
        except Exception:
            logger.error("meeting.call_provisioning_failed", meeting_id=meeting.id, exc_info=True)
            raise

        return meeting

    async def cancel_meeting(self, meeting_id: str) -> Meeting:
        """upcoming -> cancelled.

        Raises:
            MeetingNotFoundError: If the meeting does not exist.
            InvalidTransitionError: If the meeting is no longer upcoming.
        """
        cancelled = await self._state_machine.cancel(meeting_id)
        if cancelled is not None:
            return cancelled

        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(meeting_id)
        raise InvalidTransitionError(meeting_id, meeting.status, "cancel")
