"""Meeting repository -- async data access for meetings, agents, and users.

Provides MeetingRepository with the session_factory callable pattern.
Handles serialization between Pydantic schemas and SQLAlchemy models.

Status changes never go through a read-modify-write cycle: ``transition``
issues a single conditional UPDATE guarded by the expected prior status
and reports whether it applied.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Collection, Iterable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetai.meetings.models import AgentModel, MeetingModel, UserModel
from src.meetai.meetings.schemas import (
    Agent,
    Meeting,
    MeetingCreate,
    MeetingStatus,
    User,
)

logger = structlog.get_logger(__name__)

# Columns a transition may write alongside the status.
_TRANSITION_COLUMNS = frozenset(
    {"started_at", "ended_at", "transcript_url", "recording_url", "summary"}
)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        name=model.name,
        user_id=model.user_id,
        agent_id=model.agent_id,
        status=MeetingStatus(model.status),
        started_at=model.started_at,
        ended_at=model.ended_at,
        transcript_url=model.transcript_url,
        recording_url=model.recording_url,
        summary=model.summary,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
    )


def _model_to_agent(model: AgentModel) -> Agent:
    """Convert AgentModel to Agent schema."""
    return Agent(
        id=model.id,
        name=model.name,
        instructions=model.instructions,
        user_id=model.user_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_user(model: UserModel) -> User:
    return User(id=model.id, name=model.name, email=model.email, image=model.image)


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async data access for meetings and the identities they reference.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(self, data: MeetingCreate) -> Meeting:
        """Persist a new meeting in ``upcoming`` status.

        Args:
            data: MeetingCreate with name, owner, and agent.

        Returns:
            Meeting with all persisted fields.
        """
        async for session in self._session_factory():
            model = MeetingModel(
                name=data.name,
                user_id=data.user_id,
                agent_id=data.agent_id,
                status=MeetingStatus.UPCOMING.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_meeting(model)

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        """Get a meeting by ID.

        Returns:
            Meeting if found, None otherwise.
        """
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(MeetingModel.id == meeting_id)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def transition(
        self,
        meeting_id: str,
        expected: Collection[MeetingStatus],
        new_status: MeetingStatus,
        **values: Any,
    ) -> Meeting | None:
        """Conditionally move a meeting to ``new_status``.

        Issues ``UPDATE meetings SET ... WHERE id = :id AND status IN
        (:expected) RETURNING *`` in one statement, so concurrent or
        redelivered events cannot interleave between a read and a write.

        Args:
            meeting_id: Meeting ID.
            expected: Statuses the row must currently be in.
            new_status: Status to write.
            **values: Extra columns to write (timestamps, transcript_url,
                summary, recording_url).

        Returns:
            The updated Meeting, or None when no row matched (missing
            meeting or a status outside ``expected``).

        Raises:
            ValueError: If ``values`` names a column transitions may not write.
        """
        unknown = set(values) - _TRANSITION_COLUMNS
        if unknown:
            msg = f"Columns not writable by a transition: {sorted(unknown)}"
            raise ValueError(msg)

        async for session in self._session_factory():
            stmt = (
                update(MeetingModel)
                .where(
                    MeetingModel.id == meeting_id,
                    MeetingModel.status.in_([s.value for s in expected]),
                )
                .values(
                    status=new_status.value,
                    updated_at=datetime.now(timezone.utc),
                    **values,
                )
                .returning(MeetingModel)
                .execution_options(synchronize_session=False)
            )
            result = await session.scalars(stmt)
            model = result.one_or_none()
            await session.commit()
            if model is None:
                return None
            return _model_to_meeting(model)

    # ── Agents & Users ───────────────────────────────────────────────────

    async def get_agent(self, agent_id: str) -> Agent | None:
        """Get an agent by ID."""
        async for session in self._session_factory():
            stmt = select(AgentModel).where(AgentModel.id == agent_id)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_agent(model)

    async def get_users_by_ids(self, user_ids: Iterable[str]) -> list[User]:
        """Bulk-load users for transcript speaker resolution."""
        ids = list(set(user_ids))
        if not ids:
            return []
        async for session in self._session_factory():
            result = await session.execute(select(UserModel).where(UserModel.id.in_(ids)))
            return [_model_to_user(m) for m in result.scalars().all()]

    async def get_agents_by_ids(self, agent_ids: Iterable[str]) -> list[Agent]:
        """Bulk-load agents for transcript speaker resolution."""
        ids = list(set(agent_ids))
        if not ids:
            return []
        async for session in self._session_factory():
            result = await session.execute(select(AgentModel).where(AgentModel.id.in_(ids)))
            return [_model_to_agent(m) for m in result.scalars().all()]
