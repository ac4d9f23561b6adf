"""Meeting persistence models.

Three SQLAlchemy models on the shared declarative Base:
- UserModel: account rows written by the authentication system, read here
  for transcript speaker resolution
- AgentModel: AI persona (name + instructions) owned by a user
- MeetingModel: meeting record carrying lifecycle status and outputs

Ids are opaque strings so provider call ids (which equal meeting ids)
map without conversion. No foreign key constraints; referential
integrity is enforced in the repository.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from src.meetai.core.database import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class UserModel(Base):
    """Human account (read-only from this service's point of view)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    image: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class AgentModel(Base):
    """AI persona whose instructions steer every reply it produces."""

    __tablename__ = "agents"
    __table_args__ = (Index("ix_agents_user_id", "user_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    instructions: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class MeetingModel(Base):
    """Meeting record.

    Status moves only along upcoming -> active -> processing -> completed
    (or upcoming -> cancelled); every status write is conditional on the
    prior status, see MeetingRepository.transition.
    """

    __tablename__ = "meetings"
    __table_args__ = (
        Index("ix_meetings_user_id", "user_id"),
        Index("ix_meetings_agent_id", "agent_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50),
        default="upcoming",
        server_default=text("'upcoming'"),
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transcript_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    recording_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
