"""Pydantic v2 schemas for the meeting lifecycle domain.

Defines the data contracts for meetings, agents, users, and transcripts.
The webhook dispatcher, state machine, completion job, reply pipeline,
and the REST API all import from this module.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Lifecycle status of a meeting from scheduling through completion."""

    UPCOMING = "upcoming"
    ACTIVE = "active"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ── Identity Models ──────────────────────────────────────────────────────────


class User(BaseModel):
    """A human account, owned by the authentication system (read-only here)."""

    id: str
    name: str
    email: str = ""
    image: str | None = None


class Agent(BaseModel):
    """AI persona: prompt source and chat identity."""

    id: str
    name: str
    instructions: str
    user_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Meeting Models ───────────────────────────────────────────────────────────


class MeetingCreate(BaseModel):
    """Input for scheduling a new meeting."""

    name: str = Field(min_length=1, max_length=200)
    agent_id: str = Field(alias="agentId")
    user_id: str = Field(alias="userId")

    model_config = {"populate_by_name": True}


class Meeting(BaseModel):
    """A meeting record and its lifecycle state."""

    id: str
    name: str
    user_id: str
    agent_id: str
    status: MeetingStatus = MeetingStatus.UPCOMING
    started_at: datetime | None = None
    ended_at: datetime | None = None
    transcript_url: str | None = None
    recording_url: str | None = None
    summary: str | None = None
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration(self) -> float | None:
        """Seconds between start and end, when both are known."""
        if self.started_at is None or self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()


# ── Transcript Models ────────────────────────────────────────────────────────


class TranscriptItem(BaseModel):
    """One line of the provider's JSONL transcript."""

    speaker_id: str
    type: str = "speech"
    text: str
    start_ts: int
    stop_ts: int


class Speaker(BaseModel):
    """Display identity resolved for a transcript speaker."""

    name: str
    image: str


class ResolvedTranscriptEntry(BaseModel):
    """Transcript line joined with its speaker's display identity."""

    start_ts: int
    stop_ts: int
    text: str
    speaker_id: str
    user: Speaker
