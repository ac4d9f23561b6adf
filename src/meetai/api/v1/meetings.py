"""REST endpoints for meetings.

Create (provisions the provider call), fetch, cancel, and read the
speaker-resolved transcript. Status changes other than cancellation are
driven by provider webhooks, never by these endpoints.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel

from src.meetai.meetings.avatars import AvatarVariant, generate_avatar_uri
from src.meetai.meetings.schemas import Agent, Meeting, MeetingCreate, ResolvedTranscriptEntry
from src.meetai.meetings.service import (
    AgentNotFoundError,
    InvalidTransitionError,
    MeetingNotFoundError,
)
from src.meetai.stream.base import ProviderError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class AgentSummary(BaseModel):
    id: str
    name: str
    image: str


class MeetingResponse(BaseModel):
    """Response for meeting data, serializes datetimes to ISO strings."""

    id: str
    name: str
    user_id: str
    agent_id: str
    status: str
    started_at: str | None = None
    ended_at: str | None = None
    duration: float | None = None
    transcript_url: str | None = None
    recording_url: str | None = None
    summary: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    agent: AgentSummary | None = None


class TranscriptEntryResponse(BaseModel):
    start_ts: int
    text: str
    user: dict[str, str]


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_meeting_repository(request: Request) -> Any:
    """Retrieve MeetingRepository from app.state, 503 if not available."""
    repo = getattr(request.app.state, "meeting_repository", None)
    if repo is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meeting repository not initialized",
        )
    return repo


def _get_meeting_service(request: Request) -> Any:
    """Retrieve MeetingService from app.state, 503 if not available."""
    service = getattr(request.app.state, "meeting_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Meeting service not initialized (provider keys may not be configured)",
        )
    return service


def _get_transcript_service(request: Request) -> Any:
    """Retrieve TranscriptService from app.state, 503 if not available."""
    service = getattr(request.app.state, "transcript_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Transcript service not initialized",
        )
    return service


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _meeting_to_response(m: Meeting, agent: Agent | None = None) -> MeetingResponse:
    """Convert Meeting schema to MeetingResponse."""
    return MeetingResponse(
        id=m.id,
        name=m.name,
        user_id=m.user_id,
        agent_id=m.agent_id,
        status=m.status.value,
        started_at=m.started_at.isoformat() if m.started_at else None,
        ended_at=m.ended_at.isoformat() if m.ended_at else None,
        duration=m.duration,
        transcript_url=m.transcript_url,
        recording_url=m.recording_url,
        summary=m.summary,
        created_at=m.created_at.isoformat() if m.created_at else None,
        updated_at=m.updated_at.isoformat() if m.updated_at else None,
        agent=AgentSummary(
            id=agent.id,
            name=agent.name,
            image=generate_avatar_uri(agent.name, AvatarVariant.BOTTTS_NEUTRAL),
        ) if agent else None,
    )


def _entry_to_response(e: ResolvedTranscriptEntry) -> TranscriptEntryResponse:
    return TranscriptEntryResponse(
        start_ts=e.start_ts,
        text=e.text,
        user={"name": e.user.name, "image": e.user.image},
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("", response_model=MeetingResponse, status_code=status.HTTP_201_CREATED)
async def create_meeting(body: MeetingCreate, request: Request) -> MeetingResponse:
    """Schedule a meeting and provision its call."""
    service = _get_meeting_service(request)
    try:
        meeting = await service.create_meeting(body)
    except AgentNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Agent not found",
        )
    except ProviderError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not provision the call",
        )
    return _meeting_to_response(meeting)


@router.get("/{meeting_id}", response_model=MeetingResponse)
async def get_meeting(meeting_id: str, request: Request) -> MeetingResponse:
    """Get a meeting with its agent."""
    repo = _get_meeting_repository(request)
    meeting = await repo.get_meeting(meeting_id)
    if meeting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Meeting not found",
        )
    agent = await repo.get_agent(meeting.agent_id)
    return _meeting_to_response(meeting, agent)


@router.post("/{meeting_id}/cancel", response_model=MeetingResponse)
async def cancel_meeting(meeting_id: str, request: Request) -> MeetingResponse:
    """Cancel an upcoming meeting."""
    service = _get_meeting_service(request)
    try:
        meeting = await service.cancel_meeting(meeting_id)
    except MeetingNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Meeting not found",
        )
    except InvalidTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Meeting is {exc.status.value}; only upcoming meetings can be cancelled",
        )
    return _meeting_to_response(meeting)


@router.get("/{meeting_id}/transcript", response_model=list[TranscriptEntryResponse])
async def get_transcript(meeting_id: str, request: Request) -> list[TranscriptEntryResponse]:
    """Transcript lines with resolved speaker names and avatars.

    Empty when the meeting has no transcript yet or it cannot be fetched.
    """
    repo = _get_meeting_repository(request)
    transcripts = _get_transcript_service(request)
    meeting = await repo.get_meeting(meeting_id)
    if meeting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Meeting not found",
        )
    entries = await transcripts.get_resolved_transcript(meeting.transcript_url)
    return [_entry_to_response(e) for e in entries]
