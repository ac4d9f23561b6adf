"""Shared test doubles and fixtures.

Provides:
- InMemoryMeetingRepository honoring the conditional-transition contract
- FakeJobQueue recording enqueued jobs
- FakeChatClient recording upserts and sends in call order
- FakeLLM returning canned completions (or raising)
- A fixed clock and a state machine wired to the in-memory repository

No database, Redis, or provider access is required by any test.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from src.meetai.jobs.schemas import Job
from src.meetai.meetings.schemas import Agent, Meeting, MeetingCreate, MeetingStatus, User
from src.meetai.meetings.state_machine import MeetingStateMachine
from src.meetai.stream.chat import ChatMessage

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryMeetingRepository:
    """In-memory MeetingRepository for testing without a database."""

    def __init__(self) -> None:
        self.meetings: dict[str, Meeting] = {}
        self.agents: dict[str, Agent] = {}
        self.users: dict[str, User] = {}
        self.transition_calls: list[tuple[str, frozenset, MeetingStatus]] = []
        self.fail_with: Exception | None = None
        self._counter = 0

    # seeding helpers

    def add_agent(self, agent_id: str, name: str, instructions: str, user_id: str = "user-1") -> Agent:
        agent = Agent(id=agent_id, name=name, instructions=instructions, user_id=user_id)
        self.agents[agent_id] = agent
        return agent

    def add_user(self, user_id: str, name: str, image: str | None = None) -> User:
        user = User(id=user_id, name=name, email=f"{user_id}@example.com", image=image)
        self.users[user_id] = user
        return user

    def add_meeting(
        self,
        meeting_id: str,
        status: MeetingStatus = MeetingStatus.UPCOMING,
        agent_id: str = "agent-1",
        user_id: str = "user-1",
        name: str = "Weekly sync",
        **fields: Any,
    ) -> Meeting:
        meeting = Meeting(
            id=meeting_id,
            name=name,
            user_id=user_id,
            agent_id=agent_id,
            status=status,
            created_at=T0,
            updated_at=T0,
            **fields,
        )
        self.meetings[meeting_id] = meeting
        return meeting

    # repository interface

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def create_meeting(self, data: MeetingCreate) -> Meeting:
        self._check()
        self._counter += 1
        return self.add_meeting(
            f"m-{self._counter}",
            agent_id=data.agent_id,
            user_id=data.user_id,
            name=data.name,
        )

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        self._check()
        return self.meetings.get(meeting_id)

    async def transition(
        self,
        meeting_id: str,
        expected,
        new_status: MeetingStatus,
        **values: Any,
    ) -> Meeting | None:
        self._check()
        self.transition_calls.append((meeting_id, frozenset(expected), new_status))
        meeting = self.meetings.get(meeting_id)
        if meeting is None or meeting.status not in expected:
            return None
        updated = meeting.model_copy(
            update={"status": new_status, "updated_at": T0 + timedelta(hours=1), **values}
        )
        self.meetings[meeting_id] = updated
        return updated

    async def get_agent(self, agent_id: str) -> Agent | None:
        self._check()
        return self.agents.get(agent_id)

    async def get_users_by_ids(self, user_ids) -> list[User]:
        return [self.users[i] for i in set(user_ids) if i in self.users]

    async def get_agents_by_ids(self, agent_ids) -> list[Agent]:
        return [self.agents[i] for i in set(agent_ids) if i in self.agents]


class FakeJobQueue:
    """Records enqueued jobs instead of writing to Redis."""

    def __init__(self) -> None:
        self.jobs: list[Job] = []
        self.fail_with: Exception | None = None

    async def enqueue(self, name: str, payload: dict[str, Any]) -> Job:
        if self.fail_with is not None:
            raise self.fail_with
        job = Job(name=name, payload=payload)
        self.jobs.append(job)
        return job


class FakeChatClient:
    """Chat client double; ``calls`` keeps every mutation in order."""

    def __init__(self, messages: list[ChatMessage] | None = None) -> None:
        self.messages = list(messages or [])
        self.calls: list[tuple[str, tuple]] = []
        self.history_requests: list[tuple[str, int]] = []
        self.send_error: Exception | None = None

    async def get_recent_messages(self, channel_id: str, limit: int) -> list[ChatMessage]:
        self.history_requests.append((channel_id, limit))
        return self.messages[-limit:] if limit > 0 else []

    async def upsert_user(self, user_id: str, name: str, image: str | None = None) -> None:
        self.calls.append(("upsert_user", (user_id, name, image)))

    async def send_message(self, channel_id: str, text: str, user_id: str) -> dict:
        if self.send_error is not None:
            raise self.send_error
        self.calls.append(("send_message", (channel_id, text, user_id)))
        return {"message": {"text": text}}

    @property
    def sent(self) -> list[tuple]:
        return [args for name, args in self.calls if name == "send_message"]


class FakeLLM:
    """LLMService double returning ``content`` or raising ``error``."""

    def __init__(self, content: str | None = "Sure, here is the answer.", error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.requests: list[dict[str, Any]] = []

    @property
    def available(self) -> bool:
        return True

    async def completion(self, messages, max_tokens=1024, temperature=0.7, metadata=None) -> dict:
        self.requests.append(
            {"messages": messages, "max_tokens": max_tokens, "temperature": temperature}
        )
        if self.error is not None:
            raise self.error
        return {"content": self.content, "model": "fake", "usage": {}}

    @property
    def last_prompt(self) -> str:
        return self.requests[-1]["messages"][-1]["content"]


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def clock():
    """Deterministic clock: T0, then one minute later on every call."""
    ticks = {"n": 0}

    def _now() -> datetime:
        value = T0 + timedelta(minutes=ticks["n"])
        ticks["n"] += 1
        return value

    return _now


@pytest.fixture
def repository() -> InMemoryMeetingRepository:
    repo = InMemoryMeetingRepository()
    repo.add_agent("agent-1", "Tutor", "Answer like a patient tutor.")
    return repo


@pytest.fixture
def state_machine(repository, clock) -> MeetingStateMachine:
    return MeetingStateMachine(repository, clock=clock)


@pytest.fixture
def job_queue() -> FakeJobQueue:
    return FakeJobQueue()


@pytest.fixture
def chat_client() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()
