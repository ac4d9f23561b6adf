"""Job envelope for the Redis Streams queue.

Jobs serialize to flat string dicts for XADD and deserialize back
losslessly. The payload travels as a JSON string.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class JobName(str, Enum):
    """Registered background jobs."""

    MEETING_PROCESSING = "meetings/processing"


class Job(BaseModel):
    """A unit of background work.

    Attributes:
        job_id: Stable identifier across retries (auto-generated UUID4).
        name: Handler key, e.g. ``meetings/processing``.
        payload: JSON-serializable job input.
        attempt: Number of failed attempts so far (0 on first delivery).
        enqueued_at: UTC time of first enqueue.
    """

    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    attempt: int = 0
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize to a flat dict of strings suitable for XADD."""
        return {
            "job_id": self.job_id,
            "name": self.name,
            "payload": json.dumps(self.payload),
            "attempt": str(self.attempt),
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_stream_dict(cls, raw: dict[str, str]) -> Job:
        """Reverse ``to_stream_dict()``.

        Raises:
            KeyError / ValueError: If the entry is not a job envelope.
        """
        return cls(
            job_id=raw["job_id"],
            name=raw["name"],
            payload=json.loads(raw["payload"]) if raw.get("payload") else {},
            attempt=int(raw.get("attempt", "0")),
            enqueued_at=datetime.fromisoformat(raw["enqueued_at"]),
        )

    def next_attempt(self) -> Job:
        return self.model_copy(update={"attempt": self.attempt + 1})
