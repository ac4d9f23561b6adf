"""Parking stream for jobs the worker gave up on.

A job lands here when its retries are spent, when its handler raised
``NonRetryableJobError``, or when nothing is registered under its name.
Entries keep the original stream fields plus ``_dlq_*`` bookkeeping
fields; replay strips the bookkeeping and re-publishes with attempt 0.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger(__name__)

METADATA_PREFIX = "_dlq_"


def _strip_metadata(fields: dict[str, str]) -> dict[str, str]:
    return {k: v for k, v in fields.items() if not k.startswith(METADATA_PREFIX)}


class DeadLetterQueue:
    """``{stream}:dlq`` next to the job stream it collects failures from."""

    def __init__(self, redis: aioredis.Redis, stream: str) -> None:
        self._redis = redis
        self._stream = stream

    @property
    def key(self) -> str:
        return f"{self._stream}:dlq"

    async def send_to_dlq(
        self,
        message_id: str,
        data: dict[str, str],
        error: str,
        attempt: int,
        retryable: bool = True,
    ) -> str:
        """Park ``data`` with the reason it failed; returns the DLQ entry id."""
        entry = dict(data)
        entry.update({
            f"{METADATA_PREFIX}original_id": message_id,
            f"{METADATA_PREFIX}error": error,
            f"{METADATA_PREFIX}attempt": str(attempt),
            f"{METADATA_PREFIX}retryable": "1" if retryable else "0",
            f"{METADATA_PREFIX}timestamp": datetime.now(timezone.utc).isoformat(),
        })
        entry_id = await self._redis.xadd(self.key, entry)

        logger.warning(
            "job.dead_lettered",
            dlq_id=entry_id,
            original_id=message_id,
            job_id=data.get("job_id"),
            job_name=data.get("name"),
            attempt=attempt,
            retryable=retryable,
        )
        return entry_id

    async def list_messages(self, count: int = 50) -> list[tuple[str, dict[str, Any]]]:
        return await self._redis.xrange(self.key, count=count)

    async def replay_message(self, dlq_message_id: str) -> str:
        """Move one parked entry back onto the job stream.

        Raises:
            ValueError: No entry with that id is parked.
        """
        found = await self._redis.xrange(self.key, min=dlq_message_id, max=dlq_message_id, count=1)
        if not found:
            raise ValueError(f"DLQ message '{dlq_message_id}' not found in {self.key}")

        fields = _strip_metadata(found[0][1])
        fields["attempt"] = "0"
        new_id = await self._redis.xadd(self._stream, fields)
        await self._redis.xdel(self.key, dlq_message_id)

        logger.info("job.replayed", dlq_id=dlq_message_id, message_id=new_id, job_id=fields.get("job_id"))
        return new_id
