"""Job queue backed by a Redis Stream.

Producers call ``enqueue``; ``JobWorker`` reads through a consumer group
so several worker processes can share one stream.
"""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis
import structlog

from src.meetai.jobs.schemas import Job

logger = structlog.get_logger(__name__)

STREAM_MAXLEN = 10000


class JobQueue:
    """Append jobs to a Redis Stream and read them back as a group consumer.

    Args:
        redis: Async Redis client.
        stream: Stream key, e.g. ``meetai:jobs``.
    """

    def __init__(self, redis: aioredis.Redis, stream: str) -> None:
        self._redis = redis
        self._stream = stream

    @property
    def stream(self) -> str:
        return self._stream

    async def enqueue(self, name: str, payload: dict[str, Any]) -> Job:
        """Create and enqueue a new job.

        Returns:
            The enqueued Job (with its generated job_id).
        """
        job = Job(name=name, payload=payload)
        await self.publish(job)
        return job

    async def publish(self, job: Job) -> str:
        """XADD an existing job envelope (used for first delivery and retries)."""
        message_id = await self._redis.xadd(
            self._stream,
            job.to_stream_dict(),
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )
        logger.info(
            "job.enqueued",
            stream=self._stream,
            job_id=job.job_id,
            job_name=job.name,
            attempt=job.attempt,
            message_id=message_id,
        )
        return message_id

    async def ensure_group(self, group: str) -> None:
        """Create the consumer group if it does not exist yet."""
        try:
            await self._redis.xgroup_create(self._stream, group, id="0", mkstream=True)
        except aioredis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def read(
        self,
        group: str,
        consumer: str,
        count: int = 10,
        block: int = 5000,
        start_id: str = ">",
    ) -> list[tuple[str, list[tuple[str, dict[str, str]]]]]:
        """Read entries as ``consumer`` in ``group``.

        ``">"`` delivers new entries. Any other id replays this consumer's
        own pending entries after that id and never blocks.
        """
        return await self._redis.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={self._stream: start_id},
            count=count,
            block=block if start_id == ">" else None,
        )

    async def claim_stale(
        self,
        group: str,
        consumer: str,
        min_idle_ms: int,
        count: int = 10,
    ) -> list[tuple[str, dict[str, str] | None]]:
        """Take over entries another consumer left pending for ``min_idle_ms``.

        Uses XAUTOCLAIM; an entry whose payload was trimmed from the stream
        comes back with no fields.
        """
        result = await self._redis.xautoclaim(
            self._stream,
            group,
            consumer,
            min_idle_time=min_idle_ms,
            start_id="0",
            count=count,
        )
        return list(result[1])

    async def ack(self, group: str, message_id: str) -> None:
        await self._redis.xack(self._stream, group, message_id)
