"""Job worker with retry logic and consumer group management.

Reads jobs from the Redis Stream via a consumer group, looks up the
handler registered for the job name, and runs it. Failed jobs are retried
with exponential backoff (1s, 4s, 16s) and moved to the dead letter queue
after 3 retries. Handlers raise NonRetryableJobError to skip straight to
the dead letter queue. Unacked entries left by a crashed or cancelled
worker are re-run on restart or reclaimed by another consumer.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import Enum

import structlog

from src.meetai.core.monitoring import jobs_processed_total, time_job
from src.meetai.jobs.dlq import DeadLetterQueue
from src.meetai.jobs.errors import NonRetryableJobError
from src.meetai.jobs.queue import JobQueue
from src.meetai.jobs.schemas import Job

logger = structlog.get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[None]]


class JobOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    RETRIED = "retried"
    DEAD_LETTERED = "dead_lettered"
    DUPLICATE = "duplicate"


class JobWorker:
    """Consumes jobs from a stream and dispatches them to registered handlers.

    A job id is never executed twice concurrently by the same worker: a
    second delivery that arrives while the first is running is acked and
    dropped.

    Args:
        queue: JobQueue the worker reads from (and republishes retries to).
        dlq: DeadLetterQueue for permanently failed jobs.
        group: Consumer group name.
        consumer_name: Unique consumer identifier within the group.
        sleep: Awaitable sleep used for backoff; injected for tests.
    """

    MAX_RETRIES: int = 3
    RETRY_DELAYS: list[int] = [1, 4, 16]  # Exponential backoff: 1s, 4s, 16s
    RECLAIM_IDLE_MS: int = 60000
    RECLAIM_INTERVAL: float = 30.0

    def __init__(
        self,
        queue: JobQueue,
        dlq: DeadLetterQueue,
        group: str,
        consumer_name: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._queue = queue
        self._dlq = dlq
        self._group = group
        self._consumer_name = consumer_name
        self._sleep = sleep
        self._handlers: dict[str, JobHandler] = {}
        self._in_flight: set[str] = set()
        self._running = False

    def register(self, name: str, handler: JobHandler) -> None:
        """Register the handler for job ``name`` (one handler per name)."""
        if name in self._handlers:
            msg = f"Handler already registered for job '{name}'"
            raise ValueError(msg)
        self._handlers[name] = handler

    @property
    def registered(self) -> frozenset[str]:
        return frozenset(self._handlers)

    async def run(self) -> None:
        """Main loop: read, process, ack, until ``stop()`` is called.

        Entries this consumer received but never acked (the process died or
        was cancelled mid-job) are re-run first. Entries abandoned by other
        consumers are reclaimed every ``RECLAIM_INTERVAL`` seconds.
        """
        await self._queue.ensure_group(self._group)
        self._running = True
        logger.info(
            "worker.started",
            stream=self._queue.stream,
            group=self._group,
            consumer=self._consumer_name,
            jobs=sorted(self._handlers),
        )

        try:
            await self.recover_pending()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error("worker.recover_failed", exc_info=True)

        next_reclaim = 0.0
        while self._running:
            if time.monotonic() >= next_reclaim:
                next_reclaim = time.monotonic() + self.RECLAIM_INTERVAL
                try:
                    await self.reclaim_abandoned()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.error("worker.reclaim_failed", exc_info=True)

            try:
                messages = await self._queue.read(self._group, self._consumer_name)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("worker.read_failed", exc_info=True)
                await self._sleep(1)
                continue

            for _stream_key, stream_messages in messages or []:
                for message_id, raw_data in stream_messages:
                    await self.process_message(message_id, raw_data)

        logger.info("worker.stopped", consumer=self._consumer_name)

    async def recover_pending(self) -> int:
        """Re-run this consumer's delivered-but-unacked entries, oldest first.

        Returns:
            Number of entries settled.
        """
        cursor = "0"
        settled = 0
        while True:
            messages = await self._queue.read(self._group, self._consumer_name, start_id=cursor)
            entries = [entry for _key, stream_messages in messages or [] for entry in stream_messages]
            if not entries:
                break
            for message_id, raw_data in entries:
                cursor = message_id
                await self._settle(message_id, raw_data)
                settled += 1

        if settled:
            logger.info("worker.pending_recovered", consumer=self._consumer_name, count=settled)
        return settled

    async def reclaim_abandoned(self, idle_time_ms: int | None = None) -> int:
        """Claim and run entries other consumers left pending too long.

        Returns:
            Number of entries settled.
        """
        claimed = await self._queue.claim_stale(
            self._group,
            self._consumer_name,
            min_idle_ms=idle_time_ms if idle_time_ms is not None else self.RECLAIM_IDLE_MS,
        )
        for message_id, raw_data in claimed:
            await self._settle(message_id, raw_data)

        if claimed:
            logger.info("worker.abandoned_reclaimed", consumer=self._consumer_name, count=len(claimed))
        return len(claimed)

    async def _settle(self, message_id: str, raw_data: dict[str, str] | None) -> None:
        if not raw_data:
            # Trimmed from the stream while pending; nothing left to run.
            await self._queue.ack(self._group, message_id)
            return
        await self.process_message(message_id, raw_data)

    async def process_message(self, message_id: str, raw_data: dict[str, str]) -> JobOutcome:
        """Run one stream entry through its handler and settle it.

        Every path acks the original entry: success, retry (a new entry is
        published), and dead-lettering.
        """
        try:
            job = Job.from_stream_dict(raw_data)
        except (KeyError, ValueError) as exc:
            return await self._dead_letter(
                message_id, raw_data, f"malformed job entry: {exc}", 0, "unknown", retryable=False,
            )

        handler = self._handlers.get(job.name)
        if handler is None:
            return await self._dead_letter(
                message_id, raw_data, f"no handler registered for '{job.name}'",
                job.attempt, job.name, retryable=False,
            )

        if job.job_id in self._in_flight:
            logger.warning("job.duplicate_skipped", job_id=job.job_id, message_id=message_id)
            await self._queue.ack(self._group, message_id)
            jobs_processed_total.labels(job_name=job.name, outcome=JobOutcome.DUPLICATE.value).inc()
            return JobOutcome.DUPLICATE

        self._in_flight.add(job.job_id)
        try:
            with time_job(job.name):
                await handler(job)
        except NonRetryableJobError as exc:
            return await self._dead_letter(
                message_id, raw_data, str(exc), job.attempt, job.name, retryable=False,
            )
        except Exception as exc:
            logger.warning(
                "job.failed",
                job_id=job.job_id,
                job_name=job.name,
                attempt=job.attempt,
                error=str(exc),
            )
            if job.attempt >= self.MAX_RETRIES:
                return await self._dead_letter(
                    message_id, raw_data, str(exc), job.attempt, job.name, retryable=True,
                )
            return await self._retry(message_id, job)
        finally:
            self._in_flight.discard(job.job_id)

        await self._queue.ack(self._group, message_id)
        jobs_processed_total.labels(job_name=job.name, outcome=JobOutcome.SUCCEEDED.value).inc()
        logger.info("job.succeeded", job_id=job.job_id, job_name=job.name, attempt=job.attempt)
        return JobOutcome.SUCCEEDED

    async def _retry(self, message_id: str, job: Job) -> JobOutcome:
        delay_idx = min(job.attempt, len(self.RETRY_DELAYS) - 1)
        delay = self.RETRY_DELAYS[delay_idx]
        await self._sleep(delay)

        await self._queue.publish(job.next_attempt())
        await self._queue.ack(self._group, message_id)

        jobs_processed_total.labels(job_name=job.name, outcome=JobOutcome.RETRIED.value).inc()
        logger.info(
            "job.retried",
            job_id=job.job_id,
            job_name=job.name,
            attempt=job.attempt + 1,
            delay=delay,
        )
        return JobOutcome.RETRIED

    async def _dead_letter(
        self,
        message_id: str,
        raw_data: dict[str, str],
        error: str,
        attempt: int,
        job_name: str,
        retryable: bool,
    ) -> JobOutcome:
        await self._dlq.send_to_dlq(
            message_id=message_id,
            data=raw_data,
            error=error,
            attempt=attempt,
            retryable=retryable,
        )
        await self._queue.ack(self._group, message_id)
        jobs_processed_total.labels(job_name=job_name, outcome=JobOutcome.DEAD_LETTERED.value).inc()
        logger.error(
            "job.sent_to_dlq",
            message_id=message_id,
            job_name=job_name,
            attempt=attempt,
            retryable=retryable,
            error=error,
        )
        return JobOutcome.DEAD_LETTERED

    def stop(self) -> None:
        """Signal the processing loop to stop after current iteration."""
        self._running = False
