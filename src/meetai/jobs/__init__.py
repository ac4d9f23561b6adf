"""Durable background jobs on Redis Streams.

Provides a generic job envelope, a queue for enqueueing, a worker with
consumer-group reads, exponential-backoff retry and explicit non-retryable
failures, and a dead letter queue for operator review and replay.

Exports:
    Job: Job envelope (name + JSON payload) with stream serialization.
    JobName: Registered job names.
    NonRetryableJobError: Raised by handlers to skip retries.
    JobQueue: Enqueue jobs onto the stream.
    JobWorker: Consume and execute jobs with retry and DLQ escalation.
    DeadLetterQueue: DLQ handler for failed job review and replay.
"""

from __future__ import annotations

from src.meetai.jobs.errors import NonRetryableJobError
from src.meetai.jobs.schemas import Job, JobName

__all__ = [
    "DeadLetterQueue",
    "Job",
    "JobName",
    "JobQueue",
    "JobWorker",
    "NonRetryableJobError",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load queue, worker, and DLQ to avoid circular imports."""
    if name == "JobQueue":
        from src.meetai.jobs.queue import JobQueue

        return JobQueue
    if name == "JobWorker":
        from src.meetai.jobs.worker import JobWorker

        return JobWorker
    if name == "DeadLetterQueue":
        from src.meetai.jobs.dlq import DeadLetterQueue

        return DeadLetterQueue
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
