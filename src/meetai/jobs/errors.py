"""Job failure classification."""

from __future__ import annotations


class NonRetryableJobError(Exception):
    """A job failed in a way retrying cannot fix (e.g. a malformed payload).

    The worker sends the job straight to the dead letter queue.
    """
