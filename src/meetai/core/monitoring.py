"""Operational telemetry for the meeting service.

Everything that leaves the process for dashboards or error tracking lives
here: the HTTP middleware counters, the webhook and job counters fed by
the ingestion path, LLM usage, and the Sentry hook-up. Metric names are
stable; alerting rules depend on them.
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

import sentry_sdk
from prometheus_client import REGISTRY, CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

UNSCRAPED_PATHS = frozenset({"/metrics"})

# ── HTTP ─────────────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Requests served, by route template and status",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "Time spent serving a request",
    ["method", "endpoint"],
    buckets=(0.005, 0.025, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Ingestion ────────────────────────────────────────────────────────────────

webhook_events_total = Counter(
    "webhook_events_total",
    "Provider webhooks received, by event type and outcome",
    ["event_type", "outcome"],
)

jobs_processed_total = Counter(
    "jobs_processed_total",
    "Background jobs settled, by job name and outcome",
    ["job_name", "outcome"],
)

job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Wall time of one job handler invocation",
    ["job_name"],
    buckets=(0.05, 0.25, 1.0, 2.5, 5.0, 15.0, 30.0, 60.0, 120.0),
)

# ── LLM ──────────────────────────────────────────────────────────────────────

llm_requests_total = Counter(
    "llm_requests_total",
    "Completions requested from the model group",
    ["model", "status"],
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Completion latency",
    ["model"],
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0),
)

llm_tokens_used_total = Counter(
    "llm_tokens_used_total",
    "Tokens billed by the provider",
    ["model", "token_type"],
)


def _endpoint_label(request: Request) -> str:
    """Route template when the router matched one, raw path otherwise.

    ``/api/v1/meetings/{meeting_id}`` keeps one series per route instead of
    one per meeting.
    """
    route = request.scope.get("route")
    template = getattr(route, "path", None)
    return template or request.url.path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts and times every request except the scrape itself."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in UNSCRAPED_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        endpoint = _endpoint_label(request)
        http_requests_total.labels(request.method, endpoint, str(response.status_code)).inc()
        http_request_duration_seconds.labels(request.method, endpoint).observe(elapsed)
        return response


@contextmanager
def time_job(job_name: str) -> Iterator[None]:
    """Observe how long a job handler ran, whether or not it raised."""
    started = time.perf_counter()
    try:
        yield
    finally:
        job_duration_seconds.labels(job_name).observe(time.perf_counter() - started)


@asynccontextmanager
async def track_llm_call(model: str) -> AsyncGenerator[dict[str, Any], None]:
    """Record one completion against ``model``.

    The caller fills ``prompt_tokens`` / ``completion_tokens`` in the yielded
    dict once the provider reports usage; zero counts are not recorded. An
    exception escaping the block marks the request as ``error``.
    """
    usage: dict[str, Any] = {"prompt_tokens": 0, "completion_tokens": 0}
    started = time.perf_counter()
    outcome = "success"
    try:
        yield usage
    except Exception:
        outcome = "error"
        raise
    finally:
        llm_requests_total.labels(model, outcome).inc()
        llm_request_duration_seconds.labels(model).observe(time.perf_counter() - started)
        for token_type in ("prompt", "completion"):
            count = usage.get(f"{token_type}_tokens") or 0
            if count:
                llm_tokens_used_total.labels(model, token_type).inc(count)


def init_sentry(dsn: str, environment: str) -> None:
    # Full tracing outside production; production samples a tenth.
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        integrations=[StarletteIntegration(), FastApiIntegration()],
    )


def get_metrics_response() -> Response:
    """Body for ``GET /metrics``."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
