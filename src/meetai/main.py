"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan wiring for the meeting lifecycle components and the background
job worker, and the v1 API router.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.meetai.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.meetai.api.v1.router import router as v1_router
from src.meetai.config import get_settings
from src.meetai.core.database import close_db, get_session, init_db
from src.meetai.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.meetai.core.redis import close_redis, get_redis_pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: wire components on startup, release them on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    try:
        await init_db()
    except Exception:
        log.error("startup.database_init_failed", exc_info=True)

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    app.state.webhook_secret = settings.STREAM_API_SECRET
    if not settings.STREAM_API_SECRET:
        log.warning("startup.webhook_secret_missing", hint="all webhooks will be rejected")

    # ── Core: repository, state machine, LLM ───────────────────────────
    from src.meetai.ai.llm import LLMService
    from src.meetai.ai.pipeline import ReplyPipeline
    from src.meetai.meetings.repository import MeetingRepository
    from src.meetai.meetings.state_machine import MeetingStateMachine
    from src.meetai.meetings.transcripts import (
        SpeakerResolver,
        TranscriptFetcher,
        TranscriptService,
    )

    repository = MeetingRepository(session_factory=get_session)
    state_machine = MeetingStateMachine(repository)
    llm_service = LLMService(settings)
    app.state.meeting_repository = repository
    app.state.state_machine = state_machine
    app.state.llm_service = llm_service

    fetcher = TranscriptFetcher(timeout=settings.TRANSCRIPT_FETCH_TIMEOUT)
    resolver = SpeakerResolver(repository)
    app.state.transcript_service = TranscriptService(fetcher, resolver)

    # ── Call provider clients ──────────────────────────────────────────
    video_client = None
    chat_client = None
    if settings.STREAM_API_KEY and settings.STREAM_API_SECRET:
        from src.meetai.meetings.service import MeetingService
        from src.meetai.stream.chat import StreamChatClient
        from src.meetai.stream.video import StreamVideoClient

        video_client = StreamVideoClient(
            settings.STREAM_API_KEY, settings.STREAM_API_SECRET, settings.STREAM_VIDEO_BASE_URL,
        )
        chat_client = StreamChatClient(
            settings.STREAM_API_KEY, settings.STREAM_API_SECRET, settings.STREAM_CHAT_BASE_URL,
        )
        app.state.meeting_service = MeetingService(repository, state_machine, video_client)
        log.info("startup.stream_clients_initialized")
    else:
        app.state.meeting_service = None
        log.warning("startup.stream_keys_missing")

    reply_pipeline = ReplyPipeline(
        llm_service,
        chat_client=chat_client,
        repository=repository,
        history_limit=settings.CHAT_HISTORY_LIMIT,
    )
    app.state.reply_pipeline = reply_pipeline

    # ── Jobs + webhook dispatch ────────────────────────────────────────
    app.state.job_worker = None
    app.state.job_worker_task = None
    try:
        from src.meetai.jobs.dlq import DeadLetterQueue
        from src.meetai.jobs.meeting_processing import MeetingCompletionHandler
        from src.meetai.jobs.queue import JobQueue
        from src.meetai.jobs.schemas import JobName
        from src.meetai.jobs.worker import JobWorker
        from src.meetai.webhooks.dispatcher import WebhookDispatcher

        redis_client = get_redis_pool()
        job_queue = JobQueue(redis_client, settings.JOB_STREAM)
        dlq = DeadLetterQueue(redis_client, settings.JOB_STREAM)
        app.state.job_queue = job_queue
        app.state.dead_letter_queue = dlq

        app.state.webhook_dispatcher = WebhookDispatcher(
            repository=repository,
            state_machine=state_machine,
            job_queue=job_queue,
            reply_pipeline=reply_pipeline,
        )

        worker = JobWorker(
            queue=job_queue,
            dlq=dlq,
            group=settings.JOB_CONSUMER_GROUP,
            consumer_name=settings.JOB_CONSUMER_NAME,
        )
        worker.register(
            JobName.MEETING_PROCESSING.value,
            MeetingCompletionHandler(
                repository=repository,
                state_machine=state_machine,
                fetcher=fetcher,
                resolver=resolver,
                llm_service=llm_service if llm_service.available else None,
            ),
        )
        app.state.job_worker = worker
        if settings.JOB_WORKER_ENABLED:
            app.state.job_worker_task = asyncio.create_task(worker.run())
        log.info("startup.jobs_initialized", worker_enabled=settings.JOB_WORKER_ENABLED)
    except Exception:
        log.error("startup.jobs_init_failed", exc_info=True)
        app.state.webhook_dispatcher = None

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    worker = getattr(app.state, "job_worker", None)
    worker_task = getattr(app.state, "job_worker_task", None)
    if worker is not None:
        worker.stop()
    if worker_task is not None and not worker_task.done():
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
        log.info("shutdown.job_worker_stopped")

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Meet AI API",
        version="0.1.0",
        description="Meeting lifecycle orchestration with an AI participant",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    # outermost: records metrics for every request
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
