"""Liveness and readiness probes.

Readiness gates on Postgres and Redis only. Missing provider keys are
reported but do not fail the probe: the service still accepts webhooks
and serves meetings without them.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.meetai.config import Settings, get_settings
from src.meetai.core.database import get_engine
from src.meetai.core.redis import get_redis_pool

router = APIRouter(tags=["health"])

PROBE_TIMEOUT_SECONDS = 2.0


@router.get("/health")
async def health_check():
    return {"status": "ok", "environment": get_settings().ENVIRONMENT.value}


async def _probe_database() -> None:
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def _probe_redis() -> None:
    if not await get_redis_pool().ping():
        raise ConnectionError("PING did not return PONG")


async def _run_probe(probe) -> str:
    try:
        await asyncio.wait_for(probe(), timeout=PROBE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        return "error: timed out"
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


def _provider_checks(settings: Settings) -> dict[str, str]:
    return {
        "llm": "ok" if settings.GEMINI_API_KEY or settings.OPENAI_API_KEY else "no_keys",
        "stream": "ok" if settings.STREAM_API_KEY and settings.STREAM_API_SECRET else "no_keys",
    }


@router.get("/health/ready")
async def readiness_check():
    """200 when Postgres and Redis both answer within the probe timeout."""
    database, redis = await asyncio.gather(_run_probe(_probe_database), _run_probe(_probe_redis))
    ready = database == "ok" and redis == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "degraded",
            "checks": {"database": database, "redis": redis, **_provider_checks(get_settings())},
        },
    )
