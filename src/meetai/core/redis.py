"""Process-wide Redis client.

Jobs are plain Redis Streams entries, so callers get the raw client with
string decoding on.
"""

from __future__ import annotations

import redis.asyncio as aioredis

from src.meetai.config import get_settings

_client: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    global _client
    if _client is None:
        settings = get_settings()
        _client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL,
        )
    return _client


async def close_redis() -> None:
    """Release pooled connections; the next ``get_redis_pool`` reconnects."""
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()
