"""
Optional shared Redis connection.

Redis carries the render queue, the snapshot text cache and the global rate
limit counters. Every one of those has a fallback, so an unset REDIS_URL or
an unreachable server leaves get_redis() returning None and the service
running on the database alone.
"""
from typing import Optional
from urllib.parse import urlsplit

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from groundwork.config import get_settings
from groundwork.utils.logger import logger

# The queue's blocking pop must finish inside the socket timeout
SOCKET_TIMEOUT_SECONDS = 15

_client: Optional[aioredis.Redis] = None


def redacted(url: str) -> str:
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return f"{parts.scheme}://{host}{parts.path}"


async def init_redis(url: Optional[str] = None) -> Optional[aioredis.Redis]:
    global _client
    url = url if url is not None else get_settings().redis_url
    if not url:
        logger.info("redis.disabled", extra={"reason": "REDIS_URL not set"})
        return None

    client = aioredis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=SOCKET_TIMEOUT_SECONDS,
        retry_on_timeout=True,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        await client.aclose()
        logger.warning("redis.unavailable", extra={"path": redacted(url), "error": str(exc)[:200]})
        return None

    _client = client
    logger.info("redis.connected", extra={"path": redacted(url)})
    return _client


async def close_redis() -> None:
    global _client
    if _client is None:
        return
    client, _client = _client, None
    try:
        await client.aclose()
    except (RedisError, OSError) as exc:
        logger.warning("redis.close_failed", extra={"error": str(exc)[:200]})


def get_redis() -> Optional[aioredis.Redis]:
    return _client


async def is_redis_healthy() -> bool:
    if _client is None:
        return False
    try:
        return bool(await _client.ping())
    except (RedisError, OSError):
        return False
