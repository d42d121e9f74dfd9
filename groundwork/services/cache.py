"""
Snapshot text cache.

Compiled snapshot text is keyed by its sha256, so an entry can never go
stale; the TTL only bounds memory. Without Redis every lookup is a miss.
"""
from typing import Optional

from redis.exceptions import RedisError

from groundwork.services.redis_client import get_redis
from groundwork.utils.logger import logger

SNAPSHOT_TEXT_TTL = 24 * 3600


def snapshot_text_key(content_hash: str) -> str:
    return f"groundwork:snapshot_text:{content_hash}"


async def get_snapshot_text(content_hash: str) -> Optional[str]:
    client = get_redis()
    if client is None:
        return None
    try:
        return await client.get(snapshot_text_key(content_hash))
    except (RedisError, OSError) as exc:
        logger.debug("cache.read_failed", extra={"content_hash": content_hash, "error": str(exc)[:200]})
        return None


async def put_snapshot_text(content_hash: str, text: str) -> None:
    client = get_redis()
    if client is None:
        return
    try:
        await client.set(snapshot_text_key(content_hash), text, ex=SNAPSHOT_TEXT_TTL)
    except (RedisError, OSError) as exc:
        logger.debug("cache.write_failed", extra={"content_hash": content_hash, "error": str(exc)[:200]})
