"""
Render queue transport.

The render_jobs table is the source of truth; the queue only tells workers
which job ids to try to claim. Delivery is at least once: a worker that
receives an id already claimed elsewhere drops it, and the reclaimer
re-publishes ids whose lease expired.

RedisQueue (LPUSH / BRPOP) is used when REDIS_URL is set, DatabaseQueue
(poll for queued rows) otherwise. A Redis failure degrades to polling.
"""

import logging
from typing import List

from groundwork.database import AsyncSessionLocal
from groundwork.services import render_scheduler
from groundwork.services.redis_client import get_redis

_log = logging.getLogger(__name__)

QUEUE_KEY = "groundwork:render_queue"


class DatabaseQueue:
    """Polls render_jobs for queued rows; publish is implicit in the insert."""

    def __init__(self, session_factory=None, batch_size: int = 5):
        self.session_factory = session_factory or AsyncSessionLocal
        self.batch_size = batch_size

    async def publish(self, job_id: str) -> None:
        return None

    async def receive(self, timeout: float = 0) -> List[str]:
        async with self.session_factory() as db:
            return await render_scheduler.queued_job_ids(db, limit=self.batch_size)


class RedisQueue:
    """Redis list transport, falling back to database polling on error."""

    def __init__(self, redis, fallback: DatabaseQueue):
        self.redis = redis
        self.fallback = fallback

    async def publish(self, job_id: str) -> None:
        try:
            await self.redis.lpush(QUEUE_KEY, job_id)
        except Exception as exc:
            # The row is already queued; polling will find it
            _log.warning(f"[render_queue] LPUSH {job_id} failed: {exc}")

    async def receive(self, timeout: float = 0) -> List[str]:
        try:
            item = await self.redis.brpop(QUEUE_KEY, timeout=max(1, int(timeout)))
        except Exception as exc:
            _log.warning(f"[render_queue] BRPOP failed ({exc}), polling database")
            return await self.fallback.receive()
        if item is None:
            # Idle: sweep for rows whose message was lost
            return await self.fallback.receive()
        _, job_id = item
        return [job_id]


def get_render_queue(session_factory=None):
    fallback = DatabaseQueue(session_factory)
    redis = get_redis()
    if redis is None:
        return fallback
    return RedisQueue(redis, fallback)
