"""
Rate limiting.

slowapi guards individual routes (resume generation is the expensive one)
and works with or without Redis. When Redis is configured, a fixed-window
counter shared by every API replica additionally caps each caller's total
request rate.
"""
import time

from redis.exceptions import RedisError
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from groundwork.services.redis_client import get_redis
from groundwork.utils.logger import logger

WINDOW_SECONDS = 60
# Requests per window
USER_QUOTA = 200
ADDRESS_QUOTA = 60

UNLIMITED_PATHS = frozenset({"/", "/health", "/metrics"})


def user_or_ip(request: Request) -> str:
    user_id = (request.headers.get("x-user-id") or "").strip()
    return f"user:{user_id}" if user_id else f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=user_or_ip)


def quota_for(subject: str) -> int:
    return USER_QUOTA if subject.startswith("user:") else ADDRESS_QUOTA


async def count_request(client, subject: str, window: int) -> int:
    """Increment and return the subject's hit count for this window."""
    key = f"groundwork:rl:{subject}:{window}"
    async with client.pipeline(transaction=True) as pipe:
        hits, _ = await pipe.incr(key).expire(key, WINDOW_SECONDS + 1).execute()
    return hits


class RedisRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        client = get_redis()
        if client is None or request.method == "OPTIONS" or request.url.path in UNLIMITED_PATHS:
            return await call_next(request)

        subject = user_or_ip(request)
        quota = quota_for(subject)
        window = int(time.time()) // WINDOW_SECONDS
        try:
            hits = await count_request(client, subject, window)
        except (RedisError, OSError) as exc:
            # Fail open; slowapi's per-route limits still apply
            logger.warning("rate_limit.unavailable", extra={"error": str(exc)[:200]})
            return await call_next(request)

        headers = _quota_headers(quota, hits, window)
        if hits > quota:
            logger.info("rate_limit.exceeded", extra={"path": request.url.path, "reason": subject.split(":", 1)[0]})
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again shortly."},
                headers={**headers, "Retry-After": str(WINDOW_SECONDS)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response


def _quota_headers(quota: int, hits: int, window: int) -> dict:
    return {
        "X-RateLimit-Limit": str(quota),
        "X-RateLimit-Remaining": str(max(0, quota - hits)),
        "X-RateLimit-Reset": str((window + 1) * WINDOW_SECONDS),
    }
