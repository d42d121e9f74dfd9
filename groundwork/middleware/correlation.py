"""
Request correlation and access logging.

Accepts X-Correlation-ID from the caller or mints one, binds it (and the
caller's X-User-ID) to the logging context for the life of the request, and
echoes it on the response.
"""
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from groundwork.utils.logger import correlation_id_var, logger, user_id_var

CORRELATION_HEADER = "X-Correlation-ID"
MAX_CORRELATION_ID_LENGTH = 64

# Health checks would drown the access log
QUIET_PATHS = frozenset({"/health", "/metrics"})


def _correlation_id(request: Request) -> str:
    supplied = (request.headers.get(CORRELATION_HEADER) or "").strip()
    if supplied and len(supplied) <= MAX_CORRELATION_ID_LENGTH:
        return supplied
    return uuid.uuid4().hex


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        cid = _correlation_id(request)
        cid_token = correlation_id_var.set(cid)
        user_token = user_id_var.set(request.headers.get("x-user-id", ""))
        started = time.monotonic()
        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                logger.exception(
                    "request.failed",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "duration_ms": round((time.monotonic() - started) * 1000),
                        "error_type": type(exc).__name__,
                    },
                )
                raise

            if request.url.path not in QUIET_PATHS:
                log_fn = logger.error if response.status_code >= 500 else logger.info
                log_fn(
                    "request.completed",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "status": response.status_code,
                        "duration_ms": round((time.monotonic() - started) * 1000),
                        "client_ip": request.client.host if request.client else "",
                    },
                )
            response.headers[CORRELATION_HEADER] = cid
            return response
        finally:
            correlation_id_var.reset(cid_token)
            user_id_var.reset(user_token)
