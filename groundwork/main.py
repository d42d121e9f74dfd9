from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from groundwork.config import get_settings
from groundwork.database import AsyncSessionLocal, init_db
from groundwork.exceptions import (
    CompileError,
    EmptyContext,
    GenerationUnavailable,
    GroundworkError,
    InvalidTransition,
    MalformedOutput,
    NotFound,
    RetriesExhausted,
    SnapshotVersionConflict,
    StorageError,
    VersionConflict,
)
from groundwork.middleware.correlation import CorrelationMiddleware
from groundwork.middleware.rate_limit import RedisRateLimitMiddleware, limiter
from groundwork.routes import context, personas, render_jobs, resumes, snapshots
from groundwork.services.gateway import CircuitOpenError, get_gateway
from groundwork.services.redis_client import close_redis, init_redis, is_redis_healthy
from groundwork.utils.logger import logger
from groundwork.utils.metrics import get_snapshot

settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Domain error → HTTP status; first match wins
ERROR_STATUS = (
    (NotFound, 404),
    (VersionConflict, 409),
    (SnapshotVersionConflict, 409),
    (InvalidTransition, 409),
    (EmptyContext, 422),
    (CompileError, 422),
    (RetriesExhausted, 422),
    (CircuitOpenError, 503),
    (GenerationUnavailable, 503),
    (MalformedOutput, 502),
    (StorageError, 502),
)


@app.exception_handler(GroundworkError)
async def groundwork_error_handler(request: Request, exc: GroundworkError):
    status = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    log_fn = logger.error if status >= 500 else logger.info
    log_fn("request.domain_error", extra={"path": request.url.path, "error_type": type(exc).__name__, "status": status})
    return JSONResponse(status_code=status, content={"detail": str(exc), "error_type": type(exc).__name__})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# CORS - Explicit origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-User-ID", "X-Correlation-ID"],
)
app.add_middleware(RedisRateLimitMiddleware)
app.add_middleware(CorrelationMiddleware)


@app.on_event("startup")
async def startup_event():
    await init_db()
    await init_redis()
    logger.info("api.ready", extra={"path": f"http://{settings.backend_host}:{settings.backend_port}"})


@app.on_event("shutdown")
async def shutdown_event():
    await close_redis()


@app.get("/health")
async def health_check():
    db_ok = True
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health.database_error", extra={"error": str(exc)[:200]})
        db_ok = False

    circuits = get_gateway().describe()
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ok" if db_ok else "degraded",
            "database": db_ok,
            "redis": await is_redis_healthy(),
            "circuits": circuits,
        },
    )


@app.get("/metrics")
async def metrics():
    return get_snapshot()


@app.get("/")
async def root():
    return {"status": "ok"}


# Register routes
app.include_router(context.router, prefix="/api/context", tags=["Context"])
app.include_router(personas.router, prefix="/api/personas", tags=["Personas"])
app.include_router(snapshots.router, prefix="/api/snapshots", tags=["Snapshots"])
app.include_router(resumes.router, prefix="/api/resumes", tags=["Resumes"])
app.include_router(render_jobs.router, prefix="/api", tags=["Render Jobs"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "groundwork.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.debug,
    )
