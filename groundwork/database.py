from sqlalchemy import event
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from groundwork.config import get_settings
from groundwork.utils.logger import logger

settings = get_settings()


def build_engine(database_url: str, **kwargs):
    """Create an async engine; SQLite gets foreign keys switched on so cascades work."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        # One connection per session; local SQLite only
        kwargs.setdefault("poolclass", NullPool)
    else:
        kwargs.setdefault("pool_pre_ping", True)  # Detect stale connections
        kwargs.setdefault("pool_recycle", 300)
    async_engine = create_async_engine(database_url, future=True, **kwargs)

    if database_url.startswith("sqlite"):
        @event.listens_for(async_engine.sync_engine, "connect")
        def _enable_sqlite_fks(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return async_engine


def build_session_factory(async_engine):
    return sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


# Create async engine
engine = build_engine(settings.database_url, echo=settings.debug)

# Create session factory
AsyncSessionLocal = build_session_factory(engine)

# Base class for models
Base = declarative_base()

# Dependency for FastAPI routes
async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

# Initialize database (create tables)
async def init_db(bind=None):
    """Create all database tables"""
    # Import models to register them with Base
    from groundwork import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("database.ready")
