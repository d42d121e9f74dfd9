import asyncio
import os
import tempfile
from dataclasses import replace

import pytest

# Settings are read at import time; point everything at a scratch directory first
_TMP = tempfile.mkdtemp(prefix="groundwork-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/test.db"
os.environ["TEST_MODE"] = "true"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["LOCAL_STORAGE_DIR"] = os.path.join(_TMP, "blobs")
os.environ["GENERATION_RATE_LIMIT"] = "1000/minute"
os.environ["REDIS_URL"] = ""

from groundwork import models  # noqa: E402,F401
from groundwork.database import Base, engine  # noqa: E402
from groundwork.services.blob_store import LocalBlobStore  # noqa: E402
from groundwork.services.gateway import ServiceGateway, default_config  # noqa: E402
from groundwork.utils import metrics  # noqa: E402


async def _recreate_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture(autouse=True)
def reset_db() -> None:
    asyncio.run(_recreate_schema())
    metrics.reset()
    yield


@pytest.fixture
def store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(str(tmp_path / "blobs"))


@pytest.fixture
def gateway() -> ServiceGateway:
    """Gateway with production limits but no backoff sleeps."""
    return ServiceGateway({name: replace(cfg, base_backoff_seconds=0.0) for name, cfg in default_config().items()})


@pytest.fixture
def hold_after_read(monkeypatch):
    """
    Wrap an async read so concurrent callers all finish it before any continues.

    Forces the interleaving where two writers observe the same current
    version and then race to insert the next one.
    """
    def hold(module, name, readers=2):
        original = getattr(module, name)
        arrived = []
        all_read = asyncio.Event()

        async def held(*args, **kwargs):
            value = await original(*args, **kwargs)
            arrived.append(value)
            if len(arrived) >= readers:
                all_read.set()
            await all_read.wait()
            return value

        monkeypatch.setattr(module, name, held)

    return hold
