from __future__ import annotations

import io
from collections import Counter
from pathlib import Path
from typing import Any

import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import mediavault.models  # noqa: F401
from mediavault.core.config import Settings
from mediavault.core.errors import StorageBackendError
from mediavault.db.base import Base
from mediavault.services import registry
from mediavault.services.drivers import LocalDriver
from mediavault.services.engine import StorageEngine
from mediavault.services.storage_config import BucketSpec, StorageConfigProvider


class RecordingQueue:
    """In-memory `TaskQueue` that only records what was submitted."""

    def __init__(self) -> None:
        self.jobs: list[dict[str, Any]] = []
        self.fail = False

    async def submit(self, job_type, payload, *, schedule_in=None, max_attempts=None) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.jobs.append(
            {
                "job_type": job_type,
                "payload": dict(payload),
                "schedule_in": schedule_in,
                "max_attempts": max_attempts,
            }
        )

    def of_type(self, job_type: str) -> list[dict[str, Any]]:
        return [job for job in self.jobs if job["job_type"] == job_type]


class SpyDriver(LocalDriver):
    def __init__(self, root: str | Path):
        super().__init__(root)
        self.calls: Counter[str] = Counter()
        self.fail_puts = False

    def put(self, source, path, *, content_type=None) -> None:
        self.calls["put"] += 1
        if self.fail_puts:
            raise StorageBackendError("disk full")
        super().put(source, path, content_type=content_type)

    def delete(self, path: str) -> None:
        self.calls["delete"] += 1
        super().delete(path)


class DriverPool:
    """Driver factory handing out one `SpyDriver` per bucket id."""

    def __init__(self) -> None:
        self.drivers: dict[int, SpyDriver] = {}

    def __call__(self, spec: BucketSpec) -> SpyDriver:
        if spec.id not in self.drivers:
            self.drivers[spec.id] = SpyDriver(spec.endpoint)
        return self.drivers[spec.id]

    def total(self, call: str) -> int:
        return sum(driver.calls[call] for driver in self.drivers.values())


def make_png(width: int = 64, height: int = 48, color: str = "red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def app_settings() -> Settings:
    return Settings(
        STORAGE_REDUNDANCY_COPIES=2,
        STORAGE_CONFIG_TTL_SECONDS=300,
        STORAGE_URL_SECRET="test-secret",
        ORPHAN_DELETE_DELAY_SECONDS=60,
        VARIANT_JOB_MAX_TRIES=3,
    )


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()


@pytest.fixture
async def buckets(session_factory, tmp_path):
    async with session_factory() as db:
        first = await registry.create_bucket(
            db, name="primary", provider="local", endpoint=str(tmp_path / "b1"), priority=1
        )
        second = await registry.create_bucket(
            db, name="secondary", provider="local", endpoint=str(tmp_path / "b2"), priority=2
        )
    return [first, second]


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def drivers() -> DriverPool:
    return DriverPool()


@pytest.fixture
def config_provider(session_factory, app_settings) -> StorageConfigProvider:
    return StorageConfigProvider(session_factory, app_settings=app_settings)


@pytest.fixture
def engine(session_factory, queue, drivers, config_provider, app_settings) -> StorageEngine:
    return StorageEngine(
        session_factory,
        queue,
        config_provider=config_provider,
        driver_factory=drivers,
        probes=[],
        app_settings=app_settings,
    )
