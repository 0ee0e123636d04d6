"""Public entry point of the storage engine.

Every operation returns a `Result`; typed storage errors raised by the layers
below are converted here and never escape to callers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediavault.core.config import Settings, settings as default_settings
from mediavault.core.errors import (
    InternalStorageError,
    NotFoundError,
    Result,
    StorageBackendError,
    StorageError,
    ValidationError,
)
from mediavault.db.session import SessionLocal
from mediavault.models.storage import ORIGINAL, File, FileInstance
from mediavault.services import registry, url_signer
from mediavault.services.coordinator import DriverFactory, RedundancyCoordinator
from mediavault.services.drivers import driver_for_bucket
from mediavault.services.ingest import IngestPipeline
from mediavault.services.orphans import OrphanReclaimer, ReferenceProbe
from mediavault.services.storage_config import StorageConfigProvider
from mediavault.services.variants import VariantPipeline, VariantReport
from mediavault.workers.queue import ArqTaskQueue, TaskQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class FileContent:
    data: bytes
    mime_type: str
    variant: str


async def _read_source(source: bytes | Path) -> bytes:
    if not isinstance(source, Path):
        return source
    try:
        return await asyncio.to_thread(source.read_bytes)
    except FileNotFoundError as exc:
        raise NotFoundError(f"No such file: {source}") from exc
    except OSError as exc:
        raise ValidationError(f"Cannot read {source}: {exc}") from exc


class StorageEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        queue: TaskQueue | None = None,
        *,
        config_provider: StorageConfigProvider | None = None,
        driver_factory: DriverFactory = driver_for_bucket,
        probes: Sequence[ReferenceProbe] | None = None,
        app_settings: Settings | None = None,
    ):
        self.settings = app_settings or default_settings
        self.session_factory = session_factory or SessionLocal
        self._owns_queue = queue is None
        self.queue = queue if queue is not None else ArqTaskQueue(redis_url=self.settings.redis_url)
        self.config_provider = config_provider or StorageConfigProvider(
            self.session_factory, app_settings=self.settings
        )
        self.coordinator = RedundancyCoordinator(self.config_provider, driver_factory=driver_factory)
        self.ingest_pipeline = IngestPipeline(
            self.session_factory, self.coordinator, self.queue, app_settings=self.settings
        )
        self.variant_pipeline = VariantPipeline(self.session_factory, self.coordinator, self.config_provider)
        self.reclaimer = OrphanReclaimer(
            self.session_factory,
            self.queue,
            self._delete_completely,
            probes=probes,
            app_settings=self.settings,
        )

    async def close(self) -> None:
        if self._owns_queue and isinstance(self.queue, ArqTaskQueue):
            await self.queue.close()

    async def _guard(self, operation: str, call: Awaitable[T], *, duplicate: bool = False) -> Result[T]:
        try:
            value = await call
        except StorageError as exc:
            logger.warning("%s failed: %s (%s)", operation, exc.code, exc.message)
            return Result.failure(exc)
        except SQLAlchemyError as exc:
            logger.exception("%s failed on the registry", operation)
            return Result.failure(StorageBackendError(f"Registry error during {operation}", reason=exc))
        except Exception as exc:
            logger.exception("%s failed unexpectedly", operation)
            return Result.failure(InternalStorageError(f"Unexpected error during {operation}", reason=exc))
        return Result.success(value, duplicate=duplicate)

    # ===== INGEST =====

    async def store_file(
        self,
        source: bytes | Path,
        user_id: Any,
        filename: str | None = None,
        mime_type: str | None = None,
    ) -> Result[File]:
        async def run():
            data = await _read_source(source)
            return await self.ingest_pipeline.ingest(
                data,
                user_id,
                filename or (source.name if isinstance(source, Path) else ""),
                mime_type,
            )

        result = await self._guard("store_file", run())
        if not result.ok:
            return Result.failure(result.error)  # type: ignore[arg-type]
        outcome = result.value
        return Result.success(outcome.file, duplicate=outcome.duplicate)

    # ===== LOOKUP =====

    async def get_file(self, file_id: str) -> Result[File]:
        async def run():
            async with self.session_factory() as db:
                return await registry.require_file(db, file_id)

        return await self._guard("get_file", run())

    async def get_file_by_hash(self, content_hash: str, user_id: Any = None) -> Result[File]:
        """Looks up by content hash; with `user_id` the per-user dedup key is used."""

        async def run():
            async with self.session_factory() as db:
                if user_id is not None:
                    key = registry.calculate_user_file_checksum(user_id, content_hash)
                    row = await registry.get_file_by_user_checksum(db, key)
                else:
                    row = await registry.get_file_by_checksum(db, content_hash)
            if row is None:
                raise NotFoundError(f"No file with checksum {content_hash}")
            return row

        return await self._guard("get_file_by_hash", run())

    async def list_file_instances(self, file_id: str) -> Result[list[FileInstance]]:
        async def run():
            async with self.session_factory() as db:
                await registry.require_file(db, file_id)
                return await registry.list_file_instances(db, file_id)

        return await self._guard("list_file_instances", run())

    async def _resolve_instance(self, file_id: str, variant: str) -> tuple[File, FileInstance, list[int]]:
        # A variant that is missing or unfinished falls back to the original.
        async with self.session_factory() as db:
            file = await registry.require_file(db, file_id)
            instance = await registry.get_file_instance_by_name(db, file.id, variant)
            if instance is None or instance.processing_status != "completed":
                instance = await registry.get_file_instance_by_name(db, file.id, ORIGINAL)
            if instance is None:
                raise NotFoundError(f"No stored instance for file {file_id}")
            bucket_ids = await registry.get_file_instance_bucket_ids(db, instance.id)
        return file, instance, bucket_ids

    async def retrieve_file(self, file_id: str, variant: str = ORIGINAL) -> Result[FileContent]:
        async def run():
            _, instance, bucket_ids = await self._resolve_instance(file_id, variant)
            data = await self.coordinator.retrieve(instance.file_name, bucket_ids=bucket_ids or None)
            return FileContent(data=data, mime_type=instance.mime_type, variant=instance.variant_name)

        return await self._guard("retrieve_file", run())

    async def get_public_url(self, file_id: str, variant: str = ORIGINAL) -> Result[str]:
        async def run():
            file, instance, bucket_ids = await self._resolve_instance(file_id, variant)
            url = await self.coordinator.public_url(instance.file_name, bucket_ids=bucket_ids or None)
            if url:
                return url
            return url_signer.signed_url(
                file.id,
                instance.variant_name,
                base_url=self.settings.storage_public_base_url,
                secret=self.settings.url_secret,
            )

        return await self._guard("get_public_url", run())

    # ===== DELETE =====

    async def _delete_completely(self, file_id: str) -> int:
        async with self.session_factory() as db:
            file = await registry.require_file(db, file_id)
            plan: list[tuple[str, list[int]]] = []
            for instance in await registry.list_file_instances(db, file.id):
                plan.append((instance.file_name, await registry.get_file_instance_bucket_ids(db, instance.id)))

        for path, bucket_ids in plan:
            if not bucket_ids:
                continue
            try:
                await self.coordinator.delete(path, bucket_ids=bucket_ids)
            except StorageError as exc:
                logger.warning("Bytes of %s could not be removed from %s: %s", path, bucket_ids, exc)

        async with self.session_factory() as db:
            file = await registry.get_file(db, file_id)
            if file is None:
                return 0
            removed = await registry.delete_file(db, file)
        logger.info("Deleted file_id=%s with %s locations", file_id, removed)
        return removed

    async def delete_file_completely(self, file_id: str) -> Result[int]:
        return await self._guard("delete_file_completely", self._delete_completely(file_id))

    # ===== BACKGROUND WORK =====

    async def process_file(self, file_id: str) -> Result[VariantReport]:
        return await self._guard("process_file", self.variant_pipeline.process_file(file_id))

    async def find_orphans(self, limit: int = 100, offset: int = 0) -> Result[list[File]]:
        return await self._guard("find_orphans", self.reclaimer.find_orphans(limit, offset))

    async def count_orphans(self) -> Result[int]:
        return await self._guard("count_orphans", self.reclaimer.count_orphans())

    async def is_orphaned(self, file_id: str) -> Result[bool]:
        return await self._guard("is_orphaned", self.reclaimer.is_orphaned(file_id))

    async def queue_orphan_cleanup(self, file_ids: Iterable[str] | None = None, *, limit: int = 100) -> Result[int]:
        """Queues delayed deletion of `file_ids`, or of the first `limit` orphans found."""

        async def run():
            ids = list(file_ids) if file_ids is not None else [f.id for f in await self.reclaimer.find_orphans(limit)]
            return await self.reclaimer.enqueue_cleanup(ids)

        return await self._guard("queue_orphan_cleanup", run())

    async def delete_orphan(self, file_id: str) -> Result[bool]:
        return await self._guard("delete_orphan", self.reclaimer.delete_if_orphaned(file_id))

    # ===== ADMIN =====

    def invalidate_config(self) -> None:
        self.config_provider.invalidate()

    async def storage_stats(self) -> Result[dict[str, Any]]:
        async def run():
            async with self.session_factory() as db:
                stats = await registry.get_storage_stats(db)
                stats["buckets"] = await registry.get_bucket_usage_stats(db)
                stats["top_users"] = await registry.get_user_storage_stats(db)
            return stats

        return await self._guard("storage_stats", run())

    async def test_bucket(self, bucket_id: int) -> Result[bool]:
        async def run():
            config = await self.config_provider.refresh()
            spec = config.bucket(bucket_id)
            if spec is None:
                raise NotFoundError(f"Bucket not found: {bucket_id}")
            driver = self.coordinator.driver_factory(spec)
            await asyncio.to_thread(driver.test_connection)
            return True

        return await self._guard("test_bucket", run())
