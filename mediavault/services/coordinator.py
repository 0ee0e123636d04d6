"""Fans writes, reads and deletes out across the configured buckets.

Policy is best-effort with success-if-any: a file is considered stored once at
least one bucket accepted it, and deleted once at least one bucket dropped it.
Buckets that fail are logged and reported back so callers only record locations
that actually exist.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from mediavault.core.errors import (
    NoBucketsConfiguredError,
    NotFoundError,
    PartialRedundancyFailure,
    StorageBackendError,
    StorageError,
)
from mediavault.services.drivers import driver_for_bucket
from mediavault.services.drivers.base import Source, StorageDriver
from mediavault.services.storage_config import BucketSpec, StorageConfig, StorageConfigProvider

logger = logging.getLogger(__name__)

DriverFactory = Callable[[BucketSpec], StorageDriver]


@dataclass(slots=True)
class StoreOutcome:
    path: str
    bucket_ids: list[int]
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return bool(self.failures)


@dataclass(slots=True)
class DeleteOutcome:
    path: str
    deleted_from: list[int] = field(default_factory=list)
    failures: dict[int, str] = field(default_factory=dict)


class RedundancyCoordinator:
    def __init__(self, config_provider: StorageConfigProvider, *, driver_factory: DriverFactory = driver_for_bucket):
        self.config_provider = config_provider
        self.driver_factory = driver_factory

    async def _config(self) -> StorageConfig:
        return await self.config_provider.get()

    async def _call(self, bucket: BucketSpec, method: str, *args, **kwargs):
        driver = self.driver_factory(bucket)
        return await asyncio.to_thread(getattr(driver, method), *args, **kwargs)

    @staticmethod
    def _holding_buckets(config: StorageConfig, bucket_ids: list[int]) -> list[BucketSpec]:
        # Enabled holders first in priority order; disabled holders still hold bytes.
        enabled = config.retrieval_order(bucket_ids)
        seen = {b.id for b in enabled}
        disabled = [b for b in (config.bucket(i) for i in bucket_ids) if b is not None and b.id not in seen]
        return enabled + disabled

    async def store(
        self,
        source: Source,
        target_path: str,
        *,
        bucket_ids: list[int] | None = None,
        copies: int | None = None,
        content_type: str | None = None,
    ) -> StoreOutcome:
        """Writes `source` to up to `copies` enabled buckets.

        `bucket_ids` restricts the candidates (variants follow their original). Raises
        `NoBucketsConfiguredError` when nothing is eligible and `StorageBackendError` when
        every write failed.
        """
        config = await self._config()
        targets = config.select_for_upload(bucket_ids, copies)
        if not targets and bucket_ids:
            targets = config.select_for_upload(None, copies)
        if not targets:
            raise NoBucketsConfiguredError("No enabled storage buckets")

        if isinstance(source, Path):
            source = await asyncio.to_thread(source.read_bytes)

        results = await asyncio.gather(
            *(self._call(bucket, "put", source, target_path, content_type=content_type) for bucket in targets),
            return_exceptions=True,
        )

        stored: list[int] = []
        failures: dict[int, str] = {}
        for bucket, result in zip(targets, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures[bucket.id] = str(result)
                logger.warning("Write of %s to bucket %s (%s) failed: %s", target_path, bucket.id, bucket.name, result)
            else:
                stored.append(bucket.id)

        if not stored:
            raise StorageBackendError(f"Failed to store {target_path} in any bucket", reason=failures)
        if failures:
            logger.warning(
                "%s: %s stored in %s/%s buckets",
                PartialRedundancyFailure.code,
                target_path,
                len(stored),
                len(targets),
            )
        return StoreOutcome(path=target_path, bucket_ids=stored, failures=failures)

    async def retrieve(self, path: str, *, bucket_ids: list[int] | None = None) -> bytes:
        """Reads from the first bucket (priority order) that returns the bytes."""
        config = await self._config()
        candidates = self._holding_buckets(config, bucket_ids) if bucket_ids else config.retrieval_order()
        if not candidates:
            raise NoBucketsConfiguredError("No enabled storage buckets")

        last_error: Exception | None = None
        for bucket in candidates:
            try:
                return await self._call(bucket, "get", path)
            except StorageError as exc:
                last_error = exc
                logger.info("Bucket %s could not serve %s: %s", bucket.id, path, exc)
        raise NotFoundError(f"{path} not found in any bucket", reason=last_error)

    async def retrieve_to(self, path: str, destination: Path, *, bucket_ids: list[int] | None = None) -> Path:
        data = await self.retrieve(path, bucket_ids=bucket_ids)
        await asyncio.to_thread(destination.write_bytes, data)
        return destination

    async def exists(self, path: str, *, bucket_ids: list[int] | None = None) -> bool:
        config = await self._config()
        candidates = self._holding_buckets(config, bucket_ids) if bucket_ids else config.retrieval_order()
        for bucket in candidates:
            try:
                if await self._call(bucket, "exists", path):
                    return True
            except StorageError as exc:
                logger.warning("Existence check of %s on bucket %s failed: %s", path, bucket.id, exc)
        return False

    async def delete(self, path: str, *, bucket_ids: list[int] | None = None) -> DeleteOutcome:
        """Deletes `path` from every bucket in `bucket_ids` (all enabled buckets when omitted).

        Raises `StorageBackendError` only when buckets were tried and none succeeded.
        """
        config = await self._config()
        if bucket_ids is None:
            candidates = config.retrieval_order()
        else:
            candidates = [b for b in (config.bucket(i) for i in dict.fromkeys(bucket_ids)) if b is not None]
        outcome = DeleteOutcome(path=path)
        for bucket in candidates:
            try:
                await self._call(bucket, "delete", path)
                outcome.deleted_from.append(bucket.id)
            except StorageError as exc:
                outcome.failures[bucket.id] = str(exc)
                logger.warning("Delete of %s from bucket %s failed: %s", path, bucket.id, exc)

        if candidates and not outcome.deleted_from:
            raise StorageBackendError(f"Failed to delete {path} from all buckets", reason=outcome.failures)
        return outcome

    async def public_url(self, path: str, *, bucket_ids: list[int] | None = None) -> str | None:
        """URL from the highest priority bucket holding the object, if its driver offers one."""
        config = await self._config()
        candidates = config.retrieval_order(bucket_ids) if bucket_ids else config.retrieval_order()
        for bucket in candidates:
            driver = self.driver_factory(bucket)
            url = driver.public_url(path)
            if url:
                return url
        return None
