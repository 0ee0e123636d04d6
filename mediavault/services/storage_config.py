from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediavault.core.config import Settings, settings as default_settings
from mediavault.models.storage import Bucket, Dimension
from mediavault.services import registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BucketSpec:
    id: int
    name: str
    provider: str
    endpoint: str | None = None
    region: str | None = None
    bucket_name: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    cdn_url: str | None = None
    enabled: bool = True
    priority: int = 0
    max_size_mb: int | None = None
    free_mb: float | None = None

    @classmethod
    def from_row(cls, row: Bucket, free_mb: float | None = None) -> "BucketSpec":
        return cls(
            id=row.id,
            name=row.name,
            provider=row.provider,
            endpoint=row.endpoint,
            region=row.region,
            bucket_name=row.bucket_name,
            access_key_id=row.access_key_id,
            secret_access_key=row.secret_access_key,
            cdn_url=row.cdn_url,
            enabled=row.enabled,
            priority=row.priority,
            max_size_mb=row.max_size_mb,
            free_mb=free_mb,
        )


@dataclass(frozen=True, slots=True)
class DimensionSpec:
    name: str
    width: int | None
    height: int | None
    quality: int | None
    format: str | None
    applies_to: str
    maintain_aspect_ratio: bool = True
    order: int = 0

    @classmethod
    def from_row(cls, row: Dimension) -> "DimensionSpec":
        return cls(
            name=row.name,
            width=row.width,
            height=row.height,
            quality=row.quality,
            format=row.format,
            applies_to=row.applies_to,
            maintain_aspect_ratio=row.maintain_aspect_ratio,
            order=row.order,
        )


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Immutable view of the admin-managed storage configuration."""

    buckets: tuple[BucketSpec, ...] = ()
    dimensions: tuple[DimensionSpec, ...] = ()
    redundancy_copies: int = 1
    auto_generate_variants: bool = True
    loaded_at: float = field(default_factory=time.monotonic)

    def bucket(self, bucket_id: int) -> BucketSpec | None:
        for bucket in self.buckets:
            if bucket.id == bucket_id:
                return bucket
        return None

    def retrieval_order(self, bucket_ids: list[int] | None = None) -> list[BucketSpec]:
        """Enabled buckets in priority order, optionally limited to `bucket_ids`."""
        rows = [b for b in self.buckets if b.enabled]
        if bucket_ids:
            wanted = set(bucket_ids)
            rows = [b for b in rows if b.id in wanted]
        return _priority_sorted(rows)

    def select_for_upload(self, bucket_ids: list[int] | None = None, copies: int | None = None) -> list[BucketSpec]:
        count = min(max(int(copies or self.redundancy_copies), 1), 5)
        return self.retrieval_order(bucket_ids)[:count]

    def dimensions_for(self, file_type: str) -> list[DimensionSpec]:
        if file_type not in ("image", "video"):
            return []
        return [d for d in self.dimensions if d.applies_to in (file_type, "both")]


def _priority_sorted(rows: list[BucketSpec]) -> list[BucketSpec]:
    # Explicit priorities first (ascending), then priority-0 buckets by most free space.
    ranked = sorted((b for b in rows if b.priority > 0), key=lambda b: (b.priority, b.id))
    auto = sorted(
        (b for b in rows if b.priority == 0),
        key=lambda b: (-(b.free_mb if b.free_mb is not None else float("inf")), b.id),
    )
    return ranked + auto


async def load_storage_config(db: AsyncSession, app_settings: Settings | None = None) -> StorageConfig:
    app_settings = app_settings or default_settings
    buckets: list[BucketSpec] = []
    for row in await registry.list_buckets(db):
        free_mb = None
        if row.enabled and row.priority == 0:
            free_mb = await registry.calculate_bucket_free_space(db, row)
        buckets.append(BucketSpec.from_row(row, free_mb))
    dimensions = [DimensionSpec.from_row(d) for d in await registry.list_dimensions(db) if d.enabled]
    return StorageConfig(
        buckets=tuple(buckets),
        dimensions=tuple(dimensions),
        redundancy_copies=app_settings.redundancy_copies,
        auto_generate_variants=app_settings.storage_auto_generate_variants,
    )


class StorageConfigProvider:
    """Caches a `StorageConfig` snapshot and reloads it after `ttl_seconds` or `invalidate()`."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        app_settings: Settings | None = None,
        ttl_seconds: float | None = None,
    ):
        self.session_factory = session_factory
        self.settings = app_settings or default_settings
        self.ttl_seconds = self.settings.storage_config_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._snapshot: StorageConfig | None = None
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._snapshot = None

    def _fresh(self) -> bool:
        return self._snapshot is not None and time.monotonic() - self._snapshot.loaded_at < self.ttl_seconds

    async def get(self) -> StorageConfig:
        if self._fresh():
            return self._snapshot  # type: ignore[return-value]
        async with self._lock:
            if not self._fresh():
                async with self.session_factory() as db:
                    self._snapshot = await load_storage_config(db, self.settings)
                logger.debug(
                    "Storage config reloaded: %s buckets, %s dimensions",
                    len(self._snapshot.buckets),
                    len(self._snapshot.dimensions),
                )
        return self._snapshot  # type: ignore[return-value]

    async def refresh(self) -> StorageConfig:
        self.invalidate()
        return await self.get()
