from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from typing import TypeVar

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.core.errors import Result, StorageError
from mediavault.models.storage import Bucket, Dimension, File, FileInstance
from mediavault.schemas.storage import BucketOut, DimensionOut, FileInstanceOut, FileOut
from mediavault.services.engine import StorageEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")

ERROR_STATUS = {
    "not_found": 404,
    "validation_error": 400,
    "no_buckets_configured": 503,
    "storage_backend_error": 502,
}

_engine: StorageEngine | None = None


def get_engine() -> StorageEngine:
    global _engine
    if _engine is None:
        _engine = StorageEngine()
    return _engine


async def get_registry_db(engine: StorageEngine = Depends(get_engine)) -> AsyncIterator[AsyncSession]:
    async with engine.session_factory() as session:
        yield session


async def close_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.close()
        _engine = None


def http_error(exc: StorageError) -> HTTPException:
    status_code = ERROR_STATUS.get(exc.code, 500)
    if status_code >= 500:
        logger.error("Storage request failed: %r", exc)
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": exc.message})


def unwrap(result: Result[T]) -> T:
    if result.ok:
        return result.value  # type: ignore[return-value]
    raise http_error(result.error)  # type: ignore[arg-type]


def as_iso(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.isoformat()


def file_out(row: File) -> FileOut:
    return FileOut(
        id=row.id,
        original_file_name=row.original_file_name,
        mime_type=row.mime_type,
        file_type=row.file_type,
        ext=row.ext,
        size=row.size,
        file_checksum=row.file_checksum,
        width=row.width,
        height=row.height,
        duration=row.duration,
        status=row.status,
        metadata=dict(row.meta or {}),
        user_id=row.user_id,
        created_at=as_iso(row.created_at),
    )


def instance_out(row: FileInstance) -> FileInstanceOut:
    return FileInstanceOut(
        id=row.id,
        variant_name=row.variant_name,
        mime_type=row.mime_type,
        ext=row.ext,
        size=row.size,
        width=row.width,
        height=row.height,
        processing_status=row.processing_status,
    )


def bucket_out(row: Bucket) -> BucketOut:
    # Credentials are write-only.
    return BucketOut(
        id=row.id,
        name=row.name,
        provider=row.provider,
        endpoint=row.endpoint,
        region=row.region,
        bucket_name=row.bucket_name,
        cdn_url=row.cdn_url,
        enabled=row.enabled,
        priority=row.priority,
        max_size_mb=row.max_size_mb,
        has_credentials=bool(row.access_key_id and row.secret_access_key),
    )


def dimension_out(row: Dimension) -> DimensionOut:
    return DimensionOut(
        id=row.id,
        name=row.name,
        width=row.width,
        height=row.height,
        quality=row.quality,
        format=row.format,
        applies_to=row.applies_to,
        enabled=row.enabled,
        maintain_aspect_ratio=row.maintain_aspect_ratio,
        order=row.order,
    )
