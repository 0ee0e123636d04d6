"""Registry: persistent metadata for buckets, dimensions, files, instances and locations.

Pure data access. Validation here is limited to shape and referential rules; the
ingest, variant and orphan services decide what the rows mean.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.core.errors import NotFoundError, ValidationError
from mediavault.models.storage import (
    APPLIES_TO,
    FILE_STATUSES,
    ORIGINAL,
    PROCESSING_STATUSES,
    PROVIDERS,
    Bucket,
    Dimension,
    File,
    FileInstance,
    FileLocation,
)

logger = logging.getLogger(__name__)

BUCKET_FIELDS = {
    "name",
    "provider",
    "endpoint",
    "region",
    "bucket_name",
    "access_key_id",
    "secret_access_key",
    "cdn_url",
    "enabled",
    "priority",
    "max_size_mb",
}
DIMENSION_FIELDS = {
    "name",
    "width",
    "height",
    "quality",
    "format",
    "applies_to",
    "enabled",
    "maintain_aspect_ratio",
    "order",
}
DIMENSION_FORMATS = {"jpg", "jpeg", "png", "webp", "mp4", "webm"}

DEFAULT_DIMENSIONS: list[dict[str, Any]] = [
    {"name": "thumbnail", "width": 150, "height": 150, "quality": 85, "format": "jpg", "applies_to": "image", "maintain_aspect_ratio": False, "order": 1},
    {"name": "small", "width": 300, "height": 300, "quality": 85, "format": "jpg", "applies_to": "image", "maintain_aspect_ratio": True, "order": 2},
    {"name": "medium", "width": 800, "height": 600, "quality": 85, "format": "jpg", "applies_to": "image", "maintain_aspect_ratio": True, "order": 3},
    {"name": "large", "width": 1920, "height": 1080, "quality": 85, "format": "jpg", "applies_to": "image", "maintain_aspect_ratio": True, "order": 4},
    {"name": "360p", "width": 640, "height": 360, "quality": 28, "format": "mp4", "applies_to": "video", "maintain_aspect_ratio": False, "order": 5},
    {"name": "720p", "width": 1280, "height": 720, "quality": 28, "format": "mp4", "applies_to": "video", "maintain_aspect_ratio": False, "order": 6},
    {"name": "1080p", "width": 1920, "height": 1080, "quality": 28, "format": "mp4", "applies_to": "video", "maintain_aspect_ratio": False, "order": 7},
    {"name": "video_thumbnail", "width": 640, "height": 360, "quality": 85, "format": "jpg", "applies_to": "video", "maintain_aspect_ratio": False, "order": 8},
]


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def calculate_user_file_checksum(user_id: Any, file_checksum: str) -> str:
    """Per-user dedup key: sha256 of the user id immediately followed by the content hash."""
    return sha256_hex(f"{user_id}{file_checksum}".encode("utf-8"))


def _pick(attrs: dict[str, Any], allowed: set[str]) -> dict[str, Any]:
    unknown = set(attrs) - allowed
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    return dict(attrs)


def validate_relative_path(path: str) -> str:
    clean = str(path or "").strip().replace("\\", "/")
    if not clean or clean.startswith("/"):
        raise ValidationError(f"Invalid storage path: {path!r}")
    if any(part in {"", ".", ".."} for part in clean.split("/")):
        raise ValidationError(f"Invalid storage path: {path!r}")
    return clean


# ===== BUCKETS =====


def _validate_bucket(values: dict[str, Any]) -> None:
    name = str(values.get("name") or "").strip()
    if not name:
        raise ValidationError("Bucket name is required")
    if values.get("provider") not in PROVIDERS:
        raise ValidationError(f"Unsupported provider: {values.get('provider')!r}")
    if int(values.get("priority") or 0) < 0:
        raise ValidationError("Bucket priority must be >= 0")
    max_size = values.get("max_size_mb")
    if max_size is not None and int(max_size) <= 0:
        raise ValidationError("max_size_mb must be positive")
    if values["provider"] != "local" and not values.get("bucket_name"):
        raise ValidationError("Remote buckets need a bucket_name")


async def list_buckets(db: AsyncSession) -> list[Bucket]:
    rows = await db.execute(select(Bucket).order_by(Bucket.priority.asc(), Bucket.id.asc()))
    return list(rows.scalars().all())


async def list_enabled_buckets(db: AsyncSession) -> list[Bucket]:
    rows = await db.execute(
        select(Bucket).where(Bucket.enabled.is_(True)).order_by(Bucket.priority.asc(), Bucket.id.asc())
    )
    return list(rows.scalars().all())


async def get_bucket(db: AsyncSession, bucket_id: int) -> Bucket | None:
    return await db.get(Bucket, bucket_id)


async def get_bucket_by_name(db: AsyncSession, name: str) -> Bucket | None:
    return (await db.execute(select(Bucket).where(Bucket.name == name))).scalar_one_or_none()


async def create_bucket(db: AsyncSession, **attrs: Any) -> Bucket:
    values = {"enabled": True, "priority": 0, **_pick(attrs, BUCKET_FIELDS)}
    _validate_bucket(values)
    if await get_bucket_by_name(db, values["name"]) is not None:
        raise ValidationError(f"Bucket name already taken: {values['name']}")
    row = Bucket(**values)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def update_bucket(db: AsyncSession, bucket: Bucket, **attrs: Any) -> Bucket:
    changes = _pick(attrs, BUCKET_FIELDS)
    merged = {field: getattr(bucket, field) for field in BUCKET_FIELDS}
    merged.update(changes)
    _validate_bucket(merged)
    for key, value in changes.items():
        setattr(bucket, key, value)
    await db.commit()
    await db.refresh(bucket)
    return bucket


async def delete_bucket(db: AsyncSession, bucket: Bucket) -> None:
    await db.delete(bucket)
    await db.commit()


async def calculate_bucket_usage(db: AsyncSession, bucket_id: int) -> float:
    """Megabytes held by active locations in the bucket."""
    total = (
        await db.execute(
            select(func.coalesce(func.sum(FileInstance.size), 0))
            .select_from(FileLocation)
            .join(FileInstance, FileInstance.id == FileLocation.file_instance_id)
            .where(FileLocation.bucket_id == bucket_id, FileLocation.status == "active")
        )
    ).scalar_one()
    return float(total or 0) / (1024 * 1024)


async def calculate_bucket_free_space(db: AsyncSession, bucket: Bucket) -> float | None:
    if bucket.max_size_mb is None:
        return None
    used = await calculate_bucket_usage(db, bucket.id)
    return max(float(bucket.max_size_mb) - used, 0.0)


# ===== DIMENSIONS =====


def _validate_dimension(values: dict[str, Any]) -> None:
    if not str(values.get("name") or "").strip():
        raise ValidationError("Dimension name is required")
    if values.get("name") == ORIGINAL:
        raise ValidationError("'original' is reserved")
    if values.get("applies_to") not in APPLIES_TO:
        raise ValidationError(f"applies_to must be one of {', '.join(APPLIES_TO)}")
    width = values.get("width")
    height = values.get("height")
    if width is None or int(width) <= 0:
        raise ValidationError("width must be a positive integer")
    if height is not None and int(height) <= 0:
        raise ValidationError("height must be a positive integer")
    if not values.get("maintain_aspect_ratio", True) and height is None:
        raise ValidationError("height is required for fixed dimensions")
    quality = values.get("quality")
    if quality is not None and not 0 <= int(quality) <= 100:
        raise ValidationError("quality must be between 0 and 100")
    fmt = values.get("format")
    if fmt is not None and str(fmt).lower().lstrip(".") not in DIMENSION_FORMATS:
        raise ValidationError(f"Unsupported format: {fmt!r}")
    if int(values.get("order") or 0) < 0:
        raise ValidationError("order must be >= 0")


async def list_dimensions(db: AsyncSession) -> list[Dimension]:
    rows = await db.execute(select(Dimension).order_by(Dimension.order.asc(), Dimension.id.asc()))
    return list(rows.scalars().all())


async def list_dimensions_for_type(db: AsyncSession, file_type: str) -> list[Dimension]:
    if file_type not in ("image", "video"):
        return []
    rows = await db.execute(
        select(Dimension)
        .where(Dimension.enabled.is_(True), Dimension.applies_to.in_([file_type, "both"]))
        .order_by(Dimension.order.asc(), Dimension.id.asc())
    )
    return list(rows.scalars().all())


async def get_dimension(db: AsyncSession, dimension_id: int) -> Dimension | None:
    return await db.get(Dimension, dimension_id)


async def get_dimension_by_name(db: AsyncSession, name: str) -> Dimension | None:
    return (await db.execute(select(Dimension).where(Dimension.name == name))).scalar_one_or_none()


async def create_dimension(db: AsyncSession, **attrs: Any) -> Dimension:
    values = {"enabled": True, "maintain_aspect_ratio": True, "order": 0, **_pick(attrs, DIMENSION_FIELDS)}
    _validate_dimension(values)
    if await get_dimension_by_name(db, values["name"]) is not None:
        raise ValidationError(f"Dimension name already taken: {values['name']}")
    row = Dimension(**values)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


async def update_dimension(db: AsyncSession, dimension: Dimension, **attrs: Any) -> Dimension:
    changes = _pick(attrs, DIMENSION_FIELDS)
    merged = {field: getattr(dimension, field) for field in DIMENSION_FIELDS}
    merged.update(changes)
    _validate_dimension(merged)
    for key, value in changes.items():
        setattr(dimension, key, value)
    await db.commit()
    await db.refresh(dimension)
    return dimension


async def delete_dimension(db: AsyncSession, dimension: Dimension) -> None:
    await db.delete(dimension)
    await db.commit()


async def reset_dimensions_to_defaults(db: AsyncSession) -> list[Dimension]:
    await db.execute(delete(Dimension))
    rows = [Dimension(enabled=True, **attrs) for attrs in DEFAULT_DIMENSIONS]
    db.add_all(rows)
    await db.commit()
    return await list_dimensions(db)


# ===== FILES =====


async def list_files(
    db: AsyncSession,
    *,
    user_id: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[File]:
    stmt = select(File).order_by(File.created_at.desc(), File.id.asc())
    if user_id is not None:
        stmt = stmt.where(File.user_id == str(user_id))
    if offset:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def get_file(db: AsyncSession, file_id: str) -> File | None:
    return await db.get(File, file_id)


async def get_file_by_user_checksum(db: AsyncSession, user_file_checksum: str) -> File | None:
    return (
        await db.execute(select(File).where(File.user_file_checksum == user_file_checksum))
    ).scalar_one_or_none()


async def get_file_by_checksum(db: AsyncSession, file_checksum: str) -> File | None:
    return (
        await db.execute(
            select(File).where(File.file_checksum == file_checksum).order_by(File.created_at.asc()).limit(1)
        )
    ).scalar_one_or_none()


async def create_file(db: AsyncSession, *, commit: bool = True, **attrs: Any) -> File:
    if attrs.get("status", "processing") not in FILE_STATUSES:
        raise ValidationError(f"Invalid file status: {attrs.get('status')!r}")
    attrs["file_path"] = validate_relative_path(attrs.get("file_path", ""))
    row = File(**attrs)
    db.add(row)
    if commit:
        await db.commit()
        await db.refresh(row)
    else:
        await db.flush()
    return row


async def update_file(db: AsyncSession, file: File, **attrs: Any) -> File:
    if "status" in attrs and attrs["status"] not in FILE_STATUSES:
        raise ValidationError(f"Invalid file status: {attrs['status']!r}")
    for key, value in attrs.items():
        setattr(file, key, value)
    await db.commit()
    await db.refresh(file)
    return file


async def delete_file(db: AsyncSession, file: File) -> int:
    """Deletes the file with its instances and locations in one transaction.

    Returns the number of location rows removed.
    """
    instance_ids = select(FileInstance.id).where(FileInstance.file_id == file.id)
    removed = await db.execute(delete(FileLocation).where(FileLocation.file_instance_id.in_(instance_ids)))
    await db.execute(delete(FileInstance).where(FileInstance.file_id == file.id))
    await db.delete(file)
    await db.commit()
    return int(removed.rowcount or 0)


# ===== FILE INSTANCES =====


async def list_file_instances(db: AsyncSession, file_id: str) -> list[FileInstance]:
    rows = await db.execute(
        select(FileInstance).where(FileInstance.file_id == file_id).order_by(FileInstance.variant_name.asc())
    )
    return list(rows.scalars().all())


async def get_file_instance(db: AsyncSession, instance_id: int) -> FileInstance | None:
    return await db.get(FileInstance, instance_id)


async def get_file_instance_by_name(db: AsyncSession, file_id: str, variant_name: str) -> FileInstance | None:
    return (
        await db.execute(
            select(FileInstance).where(FileInstance.file_id == file_id, FileInstance.variant_name == variant_name)
        )
    ).scalar_one_or_none()


async def create_file_instance(db: AsyncSession, *, commit: bool = True, **attrs: Any) -> FileInstance:
    if attrs.get("processing_status", "pending") not in PROCESSING_STATUSES:
        raise ValidationError(f"Invalid processing status: {attrs.get('processing_status')!r}")
    if not str(attrs.get("variant_name") or "").strip():
        raise ValidationError("variant_name is required")
    attrs["file_name"] = validate_relative_path(attrs.get("file_name", ""))
    row = FileInstance(**attrs)
    db.add(row)
    if commit:
        await db.commit()
        await db.refresh(row)
    else:
        await db.flush()
    return row


async def update_file_instance(db: AsyncSession, instance: FileInstance, **attrs: Any) -> FileInstance:
    if "processing_status" in attrs and attrs["processing_status"] not in PROCESSING_STATUSES:
        raise ValidationError(f"Invalid processing status: {attrs['processing_status']!r}")
    for key, value in attrs.items():
        setattr(instance, key, value)
    await db.commit()
    await db.refresh(instance)
    return instance


async def update_instance_status(db: AsyncSession, instance: FileInstance, status: str) -> FileInstance:
    return await update_file_instance(db, instance, processing_status=status)


async def _delete_instances_where(db: AsyncSession, *criteria: Any) -> int:
    instance_ids = select(FileInstance.id).where(*criteria)
    await db.execute(delete(FileLocation).where(FileLocation.file_instance_id.in_(instance_ids)))
    result = await db.execute(delete(FileInstance).where(*criteria))
    await db.commit()
    return int(result.rowcount or 0)


async def delete_file_instance(db: AsyncSession, instance: FileInstance) -> None:
    await _delete_instances_where(db, FileInstance.id == instance.id)


async def delete_file_instances_for_file(db: AsyncSession, file_id: str) -> int:
    deleted = await _delete_instances_where(db, FileInstance.file_id == file_id)
    logger.info("Deleted %s file instances for file_id=%s", deleted, file_id)
    return deleted


async def delete_variant_instances(db: AsyncSession, file_id: str) -> int:
    return await _delete_instances_where(
        db, FileInstance.file_id == file_id, FileInstance.variant_name != ORIGINAL
    )


# ===== FILE LOCATIONS =====


async def create_file_locations(
    db: AsyncSession,
    file_instance_id: int,
    bucket_ids: Iterable[int],
    path: str,
    *,
    commit: bool = True,
) -> list[FileLocation]:
    clean_path = validate_relative_path(path)
    rows = [
        FileLocation(file_instance_id=file_instance_id, bucket_id=bucket_id, path=clean_path, status="active")
        for bucket_id in dict.fromkeys(bucket_ids)
    ]
    db.add_all(rows)
    if commit:
        await db.commit()
    else:
        await db.flush()
    return rows


async def list_instance_locations(db: AsyncSession, file_instance_id: int) -> list[FileLocation]:
    rows = await db.execute(
        select(FileLocation)
        .where(FileLocation.file_instance_id == file_instance_id)
        .order_by(FileLocation.priority.desc(), FileLocation.id.asc())
    )
    return list(rows.scalars().all())


async def list_file_locations(db: AsyncSession, file_id: str) -> list[FileLocation]:
    rows = await db.execute(
        select(FileLocation)
        .join(FileInstance, FileInstance.id == FileLocation.file_instance_id)
        .where(FileInstance.file_id == file_id)
        .order_by(FileLocation.id.asc())
    )
    return list(rows.scalars().all())


async def get_file_instance_bucket_ids(db: AsyncSession, file_instance_id: int) -> list[int]:
    rows = await db.execute(
        select(FileLocation.bucket_id)
        .where(FileLocation.file_instance_id == file_instance_id, FileLocation.status == "active")
        .order_by(FileLocation.id.asc())
    )
    return [int(x) for x in rows.scalars().all()]


# ===== STATS =====


async def get_storage_stats(db: AsyncSession) -> dict[str, Any]:
    total_files = (await db.execute(select(func.count(File.id)))).scalar_one()
    total_bytes = (await db.execute(select(func.coalesce(func.sum(File.size), 0)))).scalar_one()
    by_type = (await db.execute(select(File.file_type, func.count(File.id)).group_by(File.file_type))).all()
    by_status = (await db.execute(select(File.status, func.count(File.id)).group_by(File.status))).all()
    return {
        "total_files": int(total_files or 0),
        "total_size_bytes": int(total_bytes or 0),
        "total_size_mb": int(total_bytes or 0) // (1024 * 1024),
        "files_by_type": {k: int(v) for k, v in by_type},
        "files_by_status": {k: int(v) for k, v in by_status},
    }


async def get_bucket_usage_stats(db: AsyncSession) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for bucket in await list_buckets(db):
        used_mb = await calculate_bucket_usage(db, bucket.id)
        free_mb = await calculate_bucket_free_space(db, bucket)
        out.append(
            {
                "bucket_id": bucket.id,
                "name": bucket.name,
                "used_mb": round(used_mb, 3),
                "free_mb": None if free_mb is None else round(free_mb, 3),
                "max_mb": bucket.max_size_mb,
                "usage_percent": round(used_mb / bucket.max_size_mb * 100) if bucket.max_size_mb else None,
            }
        )
    return out


async def get_user_storage_stats(db: AsyncSession, limit: int = 10) -> list[dict[str, Any]]:
    total = func.sum(File.size)
    rows = (
        await db.execute(
            select(File.user_id, func.count(File.id), total).group_by(File.user_id).order_by(total.desc()).limit(limit)
        )
    ).all()
    return [
        {"user_id": user_id, "file_count": int(count), "total_size_bytes": int(size or 0)}
        for user_id, count, size in rows
    ]


async def require_file(db: AsyncSession, file_id: str) -> File:
    row = await get_file(db, file_id)
    if row is None:
        raise NotFoundError(f"File not found: {file_id}")
    return row
