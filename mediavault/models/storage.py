from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from mediavault.db.base import Base
from mediavault.models.common import JSONType, TimestampMixin, new_uuid

PROVIDERS = ("local", "s3", "r2", "b2")
APPLIES_TO = ("image", "video", "both")
FILE_STATUSES = ("processing", "active", "failed")
PROCESSING_STATUSES = ("pending", "processing", "completed", "failed")
ORIGINAL = "original"


class Bucket(TimestampMixin, Base):
    __tablename__ = "storage_buckets"
    __table_args__ = (
        CheckConstraint("provider in ('local','s3','r2','b2')", name="ck_storage_buckets_provider"),
        CheckConstraint("priority >= 0", name="ck_storage_buckets_priority"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    endpoint: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bucket_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    access_key_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    secret_access_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cdn_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_size_mb: Mapped[int | None] = mapped_column(Integer, nullable=True)


class Dimension(TimestampMixin, Base):
    __tablename__ = "storage_dimensions"
    __table_args__ = (
        CheckConstraint("applies_to in ('image','video','both')", name="ck_storage_dimensions_applies_to"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quality: Mapped[int | None] = mapped_column(Integer, nullable=True)
    format: Mapped[str | None] = mapped_column(String(10), nullable=True)
    applies_to: Mapped[str] = mapped_column(String(10), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    maintain_aspect_ratio: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    order: Mapped[int] = mapped_column("order", Integer, default=0, nullable=False)


class File(TimestampMixin, Base):
    __tablename__ = "storage_files"
    __table_args__ = (
        Index("ix_storage_files_user_created", "user_id", "created_at"),
        CheckConstraint("status in ('processing','active','failed')", name="ck_storage_files_status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    original_file_name: Mapped[str] = mapped_column(String(512), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(20), nullable=False)
    ext: Mapped[str] = mapped_column(String(20), nullable=False)
    file_checksum: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    user_file_checksum: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="processing", nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)


class FileInstance(TimestampMixin, Base):
    __tablename__ = "storage_file_instances"
    __table_args__ = (
        UniqueConstraint("file_id", "variant_name", name="uq_storage_file_instances_variant"),
        CheckConstraint(
            "processing_status in ('pending','processing','completed','failed')",
            name="ck_storage_file_instances_processing_status",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    file_id: Mapped[str] = mapped_column(ForeignKey("storage_files.id"), index=True, nullable=False)
    variant_name: Mapped[str] = mapped_column(String(80), nullable=False)
    file_name: Mapped[str] = mapped_column(String(1024), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    ext: Mapped[str] = mapped_column(String(20), nullable=False)
    checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processing_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)


class FileLocation(TimestampMixin, Base):
    __tablename__ = "storage_file_locations"
    __table_args__ = (
        UniqueConstraint("file_instance_id", "bucket_id", name="uq_storage_file_locations_bucket"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    file_instance_id: Mapped[int] = mapped_column(
        ForeignKey("storage_file_instances.id"), index=True, nullable=False
    )
    # Lookup only: a bucket never owns its locations.
    bucket_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    path: Mapped[str] = mapped_column(String(1024), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
