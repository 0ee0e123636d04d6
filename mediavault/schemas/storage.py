from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class FileOut(BaseModel):
    id: str
    original_file_name: str
    mime_type: str
    file_type: str
    ext: str
    size: int
    file_checksum: str
    width: int | None = None
    height: int | None = None
    duration: float | None = None
    status: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    user_id: str
    created_at: str


class FileUploadOut(BaseModel):
    file: FileOut
    duplicate: bool = False
    url: str | None = None


class FileInstanceOut(BaseModel):
    id: int
    variant_name: str
    mime_type: str
    ext: str
    size: int
    width: int | None = None
    height: int | None = None
    processing_status: str


class FileUrlOut(BaseModel):
    file_id: str
    variant: str
    url: str


class DeleteOut(BaseModel):
    deleted: bool
    locations_removed: int = 0


class BucketIn(BaseModel):
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


class BucketUpdate(BaseModel):
    name: str | None = None
    provider: str | None = None
    endpoint: str | None = None
    region: str | None = None
    bucket_name: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    cdn_url: str | None = None
    enabled: bool | None = None
    priority: int | None = None
    max_size_mb: int | None = None


class BucketOut(BaseModel):
    id: int
    name: str
    provider: str
    endpoint: str | None = None
    region: str | None = None
    bucket_name: str | None = None
    cdn_url: str | None = None
    enabled: bool
    priority: int
    max_size_mb: int | None = None
    has_credentials: bool = False


class BucketTestOut(BaseModel):
    bucket_id: int
    ok: bool
    error: str | None = None


class DimensionIn(BaseModel):
    name: str
    width: int | None = None
    height: int | None = None
    quality: int | None = None
    format: str | None = None
    applies_to: str = "image"
    enabled: bool = True
    maintain_aspect_ratio: bool = True
    order: int = 0


class DimensionUpdate(BaseModel):
    name: str | None = None
    width: int | None = None
    height: int | None = None
    quality: int | None = None
    format: str | None = None
    applies_to: str | None = None
    enabled: bool | None = None
    maintain_aspect_ratio: bool | None = None
    order: int | None = None


class DimensionOut(BaseModel):
    id: int
    name: str
    width: int | None = None
    height: int | None = None
    quality: int | None = None
    format: str | None = None
    applies_to: str
    enabled: bool
    maintain_aspect_ratio: bool
    order: int


class OrphanCleanupIn(BaseModel):
    file_ids: list[str] | None = None
    limit: int = Field(default=100, ge=1, le=1000)


class OrphanCleanupOut(BaseModel):
    queued: int


class CountOut(BaseModel):
    count: int
