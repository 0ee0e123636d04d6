from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.v1.deps import bucket_out, get_engine, get_registry_db, http_error, unwrap
from mediavault.core.errors import StorageError
from mediavault.models.storage import Bucket
from mediavault.schemas.storage import BucketIn, BucketOut, BucketTestOut, BucketUpdate
from mediavault.services import registry
from mediavault.services.auth import AuthUser, get_admin_user
from mediavault.services.engine import StorageEngine

router = APIRouter(prefix="/buckets", tags=["buckets"])


async def _get_bucket_or_404(db: AsyncSession, bucket_id: int) -> Bucket:
    row = await registry.get_bucket(db, bucket_id)
    if row is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Bucket not found"})
    return row


@router.get("", response_model=list[BucketOut])
async def list_buckets(
    db: AsyncSession = Depends(get_registry_db),
    admin: AuthUser = Depends(get_admin_user),
) -> list[BucketOut]:
    return [bucket_out(row) for row in await registry.list_buckets(db)]


@router.get("/usage")
async def bucket_usage(
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> dict[str, Any]:
    return unwrap(await engine.storage_stats())


@router.post("", response_model=BucketOut)
async def create_bucket(
    payload: BucketIn,
    db: AsyncSession = Depends(get_registry_db),
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> BucketOut:
    try:
        row = await registry.create_bucket(db, **payload.model_dump())
    except StorageError as exc:
        raise http_error(exc) from exc
    engine.invalidate_config()
    return bucket_out(row)


@router.patch("/{bucket_id}", response_model=BucketOut)
async def update_bucket(
    bucket_id: int,
    payload: BucketUpdate,
    db: AsyncSession = Depends(get_registry_db),
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> BucketOut:
    row = await _get_bucket_or_404(db, bucket_id)
    try:
        row = await registry.update_bucket(db, row, **payload.model_dump(exclude_unset=True))
    except StorageError as exc:
        raise http_error(exc) from exc
    engine.invalidate_config()
    return bucket_out(row)


@router.delete("/{bucket_id}")
async def delete_bucket(
    bucket_id: int,
    db: AsyncSession = Depends(get_registry_db),
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> dict[str, bool]:
    row = await _get_bucket_or_404(db, bucket_id)
    await registry.delete_bucket(db, row)
    engine.invalidate_config()
    return {"deleted": True}


@router.post("/{bucket_id}/test", response_model=BucketTestOut)
async def test_bucket(
    bucket_id: int,
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> BucketTestOut:
    result = await engine.test_bucket(bucket_id)
    if result.error_code == "not_found":
        unwrap(result)
    return BucketTestOut(bucket_id=bucket_id, ok=result.ok, error=None if result.ok else result.error.message)
