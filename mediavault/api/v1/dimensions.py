from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.v1.deps import dimension_out, get_engine, get_registry_db, http_error
from mediavault.core.errors import StorageError
from mediavault.models.storage import Dimension
from mediavault.schemas.storage import DimensionIn, DimensionOut, DimensionUpdate
from mediavault.services import registry
from mediavault.services.auth import AuthUser, get_admin_user
from mediavault.services.engine import StorageEngine

router = APIRouter(prefix="/dimensions", tags=["dimensions"])


async def _get_dimension_or_404(db: AsyncSession, dimension_id: int) -> Dimension:
    row = await registry.get_dimension(db, dimension_id)
    if row is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Dimension not found"})
    return row


@router.get("", response_model=list[DimensionOut])
async def list_dimensions(
    db: AsyncSession = Depends(get_registry_db),
    admin: AuthUser = Depends(get_admin_user),
) -> list[DimensionOut]:
    return [dimension_out(row) for row in await registry.list_dimensions(db)]


@router.post("", response_model=DimensionOut)
async def create_dimension(
    payload: DimensionIn,
    db: AsyncSession = Depends(get_registry_db),
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> DimensionOut:
    try:
        row = await registry.create_dimension(db, **payload.model_dump())
    except StorageError as exc:
        raise http_error(exc) from exc
    engine.invalidate_config()
    return dimension_out(row)


@router.patch("/{dimension_id}", response_model=DimensionOut)
async def update_dimension(
    dimension_id: int,
    payload: DimensionUpdate,
    db: AsyncSession = Depends(get_registry_db),
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> DimensionOut:
    row = await _get_dimension_or_404(db, dimension_id)
    try:
        row = await registry.update_dimension(db, row, **payload.model_dump(exclude_unset=True))
    except StorageError as exc:
        raise http_error(exc) from exc
    engine.invalidate_config()
    return dimension_out(row)


@router.delete("/{dimension_id}")
async def delete_dimension(
    dimension_id: int,
    db: AsyncSession = Depends(get_registry_db),
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> dict[str, bool]:
    row = await _get_dimension_or_404(db, dimension_id)
    await registry.delete_dimension(db, row)
    engine.invalidate_config()
    return {"deleted": True}


@router.post("/reset", response_model=list[DimensionOut])
async def reset_dimensions(
    db: AsyncSession = Depends(get_registry_db),
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> list[DimensionOut]:
    rows = await registry.reset_dimensions_to_defaults(db)
    engine.invalidate_config()
    return [dimension_out(row) for row in rows]
