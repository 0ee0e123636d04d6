from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from mediavault.api.v1.deps import file_out, get_engine, unwrap
from mediavault.schemas.storage import CountOut, FileOut, OrphanCleanupIn, OrphanCleanupOut
from mediavault.services.auth import AuthUser, get_admin_user
from mediavault.services.engine import StorageEngine

router = APIRouter(prefix="/orphans", tags=["orphans"])


@router.get("", response_model=list[FileOut])
async def list_orphans(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> list[FileOut]:
    return [file_out(row) for row in unwrap(await engine.find_orphans(limit, offset))]


@router.get("/count", response_model=CountOut)
async def count_orphans(
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> CountOut:
    return CountOut(count=unwrap(await engine.count_orphans()))


@router.post("/cleanup", response_model=OrphanCleanupOut)
async def queue_cleanup(
    payload: OrphanCleanupIn,
    engine: StorageEngine = Depends(get_engine),
    admin: AuthUser = Depends(get_admin_user),
) -> OrphanCleanupOut:
    queued = unwrap(await engine.queue_orphan_cleanup(payload.file_ids, limit=payload.limit))
    return OrphanCleanupOut(queued=queued)
