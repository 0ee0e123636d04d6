from __future__ import annotations

from fastapi import APIRouter, Depends, File as FileField, HTTPException, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from mediavault.api.v1.deps import file_out, get_engine, get_registry_db, instance_out, unwrap
from mediavault.models.storage import ORIGINAL, File
from mediavault.schemas.storage import DeleteOut, FileInstanceOut, FileOut, FileUploadOut, FileUrlOut
from mediavault.services import registry
from mediavault.services.auth import AuthUser, get_current_user
from mediavault.services.engine import StorageEngine

router = APIRouter(prefix="/files", tags=["files"])


def _ensure_access(user: AuthUser, row: File) -> None:
    if row.user_id != user.user_id and not user.is_admin:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "File not found"})


async def _owned_file(engine: StorageEngine, user: AuthUser, file_id: str) -> File:
    row = unwrap(await engine.get_file(file_id))
    _ensure_access(user, row)
    return row


@router.post("", response_model=FileUploadOut)
async def upload_file(
    file: UploadFile = FileField(...),
    engine: StorageEngine = Depends(get_engine),
    current_user: AuthUser = Depends(get_current_user),
) -> FileUploadOut:
    data = await file.read()
    result = await engine.store_file(
        data,
        current_user.user_id,
        file.filename or "upload",
        file.content_type,
    )
    row = unwrap(result)
    url = await engine.get_public_url(row.id)
    return FileUploadOut(file=file_out(row), duplicate=result.duplicate, url=url.value if url.ok else None)


@router.get("", response_model=list[FileOut])
async def list_my_files(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_registry_db),
    current_user: AuthUser = Depends(get_current_user),
) -> list[FileOut]:
    rows = await registry.list_files(db, user_id=current_user.user_id, limit=limit, offset=offset)
    return [file_out(row) for row in rows]


@router.get("/{file_id}", response_model=FileOut)
async def get_file(
    file_id: str,
    engine: StorageEngine = Depends(get_engine),
    current_user: AuthUser = Depends(get_current_user),
) -> FileOut:
    return file_out(await _owned_file(engine, current_user, file_id))


@router.get("/{file_id}/instances", response_model=list[FileInstanceOut])
async def list_instances(
    file_id: str,
    engine: StorageEngine = Depends(get_engine),
    current_user: AuthUser = Depends(get_current_user),
) -> list[FileInstanceOut]:
    await _owned_file(engine, current_user, file_id)
    return [instance_out(row) for row in unwrap(await engine.list_file_instances(file_id))]


@router.get("/{file_id}/url", response_model=FileUrlOut)
async def get_file_url(
    file_id: str,
    variant: str = Query(default=ORIGINAL),
    engine: StorageEngine = Depends(get_engine),
    current_user: AuthUser = Depends(get_current_user),
) -> FileUrlOut:
    await _owned_file(engine, current_user, file_id)
    url = unwrap(await engine.get_public_url(file_id, variant))
    return FileUrlOut(file_id=file_id, variant=variant, url=url)


@router.get("/{file_id}/content")
async def get_file_content(
    file_id: str,
    variant: str = Query(default=ORIGINAL),
    engine: StorageEngine = Depends(get_engine),
    current_user: AuthUser = Depends(get_current_user),
) -> Response:
    await _owned_file(engine, current_user, file_id)
    content = unwrap(await engine.retrieve_file(file_id, variant))
    return Response(content=content.data, media_type=content.mime_type)


@router.delete("/{file_id}", response_model=DeleteOut)
async def delete_file(
    file_id: str,
    engine: StorageEngine = Depends(get_engine),
    current_user: AuthUser = Depends(get_current_user),
) -> DeleteOut:
    await _owned_file(engine, current_user, file_id)
    removed = unwrap(await engine.delete_file_completely(file_id))
    return DeleteOut(deleted=True, locations_removed=removed)
