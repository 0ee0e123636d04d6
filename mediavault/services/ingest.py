from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediavault.core.config import Settings, settings as default_settings
from mediavault.core.errors import StorageError, ValidationError
from mediavault.models.storage import ORIGINAL, File
from mediavault.services import layout, registry
from mediavault.services.coordinator import RedundancyCoordinator
from mediavault.services.media import (
    DEFAULT_MIME,
    determine_file_type,
    extension_from_mime,
    mime_from_extension,
    split_extension,
)
from mediavault.workers.queue import PROCESS_FILE_JOB, TaskQueue, submit_best_effort

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestOutcome:
    file: File
    duplicate: bool = False
    recovered: bool = False


def variant_job_payload(file: File, filename: str | None = None) -> dict[str, Any]:
    return {"file_id": file.id, "user_id": file.user_id, "filename": filename or file.original_file_name}


async def queue_variant_generation(
    queue: TaskQueue,
    file: File,
    app_settings: Settings,
    filename: str | None = None,
) -> bool:
    return await submit_best_effort(
        queue,
        PROCESS_FILE_JOB,
        variant_job_payload(file, filename),
        max_attempts=app_settings.variant_job_max_tries,
    )


class IngestPipeline:
    """Hashes, deduplicates per user, stores the original redundantly and queues variants."""

    # One retry covers the lost-race case where the winning insert was rolled back.
    max_insert_attempts = 2

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        coordinator: RedundancyCoordinator,
        queue: TaskQueue,
        *,
        app_settings: Settings | None = None,
    ):
        from mediavault.services.recovery import RecoveryPath

        self.session_factory = session_factory
        self.coordinator = coordinator
        self.queue = queue
        self.settings = app_settings or default_settings
        self.recovery = RecoveryPath(session_factory, coordinator, queue, app_settings=self.settings)

    def _validate(self, data: bytes, user_id: Any, filename: str) -> str:
        if not data:
            raise ValidationError("Empty file")
        if len(data) > self.settings.max_upload_bytes:
            raise ValidationError(f"File too large (max {self.settings.max_upload_size_mb} MB)")
        user_key = str(user_id if user_id is not None else "").strip()
        if not user_key:
            raise ValidationError("user_id is required")
        if not str(filename or "").strip():
            raise ValidationError("filename is required")
        return user_key

    async def ingest(
        self,
        data: bytes,
        user_id: Any,
        filename: str,
        mime_type: str | None = None,
    ) -> IngestOutcome:
        user_key = self._validate(data, user_id, filename)

        ext = split_extension(filename)
        clean_mime = (mime_type or "").strip().lower()
        if not clean_mime or clean_mime == DEFAULT_MIME:
            clean_mime = mime_from_extension(ext)
        if not ext:
            ext = extension_from_mime(clean_mime)

        content_hash = registry.sha256_hex(data)
        dedup_hash = registry.calculate_user_file_checksum(user_key, content_hash)

        for _ in range(self.max_insert_attempts):
            async with self.session_factory() as db:
                existing = await registry.get_file_by_user_checksum(db, dedup_hash)
            if existing is not None:
                logger.info("Duplicate upload for user=%s file_id=%s", user_key, existing.id)
                return await self.recovery.handle_duplicate(existing, data, filename)

            outcome = await self._store_new(
                data,
                user_key=user_key,
                filename=filename,
                mime_type=clean_mime,
                ext=ext,
                content_hash=content_hash,
                dedup_hash=dedup_hash,
            )
            if outcome is not None:
                return outcome
        raise StorageError("Could not claim the dedup key for this upload")

    async def _store_new(
        self,
        data: bytes,
        *,
        user_key: str,
        filename: str,
        mime_type: str,
        ext: str,
        content_hash: str,
        dedup_hash: str,
    ) -> IngestOutcome | None:
        prefix = layout.file_prefix(user_key, content_hash)
        original_path = layout.original_path(prefix, content_hash, ext)

        async with self.session_factory() as db:
            # The unique dedup key is the mutual exclusion between concurrent identical uploads.
            try:
                file = await registry.create_file(
                    db,
                    original_file_name=filename,
                    file_name=f"{content_hash}.{ext}",
                    file_path=prefix,
                    mime_type=mime_type,
                    file_type=determine_file_type(mime_type),
                    ext=ext,
                    file_checksum=content_hash,
                    user_file_checksum=dedup_hash,
                    size=len(data),
                    status="processing",
                    user_id=user_key,
                    meta={},
                )
            except IntegrityError:
                await db.rollback()
                logger.info("Lost insert race for dedup hash %s, switching to duplicate path", dedup_hash)
                return None

            file_id = file.id
            try:
                stored = await self.coordinator.store(data, original_path, content_type=mime_type)
            except StorageError:
                logger.exception("Storing original for file_id=%s failed, rolling back", file.id)
                await registry.delete_file(db, file)
                raise

            try:
                instance = await registry.create_file_instance(
                    db,
                    commit=False,
                    file_id=file.id,
                    variant_name=ORIGINAL,
                    file_name=original_path,
                    mime_type=mime_type,
                    ext=ext,
                    checksum=content_hash,
                    size=len(data),
                    processing_status="completed",
                )
                await registry.create_file_locations(db, instance.id, stored.bucket_ids, original_path, commit=False)
                await db.commit()
            except IntegrityError:
                # A concurrent duplicate upload recovered the original first; same bytes, same key.
                await db.rollback()
                logger.info("Original of file_id=%s was recorded concurrently", file_id)
            except Exception:
                await db.rollback()
                logger.exception("Recording original for file_id=%s failed, rolling back", file_id)
                try:
                    await self.coordinator.delete(original_path, bucket_ids=stored.bucket_ids)
                except StorageError:
                    logger.warning("Could not remove stored bytes of %s after rollback", original_path)
                stale = await registry.get_file(db, file_id)
                if stale is not None:
                    await registry.delete_file(db, stale)
                raise

            await db.refresh(file)

        logger.info(
            "Stored file_id=%s user=%s size=%s in buckets=%s",
            file.id,
            user_key,
            file.size,
            stored.bucket_ids,
        )
        await queue_variant_generation(self.queue, file, self.settings, filename)
        return IngestOutcome(file=file)
