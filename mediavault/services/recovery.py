"""Duplicate handling for uploads whose dedup key already exists.

A duplicate is only trusted when its original instance and bytes are both still
present. Otherwise the bytes from the new upload are used to rebuild the original
under the same file id and dedup key, and variants are regenerated.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediavault.core.config import Settings, settings as default_settings
from mediavault.models.storage import ORIGINAL, File
from mediavault.services import layout, registry
from mediavault.services.coordinator import RedundancyCoordinator
from mediavault.services.ingest import IngestOutcome, queue_variant_generation
from mediavault.workers.queue import TaskQueue

logger = logging.getLogger(__name__)


class RecoveryPath:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        coordinator: RedundancyCoordinator,
        queue: TaskQueue,
        *,
        app_settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.coordinator = coordinator
        self.queue = queue
        self.settings = app_settings or default_settings

    async def handle_duplicate(self, existing: File, data: bytes, filename: str | None = None) -> IngestOutcome:
        async with self.session_factory() as db:
            original = await registry.get_file_instance_by_name(db, existing.id, ORIGINAL)
            bucket_ids = await registry.get_file_instance_bucket_ids(db, original.id) if original else []

        if original is not None:
            if await self.coordinator.exists(original.file_name, bucket_ids=bucket_ids or None):
                # Variants may have failed earlier; regenerating is idempotent.
                await queue_variant_generation(self.queue, existing, self.settings, filename)
                return IngestOutcome(file=existing, duplicate=True)

            logger.warning(
                "Original bytes of file_id=%s missing from buckets %s, recovering from upload",
                existing.id,
                bucket_ids,
            )
            async with self.session_factory() as db:
                await registry.delete_file_instances_for_file(db, existing.id)
        else:
            logger.warning("File_id=%s has no original instance, recovering from upload", existing.id)

        return await self._restore(existing, data, filename)

    async def _restore(self, file: File, data: bytes, filename: str | None) -> IngestOutcome:
        path = layout.original_path(file.file_path, file.file_checksum, file.ext)
        stored = await self.coordinator.store(data, path, content_type=file.mime_type)

        async with self.session_factory() as db:
            try:
                instance = await registry.create_file_instance(
                    db,
                    commit=False,
                    file_id=file.id,
                    variant_name=ORIGINAL,
                    file_name=path,
                    mime_type=file.mime_type,
                    ext=file.ext,
                    checksum=file.file_checksum,
                    size=len(data),
                    processing_status="completed",
                )
                await registry.create_file_locations(db, instance.id, stored.bucket_ids, path, commit=False)
                await db.commit()
            except IntegrityError:
                # A concurrent recovery recorded the original first; the bytes are identical.
                await db.rollback()
                logger.info("Original instance of file_id=%s recreated concurrently", file.id)
                return IngestOutcome(file=file, duplicate=True, recovered=True)

            purged = await registry.delete_variant_instances(db, file.id)
            refreshed = await registry.get_file(db, file.id)

        logger.info(
            "Recovered file_id=%s into buckets=%s, purged %s stale variants",
            file.id,
            stored.bucket_ids,
            purged,
        )
        restored = refreshed or file
        await queue_variant_generation(self.queue, restored, self.settings, filename)
        return IngestOutcome(file=restored, duplicate=True, recovered=True)
