from __future__ import annotations

import asyncio
import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediavault.core.errors import NotFoundError, StorageError
from mediavault.models.storage import ORIGINAL, File
from mediavault.services import layout, media, registry
from mediavault.services.coordinator import RedundancyCoordinator
from mediavault.services.storage_config import DimensionSpec, StorageConfigProvider

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class VariantReport:
    file_id: str
    generated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    missing: bool = False


class VariantPipeline:
    """Derives metadata and per-dimension variants for a stored file.

    Safe to re-run: completed variants are skipped, unfinished or failed ones are
    dropped and rendered again, so retries never duplicate instance rows.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        coordinator: RedundancyCoordinator,
        config_provider: StorageConfigProvider,
    ):
        self.session_factory = session_factory
        self.coordinator = coordinator
        self.config_provider = config_provider

    async def process_file(self, file_id: str) -> VariantReport:
        report = VariantReport(file_id=file_id)
        async with self.session_factory() as db:
            file = await registry.get_file(db, file_id)
            if file is None:
                logger.warning("Variant job for missing file_id=%s skipped", file_id)
                report.missing = True
                return report
            original = await registry.get_file_instance_by_name(db, file.id, ORIGINAL)
            if original is None:
                raise NotFoundError(f"Original instance missing for file {file_id}")
            bucket_ids = await registry.get_file_instance_bucket_ids(db, original.id)

            config = await self.config_provider.get()
            dimensions = config.dimensions_for(file.file_type) if config.auto_generate_variants else []

            with tempfile.TemporaryDirectory(prefix="mediavault_") as scratch:
                workdir = Path(scratch)
                source = workdir / f"original.{file.ext}"
                try:
                    await self.coordinator.retrieve_to(original.file_name, source, bucket_ids=bucket_ids or None)
                except StorageError:
                    logger.exception("Could not retrieve original of file_id=%s", file.id)
                    await registry.update_file(db, file, status="failed")
                    raise

                await self._apply_metadata(db, file, source)

                for dimension in dimensions:
                    await self._render_one(db, file, dimension, source, workdir, bucket_ids, report)

        if report.failed:
            logger.warning("file_id=%s variants failed: %s", file_id, report.failed)
        logger.info(
            "Variants for file_id=%s: %s generated, %s already present",
            file_id,
            len(report.generated),
            len(report.skipped),
        )
        return report

    async def _apply_metadata(self, db: AsyncSession, file: File, source: Path) -> None:
        meta = await media.extract_metadata(source, file.file_type, file.mime_type)
        merged = dict(file.meta or {})
        merged.update(meta)
        await registry.update_file(
            db,
            file,
            meta=merged,
            width=meta.get("width", file.width),
            height=meta.get("height", file.height),
            duration=meta.get("duration", file.duration),
            status="active",
        )

    async def _render_one(
        self,
        db: AsyncSession,
        file: File,
        dimension: DimensionSpec,
        source: Path,
        workdir: Path,
        bucket_ids: list[int],
        report: VariantReport,
    ) -> None:
        existing = await registry.get_file_instance_by_name(db, file.id, dimension.name)
        if existing is not None:
            if existing.processing_status == "completed":
                report.skipped.append(dimension.name)
                return
            await registry.delete_file_instance(db, existing)

        ext = media.variant_extension(file.ext, dimension, file.file_type)
        mime_type = media.variant_mime_type(file.mime_type, file.ext, ext)
        path = layout.instance_path(file.file_path, file.file_checksum, dimension.name, ext)
        instance = await registry.create_file_instance(
            db,
            file_id=file.id,
            variant_name=dimension.name,
            file_name=path,
            mime_type=mime_type,
            ext=ext,
            size=0,
            processing_status="processing",
        )

        target = workdir / f"{dimension.name}.{ext}"
        try:
            width, height = await media.render_variant(
                source,
                target,
                file_type=file.file_type,
                mime_type=file.mime_type,
                dimension=dimension,
            )
            data = await asyncio.to_thread(target.read_bytes)
            stored = await self.coordinator.store(
                data,
                path,
                bucket_ids=bucket_ids or None,
                copies=len(bucket_ids) or None,
                content_type=mime_type,
            )
        except StorageError as exc:
            logger.warning("Variant %s of file_id=%s failed: %s", dimension.name, file.id, exc)
            await registry.update_instance_status(db, instance, "failed")
            report.failed[dimension.name] = exc.code
            return
        except Exception:
            logger.exception("Variant %s of file_id=%s failed unexpectedly", dimension.name, file.id)
            await registry.update_instance_status(db, instance, "failed")
            report.failed[dimension.name] = media.MediaProcessingError.code
            return
        finally:
            target.unlink(missing_ok=True)

        instance.size = len(data)
        instance.width = width
        instance.height = height
        instance.checksum = registry.sha256_hex(data)
        instance.processing_status = "completed"
        await registry.create_file_locations(db, instance.id, stored.bucket_ids, path, commit=False)
        await db.commit()
        report.generated.append(dimension.name)
