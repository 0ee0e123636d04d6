"""Finds files nothing references and deletes them after a grace period.

Deletion is two-phase: candidates are queued with a delay and the delayed job
checks again right before deleting, so a reference attached in between wins.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, Protocol

from sqlalchemy import ColumnElement, and_, column, exists, func, inspect, select, table
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediavault.core.config import Settings, settings as default_settings
from mediavault.core.errors import OrphanRaceDetected
from mediavault.models.storage import File
from mediavault.workers.queue import DELETE_ORPHAN_FILE_JOB, TaskQueue

logger = logging.getLogger(__name__)


class ReferenceProbe(Protocol):
    name: str

    async def is_referenced(self, db: AsyncSession, file_id: str) -> bool: ...

    async def referenced_clause(self, db: AsyncSession) -> ColumnElement[bool] | None: ...


async def _has_table(db: AsyncSession, name: str) -> bool:
    conn = await db.connection()
    return await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(name))


class ColumnReferenceProbe:
    """A file id stored in `table.column`. Probing a table that does not exist yet reports no reference."""

    def __init__(self, table_name: str, column_name: str):
        self.name = f"{table_name}.{column_name}"
        self.table_name = table_name
        self.column_name = column_name
        self._table = table(table_name, column(column_name))

    @property
    def _column(self):
        return self._table.c[self.column_name]

    async def is_referenced(self, db: AsyncSession, file_id: str) -> bool:
        if not await _has_table(db, self.table_name):
            return False
        row = await db.execute(select(1).select_from(self._table).where(self._column == file_id).limit(1))
        return row.first() is not None

    async def referenced_clause(self, db: AsyncSession) -> ColumnElement[bool] | None:
        if not await _has_table(db, self.table_name):
            return None
        return exists().where(self._column == File.id)


class CallableReferenceProbe:
    """Adapter for feature modules that answer the question in code."""

    def __init__(self, name: str, check: Callable[[AsyncSession, str], Awaitable[bool]]):
        self.name = name
        self._check = check

    async def is_referenced(self, db: AsyncSession, file_id: str) -> bool:
        return await self._check(db, file_id)

    async def referenced_clause(self, db: AsyncSession) -> ColumnElement[bool] | None:
        return None


DEFAULT_REFERENCE_PROBES: tuple[ReferenceProbe, ...] = (
    ColumnReferenceProbe("users", "avatar_file_id"),
    ColumnReferenceProbe("posts", "media_file_id"),
    ColumnReferenceProbe("post_media", "file_id"),
    ColumnReferenceProbe("attachments", "file_id"),
    ColumnReferenceProbe("product_images", "file_id"),
)


class OrphanReclaimer:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        queue: TaskQueue,
        delete_file: Callable[[str], Awaitable[Any]],
        *,
        probes: Sequence[ReferenceProbe] | None = None,
        app_settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.queue = queue
        self.delete_file = delete_file
        self.probes = tuple(DEFAULT_REFERENCE_PROBES if probes is None else probes)
        self.settings = app_settings or default_settings

    async def _bulk_filter(self, db: AsyncSession) -> tuple[list[ColumnElement[bool]], list[ReferenceProbe]]:
        clauses: list[ColumnElement[bool]] = []
        residual: list[ReferenceProbe] = []
        for probe in self.probes:
            clause = await probe.referenced_clause(db)
            if clause is not None:
                clauses.append(~clause)
            elif not isinstance(probe, ColumnReferenceProbe):
                residual.append(probe)
        return clauses, residual

    async def _referenced(self, db: AsyncSession, file_id: str, probes: Iterable[ReferenceProbe]) -> bool:
        for probe in probes:
            if await probe.is_referenced(db, file_id):
                return True
        return False

    async def find_orphans(self, limit: int = 100, offset: int = 0) -> list[File]:
        async with self.session_factory() as db:
            clauses, residual = await self._bulk_filter(db)
            query = select(File).order_by(File.created_at.asc(), File.id.asc())
            if clauses:
                query = query.where(and_(*clauses))
            if not residual:
                rows = await db.execute(query.limit(limit).offset(offset))
                return list(rows.scalars().all())

            # Code-level probes cannot be pushed into SQL; page through and filter.
            out: list[File] = []
            skipped = 0
            for file in (await db.execute(query)).scalars():
                if await self._referenced(db, file.id, residual):
                    continue
                if skipped < offset:
                    skipped += 1
                    continue
                out.append(file)
                if len(out) >= limit:
                    break
            return out

    async def count_orphans(self) -> int:
        async with self.session_factory() as db:
            clauses, residual = await self._bulk_filter(db)
            if residual:
                query = select(File.id)
                if clauses:
                    query = query.where(and_(*clauses))
                ids = (await db.execute(query)).scalars().all()
                count = 0
                for file_id in ids:
                    if not await self._referenced(db, file_id, residual):
                        count += 1
                return count
            query = select(func.count(File.id))
            if clauses:
                query = query.where(and_(*clauses))
            return int((await db.execute(query)).scalar_one() or 0)

    async def is_orphaned(self, file_id: str) -> bool:
        async with self.session_factory() as db:
            if await db.get(File, file_id) is None:
                return False
            return not await self._referenced(db, file_id, self.probes)

    async def enqueue_cleanup(self, file_ids: Iterable[str]) -> int:
        queued = 0
        for file_id in dict.fromkeys(file_ids):
            await self.queue.submit(
                DELETE_ORPHAN_FILE_JOB,
                {"file_id": file_id},
                schedule_in=self.settings.orphan_delete_delay_seconds,
            )
            queued += 1
        logger.info("Queued %s orphan deletions with %ss delay", queued, self.settings.orphan_delete_delay_seconds)
        return queued

    async def delete_if_orphaned(self, file_id: str) -> bool:
        """Runs the delayed half of the protocol. Returns True when the file was deleted."""
        async with self.session_factory() as db:
            if await db.get(File, file_id) is None:
                logger.info("Orphan file_id=%s already gone", file_id)
                return False
            if await self._referenced(db, file_id, self.probes):
                logger.warning("%s: file_id=%s referenced again, keeping it", OrphanRaceDetected.code, file_id)
                return False

        await self.delete_file(file_id)
        logger.info("Deleted orphan file_id=%s", file_id)
        return True
