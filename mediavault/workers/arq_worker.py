from __future__ import annotations

import logging

from arq import Retry, func
from arq.connections import RedisSettings
from arq.cron import cron

from mediavault.core.config import settings
from mediavault.core.logging import configure_logging
from mediavault.db.session import SessionLocal
from mediavault.services.engine import StorageEngine
from mediavault.workers.queue import ArqTaskQueue

logger = logging.getLogger(__name__)


async def on_startup(ctx) -> None:
    configure_logging()
    queue = ArqTaskQueue(ctx.get("redis"))
    ctx["engine"] = StorageEngine(SessionLocal, queue)
    logger.info("Storage worker started")


async def on_shutdown(ctx) -> None:
    engine: StorageEngine | None = ctx.pop("engine", None)
    if engine is not None:
        await engine.close()


async def process_file_job(ctx, file_id: str, max_attempts: int | None = None, **_: object) -> dict:
    engine: StorageEngine = ctx["engine"]
    result = await engine.process_file(file_id)
    if not result.ok:
        # Retry with backoff until arq's max_tries is reached.
        attempt = int(ctx.get("job_try") or 1)
        raise Retry(defer=attempt * 10) from result.error
    report = result.value
    if report.failed:
        attempt = int(ctx.get("job_try") or 1)
        if attempt < (max_attempts or settings.variant_job_max_tries):
            raise Retry(defer=attempt * 10)
        logger.warning("file_id=%s gave up on variants %s after %s tries", file_id, report.failed, attempt)
    return {
        "file_id": file_id,
        "generated": report.generated,
        "skipped": report.skipped,
        "failed": report.failed,
    }


async def delete_orphan_file_job(ctx, file_id: str, **_: object) -> dict:
    engine: StorageEngine = ctx["engine"]
    result = await engine.delete_orphan(file_id)
    if not result.ok:
        attempt = int(ctx.get("job_try") or 1)
        raise Retry(defer=attempt * 10) from result.error
    return {"file_id": file_id, "deleted": bool(result.value)}


async def scan_orphans_job(ctx) -> dict:
    engine: StorageEngine = ctx["engine"]
    result = await engine.queue_orphan_cleanup(limit=settings.orphan_scan_batch_size)
    if not result.ok:
        raise result.error  # type: ignore[misc]
    return {"queued": result.value}


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    functions = [
        func(
            process_file_job,
            max_tries=settings.variant_job_max_tries,
            timeout=settings.variant_job_timeout_seconds,
        ),
        func(delete_orphan_file_job, max_tries=settings.variant_job_max_tries),
    ]
    cron_jobs = [cron(scan_orphans_job, hour={3}, minute={0})] if settings.orphan_scan_enabled else []
    on_startup = on_startup
    on_shutdown = on_shutdown
