from __future__ import annotations

import logging
from typing import Any, Protocol

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings

from mediavault.core.config import settings

logger = logging.getLogger(__name__)

PROCESS_FILE_JOB = "process_file_job"
DELETE_ORPHAN_FILE_JOB = "delete_orphan_file_job"


class TaskQueue(Protocol):
    async def submit(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        schedule_in: float | None = None,
        max_attempts: int | None = None,
    ) -> None: ...


async def submit_best_effort(queue: TaskQueue, job_type: str, payload: dict[str, Any], **opts: Any) -> bool:
    """Submits a job whose loss is acceptable. Failures are logged and swallowed."""
    try:
        await queue.submit(job_type, payload, **opts)
    except Exception:
        logger.warning("Best-effort submission of %s failed for %s", job_type, payload, exc_info=True)
        return False
    return True


class ArqTaskQueue:
    """`TaskQueue` on arq. Retry limits come from the worker's function registration;
    `max_attempts` travels in the payload so jobs can stop early."""

    def __init__(self, redis: ArqRedis | None = None, *, redis_url: str | None = None):
        self._redis = redis
        self._redis_url = redis_url or settings.redis_url

    async def _pool(self) -> ArqRedis:
        if self._redis is None:
            self._redis = await create_pool(RedisSettings.from_dsn(self._redis_url))
        return self._redis

    async def submit(
        self,
        job_type: str,
        payload: dict[str, Any],
        *,
        schedule_in: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        redis = await self._pool()
        kwargs = dict(payload)
        if max_attempts is not None:
            kwargs["max_attempts"] = max_attempts
        job = await redis.enqueue_job(job_type, _defer_by=schedule_in, **kwargs)
        logger.debug("Queued %s (%s) defer_by=%s", job_type, job.job_id if job else "duplicate", schedule_in)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None
