from __future__ import annotations

import pytest

from mediavault.core.errors import NoBucketsConfiguredError, NotFoundError, StorageBackendError
from mediavault.services import registry
from mediavault.services.coordinator import RedundancyCoordinator
from mediavault.services.storage_config import BucketSpec, StorageConfig


def _spec(bucket_id: int, priority: int = 0, free_mb: float | None = None, enabled: bool = True) -> BucketSpec:
    return BucketSpec(
        id=bucket_id,
        name=f"b{bucket_id}",
        provider="local",
        priority=priority,
        free_mb=free_mb,
        enabled=enabled,
    )


def test_selection_prefers_explicit_priority_then_free_space() -> None:
    config = StorageConfig(
        buckets=(
            _spec(1, priority=0, free_mb=10),
            _spec(2, priority=2),
            _spec(3, priority=0, free_mb=500),
            _spec(4, priority=1),
            _spec(5, priority=1, enabled=False),
        ),
        redundancy_copies=3,
    )
    assert [b.id for b in config.retrieval_order()] == [4, 2, 3, 1]
    assert [b.id for b in config.select_for_upload()] == [4, 2, 3]
    assert [b.id for b in config.select_for_upload(copies=9)] == [4, 2, 3, 1]
    assert [b.id for b in config.select_for_upload(copies=0)] == [4, 2, 3]


async def test_store_writes_redundant_copies(config_provider, drivers, buckets) -> None:
    coordinator = RedundancyCoordinator(config_provider, driver_factory=drivers)
    outcome = await coordinator.store(b"0123456789", "ab/cd/file_original.bin")

    assert outcome.bucket_ids == [buckets[0].id, buckets[1].id]
    assert not outcome.partial
    for bucket in buckets:
        assert drivers.drivers[bucket.id].get("ab/cd/file_original.bin") == b"0123456789"


async def test_store_survives_one_failing_bucket(config_provider, drivers, buckets) -> None:
    coordinator = RedundancyCoordinator(config_provider, driver_factory=drivers)
    await config_provider.get()
    drivers(await _bucket_spec(config_provider, buckets[0].id)).fail_puts = True

    outcome = await coordinator.store(b"data", "x/y/z_original.bin")
    assert outcome.bucket_ids == [buckets[1].id]
    assert outcome.partial
    assert buckets[0].id in outcome.failures


async def test_store_fails_when_every_bucket_fails(config_provider, drivers, buckets) -> None:
    coordinator = RedundancyCoordinator(config_provider, driver_factory=drivers)
    for bucket in buckets:
        drivers(await _bucket_spec(config_provider, bucket.id)).fail_puts = True

    with pytest.raises(StorageBackendError):
        await coordinator.store(b"data", "x/y/z_original.bin")


async def test_store_without_buckets(config_provider, drivers) -> None:
    coordinator = RedundancyCoordinator(config_provider, driver_factory=drivers)
    with pytest.raises(NoBucketsConfiguredError):
        await coordinator.store(b"data", "x/y/z_original.bin")


async def test_retrieve_fails_over_to_next_bucket(config_provider, drivers, buckets) -> None:
    coordinator = RedundancyCoordinator(config_provider, driver_factory=drivers)
    await coordinator.store(b"payload", "p/q/r_original.bin")
    drivers.drivers[buckets[0].id].delete("p/q/r_original.bin")

    ids = [b.id for b in buckets]
    assert await coordinator.retrieve("p/q/r_original.bin", bucket_ids=ids) == b"payload"
    assert await coordinator.exists("p/q/r_original.bin", bucket_ids=ids)

    drivers.drivers[buckets[1].id].delete("p/q/r_original.bin")
    with pytest.raises(NotFoundError):
        await coordinator.retrieve("p/q/r_original.bin", bucket_ids=ids)
    assert not await coordinator.exists("p/q/r_original.bin", bucket_ids=ids)


async def test_disabled_bucket_is_skipped_after_invalidate(session_factory, config_provider, drivers, buckets) -> None:
    coordinator = RedundancyCoordinator(config_provider, driver_factory=drivers)
    await config_provider.get()
    async with session_factory() as db:
        await registry.update_bucket(db, await registry.get_bucket(db, buckets[0].id), enabled=False)

    # The cached snapshot still sees the bucket until it is invalidated.
    assert len((await config_provider.get()).select_for_upload()) == 2
    config_provider.invalidate()

    outcome = await coordinator.store(b"data", "a/b/c_original.bin")
    assert outcome.bucket_ids == [buckets[1].id]


async def test_delete_reports_per_bucket(config_provider, drivers, buckets) -> None:
    coordinator = RedundancyCoordinator(config_provider, driver_factory=drivers)
    stored = await coordinator.store(b"data", "d/e/f_original.bin")

    outcome = await coordinator.delete("d/e/f_original.bin", bucket_ids=stored.bucket_ids)
    assert outcome.deleted_from == stored.bucket_ids
    assert drivers.total("delete") == 2
    assert not await coordinator.exists("d/e/f_original.bin")


async def _bucket_spec(provider, bucket_id: int) -> BucketSpec:
    spec = (await provider.get()).bucket(bucket_id)
    assert spec is not None
    return spec
