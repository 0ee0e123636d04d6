from __future__ import annotations

from mediavault.models.storage import ORIGINAL
from mediavault.services import registry
from mediavault.workers.queue import PROCESS_FILE_JOB


async def _original(session_factory, file_id: str):
    async with session_factory() as db:
        instance = await registry.get_file_instance_by_name(db, file_id, ORIGINAL)
        bucket_ids = await registry.get_file_instance_bucket_ids(db, instance.id) if instance else []
    return instance, bucket_ids


async def test_missing_bytes_are_restored_from_reupload(engine, session_factory, drivers, queue, buckets) -> None:
    first = (await engine.store_file(b"precious", "u1", "p.txt")).value
    instance, bucket_ids = await _original(session_factory, first.id)
    for bucket_id in bucket_ids:
        drivers.drivers[bucket_id].delete(instance.file_name)

    async with session_factory() as db:
        await registry.create_file_instance(
            db,
            file_id=first.id,
            variant_name="thumbnail",
            file_name=f"{first.file_path}/{first.file_checksum}_thumbnail.jpg",
            mime_type="image/jpeg",
            ext="jpg",
            processing_status="completed",
        )

    again = await engine.store_file(b"precious", "u1", "p.txt")

    assert again.ok and again.duplicate
    assert again.value.id == first.id
    assert again.value.user_file_checksum == first.user_file_checksum

    restored, restored_buckets = await _original(session_factory, first.id)
    assert restored is not None
    assert restored.file_name == instance.file_name
    assert sorted(restored_buckets) == sorted(bucket_ids)
    for bucket_id in restored_buckets:
        assert drivers.drivers[bucket_id].get(restored.file_name) == b"precious"

    async with session_factory() as db:
        names = [i.variant_name for i in await registry.list_file_instances(db, first.id)]
    assert names == [ORIGINAL]
    assert len(queue.of_type(PROCESS_FILE_JOB)) == 2


async def test_missing_instance_record_is_recreated(engine, session_factory, buckets) -> None:
    first = (await engine.store_file(b"orphaned row", "u1", "o.txt")).value
    async with session_factory() as db:
        await registry.delete_file_instances_for_file(db, first.id)

    again = await engine.store_file(b"orphaned row", "u1", "o.txt")
    assert again.duplicate
    assert again.value.id == first.id

    restored, bucket_ids = await _original(session_factory, first.id)
    assert restored.processing_status == "completed"
    assert len(bucket_ids) == 2
    assert (await engine.retrieve_file(first.id)).value.data == b"orphaned row"


async def test_recovery_without_buckets_surfaces_error(engine, session_factory, buckets) -> None:
    first = (await engine.store_file(b"abc", "u1", "a.txt")).value
    async with session_factory() as db:
        await registry.delete_file_instances_for_file(db, first.id)
        for bucket in buckets:
            await registry.update_bucket(db, await registry.get_bucket(db, bucket.id), enabled=False)
    engine.invalidate_config()

    result = await engine.store_file(b"abc", "u1", "a.txt")
    assert result.error_code == "no_buckets_configured"
    assert (await engine.get_file(first.id)).ok
