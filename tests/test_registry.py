from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from mediavault.core.errors import NotFoundError, ValidationError
from mediavault.services import registry


async def _file(db, user_id: str = "42", data: bytes = b"hello", **extra):
    content_hash = registry.sha256_hex(data)
    attrs = {
        "original_file_name": "hello.txt",
        "file_name": f"{content_hash}.txt",
        "file_path": f"{user_id[:2]}/{content_hash[:2]}/{content_hash}",
        "mime_type": "text/plain",
        "file_type": "document",
        "ext": "txt",
        "file_checksum": content_hash,
        "user_file_checksum": registry.calculate_user_file_checksum(user_id, content_hash),
        "size": len(data),
        "user_id": user_id,
    }
    attrs.update(extra)
    return await registry.create_file(db, **attrs)


def test_user_checksum_depends_on_user() -> None:
    content_hash = registry.sha256_hex(b"same bytes")
    a = registry.calculate_user_file_checksum("1", content_hash)
    b = registry.calculate_user_file_checksum("2", content_hash)
    assert a != b
    assert a == registry.sha256_hex(f"1{content_hash}".encode())


@pytest.mark.parametrize("path", ["", "/abs/path", "a/../b", "./a"])
def test_validate_relative_path_rejects_bad_paths(path: str) -> None:
    with pytest.raises(ValidationError):
        registry.validate_relative_path(path)


async def test_bucket_crud_and_validation(session_factory, tmp_path) -> None:
    async with session_factory() as db:
        bucket = await registry.create_bucket(db, name="local", provider="local", endpoint=str(tmp_path))
        assert bucket.enabled is True
        assert bucket.priority == 0

        with pytest.raises(ValidationError):
            await registry.create_bucket(db, name="local", provider="local")
        with pytest.raises(ValidationError):
            await registry.create_bucket(db, name="ftp", provider="ftp")
        with pytest.raises(ValidationError):
            await registry.create_bucket(db, name="s3", provider="s3")

        updated = await registry.update_bucket(db, bucket, priority=3, max_size_mb=10)
        assert updated.priority == 3
        assert await registry.calculate_bucket_free_space(db, updated) == pytest.approx(10.0)

        await registry.delete_bucket(db, updated)
        assert await registry.get_bucket(db, bucket.id) is None


async def test_dimensions_reset_and_filter(session_factory) -> None:
    async with session_factory() as db:
        rows = await registry.reset_dimensions_to_defaults(db)
        assert [d.name for d in rows][:4] == ["thumbnail", "small", "medium", "large"]

        images = await registry.list_dimensions_for_type(db, "image")
        videos = await registry.list_dimensions_for_type(db, "video")
        assert {d.name for d in images} == {"thumbnail", "small", "medium", "large"}
        assert "video_thumbnail" in {d.name for d in videos}
        assert await registry.list_dimensions_for_type(db, "document") == []

        with pytest.raises(ValidationError):
            await registry.create_dimension(db, name="original", width=10, applies_to="image")
        with pytest.raises(ValidationError):
            await registry.create_dimension(db, name="huge", width=10, applies_to="audio")


async def test_user_file_checksum_is_unique(session_factory) -> None:
    async with session_factory() as db:
        await _file(db)
    async with session_factory() as db:
        with pytest.raises(IntegrityError):
            await _file(db)


async def test_same_bytes_for_two_users_are_distinct_files(session_factory) -> None:
    async with session_factory() as db:
        a = await _file(db, user_id="1")
        b = await _file(db, user_id="2")
        assert a.id != b.id
        assert a.file_checksum == b.file_checksum


async def test_instance_status_is_restricted(session_factory) -> None:
    async with session_factory() as db:
        file = await _file(db)
        instance = await registry.create_file_instance(
            db,
            file_id=file.id,
            variant_name="original",
            file_name=f"{file.file_path}/x_original.txt",
            mime_type="text/plain",
            ext="txt",
            size=5,
            processing_status="completed",
        )
        with pytest.raises(ValidationError):
            await registry.update_instance_status(db, instance, "done")


async def test_delete_file_cascades_children(session_factory) -> None:
    async with session_factory() as db:
        file = await _file(db)
        original = await registry.create_file_instance(
            db,
            file_id=file.id,
            variant_name="original",
            file_name=f"{file.file_path}/x_original.txt",
            mime_type="text/plain",
            ext="txt",
            size=5,
            processing_status="completed",
        )
        await registry.create_file_locations(db, original.id, [1, 2, 2], original.file_name)
        assert await registry.get_file_instance_bucket_ids(db, original.id) == [1, 2]

        removed = await registry.delete_file(db, file)
        assert removed == 2
        assert await registry.get_file(db, file.id) is None
        assert await registry.list_file_instances(db, file.id) == []
        assert await registry.list_instance_locations(db, original.id) == []

        with pytest.raises(NotFoundError):
            await registry.require_file(db, file.id)


async def test_delete_variant_instances_keeps_original(session_factory) -> None:
    async with session_factory() as db:
        file = await _file(db)
        for name in ("original", "thumbnail", "small"):
            await registry.create_file_instance(
                db,
                file_id=file.id,
                variant_name=name,
                file_name=f"{file.file_path}/x_{name}.txt",
                mime_type="text/plain",
                ext="txt",
                processing_status="completed",
            )
        assert await registry.delete_variant_instances(db, file.id) == 2
        assert [i.variant_name for i in await registry.list_file_instances(db, file.id)] == ["original"]


async def test_storage_stats(session_factory) -> None:
    async with session_factory() as db:
        await _file(db, user_id="1", data=b"aaaa")
        await _file(db, user_id="2", data=b"bb")
        stats = await registry.get_storage_stats(db)
        top = await registry.get_user_storage_stats(db)
    assert stats["total_files"] == 2
    assert stats["total_size_bytes"] == 6
    assert stats["files_by_status"] == {"processing": 2}
    assert top[0] == {"user_id": "1", "file_count": 1, "total_size_bytes": 4}
