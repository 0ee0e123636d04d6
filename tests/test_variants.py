from __future__ import annotations

import io

from PIL import Image

from mediavault.models.storage import ORIGINAL
from mediavault.services import media, registry
from tests.conftest import make_png


async def _seed_dimensions(session_factory) -> None:
    async with session_factory() as db:
        await registry.create_dimension(
            db, name="thumbnail", width=16, height=16, quality=80, format="jpg",
            applies_to="image", maintain_aspect_ratio=False, order=1,
        )
        await registry.create_dimension(
            db, name="small", width=32, quality=80, applies_to="image", order=2,
        )
        await registry.create_dimension(
            db, name="360p", width=640, height=360, format="mp4", applies_to="video",
            maintain_aspect_ratio=False, order=3,
        )


async def test_image_variants_are_generated(engine, session_factory, drivers, buckets) -> None:
    await _seed_dimensions(session_factory)
    file = (await engine.store_file(make_png(64, 48), "u1", "pic.png", "image/png")).value

    report = (await engine.process_file(file.id)).value
    assert sorted(report.generated) == ["small", "thumbnail"]
    assert report.failed == {}

    async with session_factory() as db:
        refreshed = await registry.get_file(db, file.id)
        instances = {i.variant_name: i for i in await registry.list_file_instances(db, file.id)}
        thumb_buckets = await registry.get_file_instance_bucket_ids(db, instances["thumbnail"].id)

    assert refreshed.status == "active"
    assert (refreshed.width, refreshed.height) == (64, 48)
    assert set(instances) == {ORIGINAL, "thumbnail", "small"}

    thumb = instances["thumbnail"]
    assert thumb.processing_status == "completed"
    assert thumb.file_name == f"{file.file_path}/{file.file_checksum}_thumbnail.jpg"
    assert (thumb.width, thumb.height) == (16, 16)
    assert sorted(thumb_buckets) == sorted(b.id for b in buckets)

    small = instances["small"]
    assert small.ext == "png"
    assert (small.width, small.height) == (32, 24)

    data = drivers.drivers[buckets[0].id].get(thumb.file_name)
    with Image.open(io.BytesIO(data)) as img:
        assert img.format == "JPEG"
        assert img.size == (16, 16)


async def test_rerun_does_not_duplicate_instances(engine, session_factory, buckets) -> None:
    await _seed_dimensions(session_factory)
    file = (await engine.store_file(make_png(), "u1", "pic.png")).value

    await engine.process_file(file.id)
    second = (await engine.process_file(file.id)).value

    assert second.generated == []
    assert sorted(second.skipped) == ["small", "thumbnail"]
    async with session_factory() as db:
        assert len(await registry.list_file_instances(db, file.id)) == 3


async def test_failed_variant_is_regenerated(engine, session_factory, buckets) -> None:
    await _seed_dimensions(session_factory)
    file = (await engine.store_file(make_png(), "u1", "pic.png")).value
    async with session_factory() as db:
        await registry.create_file_instance(
            db,
            file_id=file.id,
            variant_name="thumbnail",
            file_name=f"{file.file_path}/{file.file_checksum}_thumbnail.jpg",
            mime_type="image/jpeg",
            ext="jpg",
            processing_status="failed",
        )

    report = (await engine.process_file(file.id)).value
    assert "thumbnail" in report.generated
    async with session_factory() as db:
        thumb = await registry.get_file_instance_by_name(db, file.id, "thumbnail")
    assert thumb.processing_status == "completed"


async def test_unreadable_image_still_activates_file(engine, session_factory, buckets) -> None:
    await _seed_dimensions(session_factory)
    file = (await engine.store_file(b"not really a png", "u1", "broken.png")).value

    report = (await engine.process_file(file.id)).value
    assert set(report.failed) == {"thumbnail", "small"}

    async with session_factory() as db:
        refreshed = await registry.get_file(db, file.id)
        statuses = {i.variant_name: i.processing_status for i in await registry.list_file_instances(db, file.id)}
    assert refreshed.status == "active"
    assert refreshed.meta == {}
    assert statuses == {ORIGINAL: "completed", "thumbnail": "failed", "small": "failed"}


async def test_documents_get_no_variants(engine, session_factory, buckets) -> None:
    await _seed_dimensions(session_factory)
    file = (await engine.store_file(b"plain text", "u1", "readme.txt")).value
    report = (await engine.process_file(file.id)).value
    assert report.generated == [] and report.failed == {}


async def test_missing_file_is_a_noop(engine) -> None:
    result = await engine.process_file("does-not-exist")
    assert result.ok
    assert result.value.missing


async def test_lost_original_fails_the_job(engine, session_factory, drivers, buckets) -> None:
    file = (await engine.store_file(make_png(), "u1", "pic.png")).value
    async with session_factory() as db:
        original = await registry.get_file_instance_by_name(db, file.id, ORIGINAL)
    for driver in drivers.drivers.values():
        driver.delete(original.file_name)

    result = await engine.process_file(file.id)
    assert result.error_code == "not_found"
    async with session_factory() as db:
        assert (await registry.get_file(db, file.id)).status == "failed"


async def test_public_url_falls_back_to_original(engine, buckets, app_settings) -> None:
    file = (await engine.store_file(make_png(), "u1", "pic.png")).value
    url = (await engine.get_public_url(file.id, "thumbnail")).value
    assert url.startswith(f"/file/{file.id}/original/")


async def test_oversized_image_fails_variants_without_raising(engine, session_factory, buckets, monkeypatch) -> None:
    await _seed_dimensions(session_factory)
    file = (await engine.store_file(make_png(64, 48), "u1", "huge.png")).value
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)

    result = await engine.process_file(file.id)
    assert result.ok
    assert result.value.failed == {"thumbnail": "media_processing_error", "small": "media_processing_error"}
    async with session_factory() as db:
        assert (await registry.get_file(db, file.id)).status == "active"


async def test_unexpected_render_error_does_not_block_other_variants(
    engine, session_factory, buckets, monkeypatch
) -> None:
    await _seed_dimensions(session_factory)
    file = (await engine.store_file(make_png(64, 48), "u1", "pic.png")).value
    real_render = media.render_variant

    async def flaky_render(source, target, *, dimension, **kwargs):
        if dimension.name == "thumbnail":
            raise RuntimeError("encoder crashed")
        return await real_render(source, target, dimension=dimension, **kwargs)

    monkeypatch.setattr(media, "render_variant", flaky_render)

    report = (await engine.process_file(file.id)).value
    assert report.generated == ["small"]
    assert report.failed == {"thumbnail": "media_processing_error"}
    async with session_factory() as db:
        thumb = await registry.get_file_instance_by_name(db, file.id, "thumbnail")
    assert thumb.processing_status == "failed"


async def test_unexpected_errors_become_results(engine, monkeypatch, tmp_path) -> None:
    async def explode(file_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine.variant_pipeline, "process_file", explode)
    result = await engine.process_file("any")
    assert not result.ok
    assert result.error_code == "internal_error"

    missing = await engine.store_file(tmp_path / "nope.png", "u1")
    assert missing.error_code == "not_found"
