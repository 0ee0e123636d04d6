import io

import pytest
from PIL import Image

from mediavault.services import layout, media
from mediavault.services.storage_config import DimensionSpec
from tests.conftest import make_png


def _dim(name: str = "thumbnail", fmt: str | None = None) -> DimensionSpec:
    return DimensionSpec(name=name, width=150, height=150, quality=85, format=fmt, applies_to="image")


@pytest.mark.parametrize(
    ("filename", "expected"),
    [("photo.JPG", "jpg"), ("archive.tar.gz", "gz"), ("noext", ""), (".hidden", ""), ("dir/clip.mp4", "mp4")],
)
def test_split_extension(filename: str, expected: str) -> None:
    assert media.split_extension(filename) == expected


def test_mime_and_type_detection() -> None:
    assert media.mime_from_extension("png") == "image/png"
    assert media.mime_from_extension("") == media.DEFAULT_MIME
    assert media.extension_from_mime("video/mp4") == "mp4"
    assert media.extension_from_mime(media.DEFAULT_MIME) == "bin"
    assert media.determine_file_type("image/webp") == "image"
    assert media.determine_file_type("video/quicktime") == "video"
    assert media.determine_file_type("application/pdf") == "document"
    assert media.determine_file_type("application/zip") == "archive"
    assert media.determine_file_type("application/x-thing") == "other"


def test_variant_extension_and_mime() -> None:
    assert media.variant_extension("png", _dim(fmt="jpg")) == "jpg"
    assert media.variant_extension("png", _dim()) == "png"
    assert media.variant_extension("pdf", _dim(), "document") == "jpg"
    assert media.variant_extension("mov", _dim(name="720p"), "video") == "mov"
    assert media.variant_mime_type("application/pdf", "pdf", "jpg") == "image/jpeg"
    assert media.variant_mime_type("image/png", "png", "webp") == "image/webp"
    assert media.variant_mime_type("image/png", "png", "png") == "image/png"


def test_unwritable_source_format_becomes_jpeg() -> None:
    ext = media.variant_extension("bmp", _dim())
    assert ext == "jpg"
    assert media.variant_mime_type("image/bmp", "bmp", ext) == "image/jpeg"
    assert media.variant_extension("tiff", _dim()) == "jpg"


def test_video_thumbnail_args() -> None:
    from pathlib import Path

    args = media._video_args(Path("in.mp4"), Path("out.jpg"), _dim(name="video_thumbnail", fmt="jpg"))
    assert args[:3] == ["-i", "in.mp4", "-y"]
    assert "-vframes" in args
    assert args[-1] == "out.jpg"

    preset = media._video_args(Path("in.mp4"), Path("out.mp4"), _dim(name="720p", fmt="mp4"))
    assert "scale=1280:720" in preset


def test_storage_layout() -> None:
    content_hash = "ab" + "0" * 62
    prefix = layout.file_prefix("12345", content_hash)
    assert prefix == f"12/ab/{content_hash}"
    assert layout.original_path(prefix, content_hash, "png") == f"{prefix}/{content_hash}_original.png"
    assert layout.instance_path(prefix, content_hash, "small", ".jpg") == f"{prefix}/{content_hash}_small.jpg"


async def test_probe_image_reads_dimensions(tmp_path) -> None:
    path = tmp_path / "pic.png"
    path.write_bytes(make_png(20, 10))
    assert await media.extract_metadata(path, "image", "image/png") == {"width": 20, "height": 10, "format": "png"}

    broken = tmp_path / "broken.png"
    broken.write_bytes(b"nope")
    assert await media.extract_metadata(broken, "image", "image/png") == {}


async def test_pdf_page_count(tmp_path) -> None:
    from pypdf import PdfWriter

    writer = PdfWriter()
    for _ in range(3):
        writer.add_blank_page(width=200, height=200)
    path = tmp_path / "doc.pdf"
    with path.open("wb") as fh:
        writer.write(fh)
    assert await media.extract_metadata(path, "document", "application/pdf") == {"pages": 3}

    broken = tmp_path / "broken.pdf"
    broken.write_bytes(b"%PDF-1.4 not really")
    assert await media.extract_metadata(broken, "document", "application/pdf") == {}


def _render(tmp_path, source_bytes: bytes, source_name: str, dimension: DimensionSpec, ext: str):
    source = tmp_path / source_name
    source.write_bytes(source_bytes)
    target = tmp_path / f"out.{ext}"
    size = media._render_image(source, target, dimension, ext)
    return size, target


def test_aspect_preserving_resize_fits_both_bounds(tmp_path) -> None:
    medium = DimensionSpec(name="medium", width=800, height=600, quality=85, format="jpg", applies_to="image")

    size, _ = _render(tmp_path, make_png(400, 1200), "tall.png", medium, "jpg")
    assert size == (200, 600)

    size, _ = _render(tmp_path, make_png(1600, 600), "wide.png", medium, "jpg")
    assert size == (800, 300)


def test_aspect_preserving_resize_never_enlarges(tmp_path) -> None:
    large = DimensionSpec(name="large", width=1920, height=1080, quality=85, format="jpg", applies_to="image")
    size, _ = _render(tmp_path, make_png(40, 30), "tiny.png", large, "jpg")
    assert size == (40, 30)


def test_width_only_dimension_scales_by_width(tmp_path) -> None:
    small = DimensionSpec(name="small", width=100, height=None, quality=85, format=None, applies_to="image")
    size, _ = _render(tmp_path, make_png(400, 1200), "tall.png", small, "png")
    assert size == (100, 300)


def test_bmp_source_renders_jpeg_bytes(tmp_path) -> None:
    buf = io.BytesIO()
    Image.new("RGB", (600, 400), "blue").save(buf, format="BMP")
    dimension = _dim(name="small")
    ext = media.variant_extension("bmp", dimension)

    _, target = _render(tmp_path, buf.getvalue(), "pic.bmp", dimension, ext)
    with Image.open(target) as img:
        assert img.format == "JPEG"
    assert media.variant_mime_type("image/bmp", "bmp", ext) == "image/jpeg"


async def test_oversized_image_is_reported_not_raised(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    path = tmp_path / "bomb.png"
    path.write_bytes(make_png(64, 48))

    assert await media.extract_metadata(path, "image", "image/png") == {}
    with pytest.raises(media.MediaProcessingError):
        await media.render_variant(
            path, tmp_path / "out.jpg", file_type="image", mime_type="image/png", dimension=_dim()
        )
