from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Any

from PIL import Image, ImageOps, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from mediavault.core.config import settings
from mediavault.core.errors import StorageError
from mediavault.services.storage_config import DimensionSpec

logger = logging.getLogger(__name__)

DEFAULT_MIME = "application/octet-stream"

EXTENSION_MIME = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "avif": "image/avif",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "pdf": "application/pdf",
    "txt": "text/plain",
}

DOCUMENT_MIMES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

PIL_FORMATS = {"jpg": "JPEG", "jpeg": "JPEG", "png": "PNG", "webp": "WEBP", "gif": "GIF"}

# Pillow refuses oversized images with DecompressionBombError, which is not an OSError.
IMAGE_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError)

# ffmpeg presets keyed by well-known dimension names.
VIDEO_PRESETS = {
    "360p": ["-vf", "scale=640:360", "-crf", "28"],
    "720p": ["-vf", "scale=1280:720", "-crf", "25"],
    "1080p": ["-vf", "scale=1920:1080", "-crf", "23"],
}


class MediaProcessingError(StorageError):
    code = "media_processing_error"


def split_extension(filename: str) -> str:
    name = Path(filename or "").name
    if "." not in name.strip("."):
        return ""
    return name.rsplit(".", 1)[-1].strip().lower()


def mime_from_extension(ext: str) -> str:
    ext = (ext or "").lower().lstrip(".")
    if not ext:
        return DEFAULT_MIME
    if ext in EXTENSION_MIME:
        return EXTENSION_MIME[ext]
    guessed, _ = mimetypes.guess_type(f"file.{ext}")
    return guessed or DEFAULT_MIME


def extension_from_mime(mime_type: str | None) -> str:
    if not mime_type or mime_type == DEFAULT_MIME:
        return "bin"
    for ext, mime in EXTENSION_MIME.items():
        if mime == mime_type:
            return ext
    guessed = mimetypes.guess_extension(mime_type or "") or ""
    return guessed.lstrip(".") or "bin"


def determine_file_type(mime_type: str) -> str:
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    if mime_type.startswith("text/") or mime_type in DOCUMENT_MIMES:
        return "document"
    if "zip" in mime_type or "archive" in mime_type:
        return "archive"
    return "other"


def variant_extension(original_ext: str, dimension: DimensionSpec, file_type: str = "image") -> str:
    if dimension.format:
        return dimension.format.lower().lstrip(".")
    ext = (original_ext or "").lower().lstrip(".")
    if file_type == "video":
        return ext or "mp4"
    # Images and PDF pages are re-encoded by Pillow; formats it cannot write become JPEG.
    return ext if ext in PIL_FORMATS else "jpg"


def variant_mime_type(original_mime: str, original_ext: str, variant_ext: str) -> str:
    if variant_ext == (original_ext or "").lower().lstrip("."):
        return original_mime
    return mime_from_extension(variant_ext)


async def _run(binary: str, args: list[str], timeout: float | None = None) -> tuple[int, str]:
    proc = await asyncio.create_subprocess_exec(
        binary,
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        out, _ = await asyncio.wait_for(proc.communicate(), timeout or settings.media_command_timeout_seconds)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise MediaProcessingError(f"{binary} timed out")
    return proc.returncode or 0, out.decode("utf-8", errors="replace")


# ===== METADATA =====


def _image_metadata(path: Path) -> dict[str, Any]:
    with Image.open(path) as img:
        return {"width": img.width, "height": img.height, "format": (img.format or "").lower()}


async def probe_image(path: Path) -> dict[str, Any]:
    try:
        return await asyncio.to_thread(_image_metadata, path)
    except IMAGE_ERRORS as exc:
        logger.warning("Failed to extract image metadata from %s: %s", path, exc)
        return {}


async def probe_video(path: Path) -> dict[str, Any]:
    args = [
        "-v",
        "error",
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=width,height,duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]
    try:
        code, output = await _run(settings.ffprobe_binary, args)
    except (OSError, MediaProcessingError) as exc:
        logger.warning("ffprobe unavailable for %s: %s", path, exc)
        return {}
    if code != 0:
        logger.warning("Failed to extract video metadata from %s: %s", path, output.strip())
        return {}

    lines = [x.strip() for x in output.strip().splitlines() if x.strip()]
    try:
        width, height = int(lines[0]), int(lines[1])
        duration = round(float(lines[2])) if len(lines) > 2 and lines[2] != "N/A" else None
    except (IndexError, ValueError):
        logger.warning("Unexpected ffprobe output for %s: %r", path, output)
        return {}
    return {"width": width, "height": height, "duration": duration}


def _pdf_page_count(path: Path) -> int:
    return len(PdfReader(path).pages)


async def probe_document(path: Path, mime_type: str) -> dict[str, Any]:
    if mime_type != "application/pdf":
        return {}
    try:
        pages = await asyncio.to_thread(_pdf_page_count, path)
    except (PdfReadError, OSError, ValueError) as exc:
        logger.warning("Failed to read document %s: %s", path, exc)
        return {}
    return {"pages": pages} if pages else {}


async def extract_metadata(path: Path, file_type: str, mime_type: str) -> dict[str, Any]:
    """Type-specific metadata. Never raises: unreadable media yields an empty map."""
    if file_type == "image":
        return await probe_image(path)
    if file_type == "video":
        return await probe_video(path)
    if file_type == "document":
        return await probe_document(path, mime_type)
    return {}


# ===== RENDERING =====


def _flatten_for(img: Image.Image, pil_format: str) -> Image.Image:
    if pil_format == "JPEG" and img.mode not in ("RGB", "L"):
        background = Image.new("RGB", img.size, "white")
        rgba = img.convert("RGBA")
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    return img


def _render_image(source: Path, target: Path, dimension: DimensionSpec, ext: str) -> tuple[int, int]:
    pil_format = PIL_FORMATS.get(ext, "JPEG")
    quality = dimension.quality or 85
    with Image.open(source) as img:
        img = ImageOps.exif_transpose(img)
        width = dimension.width or img.width
        if dimension.maintain_aspect_ratio or not dimension.height:
            # Fit inside the box, never enlarge.
            height = dimension.height or img.height
            ratio = min(width / float(img.width), height / float(img.height), 1.0)
            if ratio < 1.0:
                size = (max(int(img.width * ratio), 1), max(int(img.height * ratio), 1))
                img = img.resize(size, Image.LANCZOS)
        else:
            img = ImageOps.fit(img, (width, dimension.height), Image.LANCZOS, centering=(0.5, 0.5))
        img = _flatten_for(img, pil_format)
        save_kwargs: dict[str, Any] = {}
        if pil_format in ("JPEG", "WEBP"):
            save_kwargs["quality"] = quality
        img.save(target, format=pil_format, **save_kwargs)
        return img.width, img.height


def _video_args(source: Path, target: Path, dimension: DimensionSpec) -> list[str]:
    args = ["-i", str(source), "-y"]
    if dimension.name in VIDEO_PRESETS:
        args += VIDEO_PRESETS[dimension.name]
    elif dimension.name == "video_thumbnail" or target.suffix.lower() in (".jpg", ".jpeg", ".png", ".webp"):
        args += ["-ss", "00:00:01.000", "-vframes", "1"]
        if dimension.width and dimension.height:
            args += ["-vf", f"scale={dimension.width}:{dimension.height}"]
    else:
        if dimension.width and dimension.height:
            args += ["-vf", f"scale={dimension.width}:{dimension.height}"]
        elif dimension.width:
            args += ["-vf", f"scale={dimension.width}:-2"]
        if dimension.quality is not None:
            args += ["-crf", str(min(max(int(dimension.quality), 0), 51))]
    return args + [str(target)]


async def render_variant(
    source: Path,
    target: Path,
    *,
    file_type: str,
    mime_type: str,
    dimension: DimensionSpec,
) -> tuple[int | None, int | None]:
    """Renders one variant of `source` into `target`. Returns the output width/height when known."""
    ext = target.suffix.lower().lstrip(".")
    if file_type == "image":
        try:
            return await asyncio.to_thread(_render_image, source, target, dimension, ext)
        except IMAGE_ERRORS as exc:
            raise MediaProcessingError(f"Image resize failed: {exc}", reason=exc) from exc

    if file_type == "video":
        try:
            code, output = await _run(settings.ffmpeg_binary, _video_args(source, target, dimension))
        except OSError as exc:
            raise MediaProcessingError(f"ffmpeg unavailable: {exc}", reason=exc) from exc
        if code != 0:
            raise MediaProcessingError(f"ffmpeg exited with {code}", reason=output[-2000:])
        if ext in PIL_FORMATS:
            meta = await probe_image(target)
            return meta.get("width"), meta.get("height")
        return dimension.width, dimension.height

    if mime_type == "application/pdf":
        prefix = target.with_name(target.stem + "_page")
        try:
            code, output = await _run(
                settings.pdftoppm_binary,
                ["-jpeg", "-f", "1", "-l", "1", "-singlefile", str(source), str(prefix)],
            )
        except OSError as exc:
            raise MediaProcessingError(f"pdftoppm unavailable: {exc}", reason=exc) from exc
        page = prefix.with_suffix(".jpg")
        try:
            if code != 0 or not page.exists():
                raise MediaProcessingError(f"pdftoppm exited with {code}", reason=output[-2000:])
            return await render_variant(page, target, file_type="image", mime_type="image/jpeg", dimension=dimension)
        finally:
            page.unlink(missing_ok=True)

    raise MediaProcessingError(f"Unsupported file type for variant generation: {file_type}/{mime_type}")
