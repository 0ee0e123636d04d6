from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path

from mediavault.core.errors import NotFoundError, StorageBackendError
from mediavault.services.drivers.base import Source, StorageDriver, read_source

logger = logging.getLogger(__name__)


class LocalDriver(StorageDriver):
    provider = "local"

    def __init__(self, root: str | Path, *, public_base_url: str | None = None):
        self.root = Path(root)
        self.public_base_url = (public_base_url or "").rstrip("/") or None

    def _full_path(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if self.root.resolve() not in full.parents:
            raise StorageBackendError(f"Path escapes bucket root: {path}")
        return full

    def put(self, source: Source, path: str, *, content_type: str | None = None) -> None:
        data = read_source(source)
        target = self._full_path(path)
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.part")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageBackendError(f"Failed to write {target}", reason=exc) from exc

        written = target.stat().st_size
        if written != len(data):
            raise StorageBackendError(f"Size mismatch after write: expected {len(data)}, got {written}")
        logger.debug("Stored %s bytes at %s", written, target)

    def get(self, path: str) -> bytes:
        target = self._full_path(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Not found in local bucket: {path}") from exc
        except OSError as exc:
            raise StorageBackendError(f"Failed to read {target}", reason=exc) from exc

    def delete(self, path: str) -> None:
        target = self._full_path(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageBackendError(f"Failed to delete {target}", reason=exc) from exc

    def exists(self, path: str) -> bool:
        return self._full_path(path).is_file()

    def public_url(self, path: str) -> str | None:
        if not self.public_base_url:
            return None
        return f"{self.public_base_url}/{path}"
