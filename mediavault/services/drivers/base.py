from __future__ import annotations

import abc
from pathlib import Path

Source = bytes | Path


def read_source(source: Source) -> bytes:
    if isinstance(source, Path):
        return source.read_bytes()
    return bytes(source)


class StorageDriver(abc.ABC):
    """Uniform interface to one storage provider.

    Methods are blocking; the redundancy coordinator runs them in worker threads.
    Failures raise `StorageBackendError`.
    """

    provider: str = ""

    @abc.abstractmethod
    def put(self, source: Source, path: str, *, content_type: str | None = None) -> None: ...

    @abc.abstractmethod
    def get(self, path: str) -> bytes: ...

    @abc.abstractmethod
    def delete(self, path: str) -> None: ...

    @abc.abstractmethod
    def exists(self, path: str) -> bool: ...

    @abc.abstractmethod
    def public_url(self, path: str) -> str | None: ...

    def test_connection(self) -> None:
        probe = ".mediavault_probe"
        self.put(b"probe", probe)
        self.delete(probe)
