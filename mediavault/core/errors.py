"""Typed storage errors and the result value returned by the public engine API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class StorageError(Exception):
    code = "storage_error"

    def __init__(self, message: str = "", *, reason: Any = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.reason = reason

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class NotFoundError(StorageError):
    code = "not_found"


class NoBucketsConfiguredError(StorageError):
    code = "no_buckets_configured"


class StorageBackendError(StorageError):
    code = "storage_backend_error"


class PartialRedundancyFailure(StorageError):
    """Some bucket writes failed but at least one copy landed. Logged, never raised to callers."""

    code = "partial_redundancy_failure"


class ValidationError(StorageError):
    code = "validation_error"


class InternalStorageError(StorageError):
    code = "internal_error"


class OrphanRaceDetected(StorageError):
    """The file gained a reference while its deletion was pending."""

    code = "orphan_race_detected"


@dataclass(slots=True)
class Result(Generic[T]):
    value: T | None = None
    error: StorageError | None = None
    duplicate: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    @classmethod
    def success(cls, value: T | None = None, *, duplicate: bool = False) -> "Result[T]":
        return cls(value=value, duplicate=duplicate)

    @classmethod
    def failure(cls, error: StorageError) -> "Result[T]":
        return cls(error=error)
