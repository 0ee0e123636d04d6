from __future__ import annotations

from mediavault.core.config import settings
from mediavault.core.errors import ValidationError
from mediavault.services.drivers.base import StorageDriver
from mediavault.services.drivers.local import LocalDriver
from mediavault.services.drivers.s3 import S3Driver
from mediavault.services.storage_config import BucketSpec

_cache: dict[int, tuple[tuple, StorageDriver]] = {}


def _r2_endpoint(spec: BucketSpec) -> str | None:
    # R2 endpoints are account scoped; a bare account id is accepted in `endpoint`.
    endpoint = (spec.endpoint or "").strip()
    if endpoint and "://" not in endpoint:
        return f"https://{endpoint}.r2.cloudflarestorage.com"
    return endpoint or None


def build_driver(spec: BucketSpec) -> StorageDriver:
    if spec.provider == "local":
        return LocalDriver(spec.endpoint or settings.storage_local_root, public_base_url=spec.cdn_url)
    if spec.provider in ("s3", "r2", "b2"):
        endpoint = _r2_endpoint(spec) if spec.provider == "r2" else spec.endpoint
        driver = S3Driver(
            bucket=spec.bucket_name or spec.name,
            endpoint_url=endpoint,
            region=spec.region or ("auto" if spec.provider == "r2" else settings.s3_region),
            access_key=spec.access_key_id,
            secret_key=spec.secret_access_key,
            public_base_url=spec.cdn_url,
        )
        driver.provider = spec.provider
        return driver
    raise ValidationError(f"Unsupported provider: {spec.provider!r}")


def driver_for_bucket(spec: BucketSpec) -> StorageDriver:
    """One cached driver per bucket; it is replaced when the connection settings change."""
    settings_key = (
        spec.provider,
        spec.endpoint,
        spec.region,
        spec.bucket_name,
        spec.access_key_id,
        spec.secret_access_key,
        spec.cdn_url,
    )
    cached = _cache.get(spec.id)
    if cached is not None and cached[0] == settings_key:
        return cached[1]
    driver = build_driver(spec)
    _cache[spec.id] = (settings_key, driver)
    return driver


__all__ = ["LocalDriver", "S3Driver", "StorageDriver", "build_driver", "driver_for_bucket"]
