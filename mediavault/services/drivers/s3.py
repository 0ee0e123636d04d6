from __future__ import annotations

import io
import logging

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from mediavault.core.errors import NotFoundError, StorageBackendError
from mediavault.services.drivers.base import Source, StorageDriver, read_source

logger = logging.getLogger(__name__)

MISSING_CODES = {"404", "nosuchkey", "notfound"}
MISSING_BUCKET_CODES = {"404", "nosuchbucket", "notfound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", "")).lower()


class S3Driver(StorageDriver):
    """S3-compatible object store (AWS S3, Cloudflare R2, Backblaze B2)."""

    provider = "s3"

    def __init__(
        self,
        *,
        bucket: str,
        endpoint_url: str | None = None,
        region: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        public_base_url: str | None = None,
        client=None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url or None
        self.region = region or "us-east-1"
        self.public_base_url = (public_base_url or "").rstrip("/") or None
        self.client = client or boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=self.region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        self._bucket_checked = False

    def ensure_bucket(self) -> None:
        if self._bucket_checked:
            return

        try:
            self.client.head_bucket(Bucket=self.bucket)
            self._bucket_checked = True
            return
        except ClientError as exc:
            if _error_code(exc) not in MISSING_BUCKET_CODES:
                raise StorageBackendError(f"Cannot reach bucket {self.bucket}", reason=exc) from exc
        except BotoCoreError as exc:
            raise StorageBackendError(f"Cannot reach bucket {self.bucket}", reason=exc) from exc

        create_args = {"Bucket": self.bucket}
        if self.region and self.region != "us-east-1":
            create_args["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self.client.create_bucket(**create_args)
        except (BotoCoreError, ClientError) as exc:
            raise StorageBackendError(f"Cannot create bucket {self.bucket}", reason=exc) from exc
        self._bucket_checked = True

    def put(self, source: Source, path: str, *, content_type: str | None = None) -> None:
        self.ensure_bucket()
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.client.upload_fileobj(
                Fileobj=io.BytesIO(read_source(source)),
                Bucket=self.bucket,
                Key=path,
                ExtraArgs=extra,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageBackendError(f"Upload to {self.bucket}/{path} failed", reason=exc) from exc

    def get(self, path: str) -> bytes:
        self.ensure_bucket()
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if _error_code(exc) in MISSING_CODES:
                raise NotFoundError(f"Not found in {self.bucket}: {path}") from exc
            raise StorageBackendError(f"Download of {self.bucket}/{path} failed", reason=exc) from exc
        except BotoCoreError as exc:
            raise StorageBackendError(f"Download of {self.bucket}/{path} failed", reason=exc) from exc
        return obj["Body"].read()

    def delete(self, path: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=path)
        except (BotoCoreError, ClientError) as exc:
            raise StorageBackendError(f"Delete of {self.bucket}/{path} failed", reason=exc) from exc

    def exists(self, path: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if _error_code(exc) in MISSING_CODES:
                return False
            raise StorageBackendError(f"Lookup of {self.bucket}/{path} failed", reason=exc) from exc
        except BotoCoreError as exc:
            raise StorageBackendError(f"Lookup of {self.bucket}/{path} failed", reason=exc) from exc
        return True

    def public_url(self, path: str) -> str | None:
        if self.public_base_url:
            return f"{self.public_base_url}/{path}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{path}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"
