"""S3-compatible object storage for generated artifacts."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import mimetypes
from pathlib import PurePosixPath
import re
from typing import Any, Optional
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError
import httpx

from radio444.core.config import get_settings
from radio444.core.logger import get_logger


logger = get_logger("radio444.storage.objects")

_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._-]+")


class ObjectStorageError(RuntimeError):
    """Raised when an artifact cannot be copied into the bucket."""


@dataclass(frozen=True)
class StoredObject:
    key: str
    public_url: str
    content_type: str
    size_bytes: int


def _safe_segment(value: str) -> str:
    cleaned = _SAFE_SEGMENT.sub("-", value.strip()).strip("-.")
    return cleaned or "file"


def build_object_key(*, user_id: str, kind: str, name: str) -> str:
    return "/".join([_safe_segment(user_id), _safe_segment(kind), _safe_segment(name)])


def guess_extension(url: str, default: str = ".bin") -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    if suffix and len(suffix) <= 6:
        return suffix
    return default


class S3ObjectStorage:
    def __init__(
        self,
        *,
        bucket: str,
        endpoint_url: str = "",
        access_key_id: str = "",
        secret_access_key: str = "",
        region: str = "auto",
        public_base_url: str = "",
        download_timeout_seconds: int = 60,
        client: Optional[Any] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._bucket = bucket
        self._public_base_url = public_base_url.rstrip("/")
        self._download_timeout_seconds = max(1, download_timeout_seconds)
        self._http_client = http_client
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            region_name=region or None,
        )

    def public_url(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{key}"
        return f"s3://{self._bucket}/{key}"

    def put_bytes(self, *, key: str, data: bytes, content_type: str) -> StoredObject:
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStorageError(f"object_put_failed key={key}") from exc
        return StoredObject(
            key=key,
            public_url=self.public_url(key),
            content_type=content_type,
            size_bytes=len(data),
        )

    def _download(self, url: str) -> httpx.Response:
        if self._http_client is not None:
            return self._http_client.get(url)
        with httpx.Client(timeout=self._download_timeout_seconds, follow_redirects=True) as client:
            return client.get(url)

    def copy_from_url(self, *, url: str, key: str) -> StoredObject:
        try:
            response = self._download(url)
        except httpx.HTTPError as exc:
            raise ObjectStorageError(f"artifact_download_failed url={url}") from exc
        if response.status_code < 200 or response.status_code >= 300:
            raise ObjectStorageError(f"artifact_download_failed status={response.status_code}")

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type:
            content_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
        stored = self.put_bytes(key=key, data=response.content, content_type=content_type)
        logger.info("artifact_copied", key=key, size_bytes=stored.size_bytes, content_type=content_type)
        return stored

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStorageError(f"object_delete_failed key={key}") from exc


@lru_cache(maxsize=1)
def get_object_storage() -> Optional[S3ObjectStorage]:
    """Configured bucket client, or None when object storage is disabled."""

    settings = get_settings()
    if not settings.object_storage_enabled:
        return None
    return S3ObjectStorage(
        bucket=settings.s3_bucket,
        endpoint_url=settings.s3_endpoint_url,
        access_key_id=settings.s3_access_key_id,
        secret_access_key=settings.s3_secret_access_key,
        region=settings.s3_region,
        public_base_url=settings.s3_public_base_url,
        download_timeout_seconds=settings.object_download_timeout_seconds,
    )


def reset_object_storage_cache() -> None:
    get_object_storage.cache_clear()
