"""Object storage backends for transcoded outputs.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
Stored objects are addressed by key and served from a public base URL
(CDN, bucket website or endpoint), since HLS players fetch segments
directly.
"""

import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from hlsforge.core.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    public_url: Optional[str] = None
    public_read: bool = True
    local_path: str = "./storage"
    timeout_seconds: int = 60

    @classmethod
    def from_settings(cls, settings) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            public_url=settings.STORAGE_PUBLIC_URL,
            public_read=settings.STORAGE_PUBLIC_READ,
            local_path=settings.LOCAL_STORAGE_PATH,
            timeout_seconds=settings.STORAGE_TIMEOUT_SECONDS,
        )


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    Backends report failures through ``StorageResult.success`` rather than
    raising, so callers decide whether a failed object is fatal.
    """

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        """Store ``data`` under ``key``."""

    @abstractmethod
    def put_file(self, file_path: str, key: str, content_type: str = "application/octet-stream") -> StorageResult:
        """Store the contents of a local file under ``key``."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if an object exists."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Contents of an object, or None if it does not exist."""

    @abstractmethod
    def list_keys(self, prefix: str = "") -> list[str]:
        """Keys of every object under ``prefix``.

        Raises:
            StorageError: If the listing itself fails
        """

    @abstractmethod
    def get_url(self, key: str) -> str:
        """Public URL of an object."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_url = config.public_url

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            dest_path.write_bytes(data)
            return StorageResult(success=True, key=key, url=self.get_url(key), file_size=len(data))
        except OSError as e:
            return StorageResult(success=False, key=key, url="", error_message=str(e))

    def put_file(self, file_path: str, key: str, content_type: str = "application/octet-stream") -> StorageResult:
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file_path, dest_path)
            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key),
                file_size=dest_path.stat().st_size,
            )
        except OSError as e:
            return StorageResult(success=False, key=key, url="", error_message=str(e))

    def exists(self, key: str) -> bool:
        return self._get_full_path(key).exists()

    def get(self, key: str) -> Optional[bytes]:
        path = self._get_full_path(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def list_keys(self, prefix: str = "") -> list[str]:
        root = self._get_full_path(prefix) if prefix else self.base_path
        if not root.is_dir():
            return []
        return sorted(
            p.relative_to(self.base_path).as_posix() for p in root.rglob("*") if p.is_file()
        )

    def get_url(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url.rstrip('/')}/{key}"
        return self._get_full_path(key).absolute().as_uri()


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig, client=None):
        self.config = config
        self._client = client

    def _get_client(self):
        """Get or create the S3 client."""
        if self._client is None:
            boto_config = BotoConfig(
                connect_timeout=self.config.timeout_seconds,
                read_timeout=self.config.timeout_seconds,
                retries={"max_attempts": 3, "mode": "standard"},
                signature_version="s3v4",
                # MinIO and most S3-compatible servers need path-style URLs
                s3={"addressing_style": "path"} if self.config.endpoint_url else None,
            )
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "config": boto_config,
            }
            if self.config.access_key and self.config.secret_key:
                client_kwargs["aws_access_key_id"] = self.config.access_key
                client_kwargs["aws_secret_access_key"] = self.config.secret_key
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
            self._client = boto3.client(**client_kwargs)
        return self._client

    def _put_object(self, key: str, body, content_type: str) -> dict:
        params = {
            "Bucket": self.config.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
        }
        if self.config.public_read:
            params["ACL"] = "public-read"
        return self._get_client().put_object(**params)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        try:
            response = self._put_object(key, data, content_type)
        except (BotoCoreError, ClientError) as e:
            return StorageResult(success=False, key=key, url="", error_message=str(e))
        return StorageResult(
            success=True,
            key=key,
            url=self.get_url(key),
            file_size=len(data),
            etag=response.get("ETag", "").strip('"'),
        )

    def put_file(self, file_path: str, key: str, content_type: str = "application/octet-stream") -> StorageResult:
        try:
            with open(file_path, "rb") as f:
                response = self._put_object(key, f, content_type)
            file_size = Path(file_path).stat().st_size
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult(success=False, key=key, url="", error_message=str(e))
        return StorageResult(
            success=True,
            key=key,
            url=self.get_url(key),
            file_size=file_size,
            etag=response.get("ETag", "").strip('"'),
        )

    def exists(self, key: str) -> bool:
        try:
            self._get_client().head_object(Bucket=self.config.bucket, Key=key)
            return True
        except ClientError:
            return False

    def get(self, key: str) -> Optional[bytes]:
        try:
            response = self._get_client().get_object(Bucket=self.config.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise StorageError(f"Failed to read {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def list_keys(self, prefix: str = "") -> list[str]:
        params = {"Bucket": self.config.bucket}
        if prefix:
            params["Prefix"] = prefix
        keys = []
        try:
            paginator = self._get_client().get_paginator("list_objects_v2")
            for page in paginator.paginate(**params):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list objects: {e}") from e
        return keys

    def get_url(self, key: str) -> str:
        if self.config.public_url:
            return f"{self.config.public_url.rstrip('/')}/{key}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
        region = self.config.region or "us-east-1"
        return f"https://{self.config.bucket}.s3.{region}.amazonaws.com/{key}"


def create_storage(config: StorageConfig) -> StorageBackend:
    """Build the backend named by ``config.backend``."""
    backend = config.backend.lower()
    if backend == "local":
        return LocalStorage(config)
    if backend in ("s3", "minio"):
        if not config.bucket:
            raise ValueError("STORAGE_BUCKET is required for S3 storage")
        return S3Storage(config)
    raise ValueError(f"Unknown storage backend: {config.backend}")
