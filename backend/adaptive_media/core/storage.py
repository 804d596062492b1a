"""Universal storage module supporting multiple backends.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
Storage instances are constructed explicitly and passed to their consumers.
"""

import asyncio
import os
import shutil
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from adaptive_media.core.config import Settings, settings as default_settings
from adaptive_media.core.signing import UrlSigner


class StorageError(Exception):
    """Raised when the storage backend fails for reasons other than a missing object."""
    pass


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class ObjectInfo:
    """Metadata of a stored object."""
    key: str
    size: int
    content_type: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    local_base_url: str = "http://localhost:8000/storage"
    signing_secret: str = ""

    @classmethod
    def from_settings(cls, s: Settings) -> "StorageConfig":
        return cls(
            backend=s.STORAGE_BACKEND,
            bucket=s.STORAGE_BUCKET,
            region=s.STORAGE_REGION,
            access_key=s.STORAGE_ACCESS_KEY,
            secret_key=s.STORAGE_SECRET_KEY,
            endpoint_url=s.STORAGE_ENDPOINT_URL,
            use_ssl=s.STORAGE_USE_SSL,
            local_path=s.LOCAL_STORAGE_PATH,
            local_base_url=s.LOCAL_STORAGE_BASE_URL,
            signing_secret=s.SIGNING_SECRET_KEY,
        )


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file to storage, overwriting any existing object."""

    @abstractmethod
    def download(self, key: str, destination: str) -> bool:
        """Download an object to a local path. False when it does not exist."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete an object from storage."""

    @abstractmethod
    def head(self, key: str) -> Optional[ObjectInfo]:
        """Object metadata, or None when the object does not exist."""

    @abstractmethod
    def get_url(self, key: str, expires_in: int = 3600) -> str:
        """Time-limited signed URL for an object."""

    @abstractmethod
    def list_files(self, prefix: str = "") -> list[str]:
        """List object keys with given prefix."""

    def exists(self, key: str) -> bool:
        return self.head(key) is not None


class LocalStorage(StorageBackend):
    """Local filesystem storage backend.

    Objects are served from ``local_base_url`` with HMAC-signed query strings.
    """

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.base_url = config.local_base_url
        self.signer = UrlSigner(config.signing_secret or "local-storage")

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file_path, dest_path)
            return StorageResult(success=True, key=key, file_size=dest_path.stat().st_size)
        except OSError as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def download(self, key: str, destination: str) -> bool:
        src_path = self._get_full_path(key)
        if not src_path.is_file():
            return False
        try:
            shutil.copyfile(src_path, destination)
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e
        return True

    def delete(self, key: str) -> bool:
        file_path = self._get_full_path(key)
        if file_path.exists():
            file_path.unlink()
            return True
        return False

    def head(self, key: str) -> Optional[ObjectInfo]:
        file_path = self._get_full_path(key)
        if not file_path.is_file():
            return None
        return ObjectInfo(key=key, size=file_path.stat().st_size)

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        return self.signer.sign(self.base_url, key, int(time.time()) + expires_in)

    def list_files(self, prefix: str = "") -> list[str]:
        search_path = self._get_full_path(prefix) if prefix else self.base_path
        if not search_path.exists():
            return []
        return [
            str(path.relative_to(self.base_path))
            for path in search_path.rglob("*")
            if path.is_file()
        ]


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self._client = None

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key or None,
                "aws_secret_access_key": self.config.secret_key or None,
            }

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )
                if not self.config.use_ssl:
                    client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        code = error.response.get("Error", {}).get("Code", "")
        return code in ("404", "NoSuchKey", "NotFound")

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            client = self._get_client()
            file_size = os.path.getsize(file_path)

            with open(file_path, "rb") as f:
                response = client.put_object(
                    Bucket=self.config.bucket,
                    Key=key,
                    Body=f,
                    ContentType=content_type,
                )

            return StorageResult(
                success=True,
                key=key,
                file_size=file_size,
                etag=response.get("ETag", "").strip('"'),
            )
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def download(self, key: str, destination: str) -> bool:
        try:
            self._get_client().download_file(self.config.bucket, key, destination)
            return True
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise StorageError(f"Failed to download {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to download {key}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
            return True
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def head(self, key: str) -> Optional[ObjectInfo]:
        try:
            response = self._get_client().head_object(Bucket=self.config.bucket, Key=key)
        except ClientError as e:
            if self._is_missing(e):
                return None
            raise StorageError(f"Failed to stat {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to stat {key}: {e}") from e
        return ObjectInfo(
            key=key,
            size=int(response.get("ContentLength", 0)),
            content_type=response.get("ContentType"),
        )

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        try:
            return self._get_client().generate_presigned_url(
                "get_object",
                Params={"Bucket": self.config.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to sign {key}: {e}") from e

    def list_files(self, prefix: str = "") -> list[str]:
        try:
            response = self._get_client().list_objects_v2(
                Bucket=self.config.bucket,
                Prefix=prefix,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to list {prefix}: {e}") from e
        return [obj["Key"] for obj in response.get("Contents", [])]


def create_backend(config: StorageConfig) -> StorageBackend:
    """Create the storage backend named by ``config.backend``."""
    backend_type = config.backend.lower()

    if backend_type == "local":
        return LocalStorage(config)
    elif backend_type in ("s3", "minio", "aws"):
        return S3Storage(config)
    else:
        raise ValueError(f"Unsupported storage backend: {backend_type}")


class StorageService:
    """Async wrapper running blocking backend calls in worker threads."""

    def __init__(self, backend: StorageBackend):
        self.backend = backend

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "StorageService":
        return cls(create_backend(StorageConfig.from_settings(s or default_settings)))

    async def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        return await asyncio.to_thread(self.backend.upload, file_path, key, content_type)

    async def download(self, key: str, destination: str) -> bool:
        return await asyncio.to_thread(self.backend.download, key, destination)

    async def head(self, key: str) -> Optional[ObjectInfo]:
        return await asyncio.to_thread(self.backend.head, key)

    async def get_url(self, key: str, expires_in: int = 3600) -> str:
        return await asyncio.to_thread(self.backend.get_url, key, expires_in)

    async def delete(self, key: str) -> bool:
        return await asyncio.to_thread(self.backend.delete, key)
