"""
Storage Abstraction Layer - The Bridge Pattern

Blob storage used to persist composite images and resolve displayable
URLs. LocalStorage serves development; RemoteStorage talks to a
Supabase-style object store over HTTP.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional

import httpx

from lookgen.core.config import settings
from lookgen.core.exceptions import StorageError
from lookgen.core.logging import get_logger

logger = get_logger(__name__)


def _clean_path(path: str) -> str:
    """Normalize an object path and refuse traversal outside the bucket."""
    parts = PurePosixPath(path.strip("/")).parts
    if not parts or any(part in ("..", ".") for part in parts):
        raise StorageError(f"Invalid storage path: {path!r}")
    return "/".join(parts)


class IStorage(ABC):
    """Interface for storage operations - The Bridge"""

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "image/jpeg",
        upsert: bool = False
    ) -> str:
        """
        Upload bytes to bucket/path.

        Returns:
            The stored object path, usable with get_public_url()
        """
        pass

    @abstractmethod
    async def download(self, bucket: str, path: str) -> bytes:
        """
        Read an object's bytes.

        Raises:
            StorageError: the object is missing or unreadable
        """
        pass

    @abstractmethod
    def get_public_url(self, bucket: str, path: str) -> str:
        """Get a displayable URL for an uploaded object."""
        pass

    @abstractmethod
    async def delete(self, bucket: str, path: str) -> bool:
        """Delete an object. Returns True if something was removed."""
        pass

    @abstractmethod
    async def exists(self, bucket: str, path: str) -> bool:
        """Check if an object exists."""
        pass


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development."""

    def __init__(self, base_path: str = "./data/storage", public_base_url: str = "/static/storage"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _file_path(self, bucket: str, path: str) -> Path:
        return self.base_path / _clean_path(bucket) / _clean_path(path)

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "image/jpeg",
        upsert: bool = False
    ) -> str:
        key = _clean_path(path)
        file_path = self._file_path(bucket, key)

        if file_path.exists() and not upsert:
            raise StorageError(f"Object already exists: {bucket}/{key}")

        file_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(file_path.write_bytes, data)

        logger.debug("storage_uploaded", bucket=bucket, path=key, size=len(data))
        return key

    async def download(self, bucket: str, path: str) -> bytes:
        file_path = self._file_path(bucket, path)
        if not file_path.exists():
            raise StorageError(f"Object not found: {bucket}/{path}")
        return await asyncio.to_thread(file_path.read_bytes)

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/{_clean_path(bucket)}/{_clean_path(path)}"

    async def delete(self, bucket: str, path: str) -> bool:
        file_path = self._file_path(bucket, path)
        if file_path.exists():
            file_path.unlink()
            return True
        return False

    async def exists(self, bucket: str, path: str) -> bool:
        return self._file_path(bucket, path).exists()


class RemoteStorage(IStorage):
    """Supabase-style object storage over HTTP."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        public_base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = api_url.rstrip("/")
        self.public_base_url = (public_base_url or f"{self.api_url}/storage/v1/object/public").rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers = {}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
            self._headers["apikey"] = api_key

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers=self._headers,
            transport=self._transport
        )

    def _object_url(self, bucket: str, path: str) -> str:
        return f"{self.api_url}/storage/v1/object/{_clean_path(bucket)}/{_clean_path(path)}"

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "image/jpeg",
        upsert: bool = False
    ) -> str:
        key = _clean_path(path)
        headers = {
            "Content-Type": content_type,
            "Cache-Control": "3600",
            "x-upsert": "true" if upsert else "false",
        }

        try:
            async with self._client() as client:
                response = await client.post(self._object_url(bucket, key), content=data, headers=headers)
        except httpx.HTTPError as e:
            raise StorageError(f"Upload failed: {e}") from e

        if response.status_code >= 400:
            raise StorageError(
                f"Upload failed: {response.status_code} {response.text[:200]}",
                details={"bucket": bucket, "path": key, "http_status": response.status_code}
            )

        logger.debug("storage_uploaded", bucket=bucket, path=key, size=len(data))
        return key

    async def download(self, bucket: str, path: str) -> bytes:
        try:
            async with self._client() as client:
                response = await client.get(self._object_url(bucket, path))
        except httpx.HTTPError as e:
            raise StorageError(f"Download failed: {e}") from e

        if response.status_code >= 400:
            raise StorageError(
                f"Download failed: {response.status_code}",
                details={"bucket": bucket, "path": path, "http_status": response.status_code}
            )
        return response.content

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/{_clean_path(bucket)}/{_clean_path(path)}"

    async def delete(self, bucket: str, path: str) -> bool:
        try:
            async with self._client() as client:
                response = await client.delete(self._object_url(bucket, path))
        except httpx.HTTPError as e:
            raise StorageError(f"Delete failed: {e}") from e
        return response.status_code < 400

    async def exists(self, bucket: str, path: str) -> bool:
        try:
            async with self._client() as client:
                response = await client.head(self._object_url(bucket, path))
        except httpx.HTTPError as e:
            raise StorageError(f"Exists check failed: {e}") from e
        return response.status_code == 200


class StorageFactory:
    """Factory for creating storage instances based on environment."""

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        """Get the appropriate storage implementation based on environment."""
        if cls._instance is None:
            if settings.ENVIRONMENT.upper() == "PROD" and settings.STORAGE_API_URL:
                cls._instance = RemoteStorage(
                    api_url=settings.STORAGE_API_URL,
                    api_key=settings.GENERATION_API_KEY,
                    public_base_url=settings.STORAGE_PUBLIC_BASE_URL,
                    timeout=settings.HTTP_TIMEOUT_SECONDS
                )
            else:
                cls._instance = LocalStorage(base_path=settings.LOCAL_STORAGE_PATH)

        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


def get_storage() -> IStorage:
    """Get the storage instance."""
    return StorageFactory.get_storage()
