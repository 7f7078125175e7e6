"""Supabase Storage client abstraction.

Holds recorded audio messages. The object is uploaded server-side with the
service key and referenced by its public URL, which becomes the message
content.
"""

from abc import ABC, abstractmethod

import httpx

from companion.logging import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class StorageClientBase(ABC):
    """Abstract base class for storage client implementations."""

    @abstractmethod
    def upload_object(self, path: str, content: bytes, *, content_type: str) -> None:
        """Upload bytes to the given path.

        Args:
            path: Storage path inside the bucket (e.g., "chats/{id}/{uuid}.webm").
            content: Object bytes.
            content_type: MIME type stored with the object.

        Raises:
            StorageError: If the upload fails.
        """
        ...

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Return the public URL of an object."""
        ...

    @abstractmethod
    def delete_object(self, path: str) -> None:
        """Delete an object. Best-effort: logs errors but doesn't raise."""
        ...


class StorageClient(StorageClientBase):
    """Production Supabase Storage client.

    Uses httpx for HTTP operations against the Supabase Storage API.
    """

    def __init__(self, supabase_url: str, service_key: str, bucket: str = "chat-audio"):
        self._base_url = supabase_url.rstrip("/")
        self._bucket = bucket
        self._storage_url = f"{self._base_url}/storage/v1"
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def upload_object(self, path: str, content: bytes, *, content_type: str) -> None:
        url = f"{self._storage_url}/object/{self._bucket}/{path}"

        try:
            with httpx.Client() as client:
                response = client.post(
                    url,
                    headers={**self._headers, "Content-Type": content_type, "x-upsert": "false"},
                    content=content,
                    timeout=30.0,
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to upload object: {e}", code="E_UPLOAD_FAILED") from e

        if response.status_code not in (200, 201):
            raise StorageError(
                f"Failed to upload object: {response.status_code} {response.text}",
                code="E_UPLOAD_FAILED",
            )

    def public_url(self, path: str) -> str:
        return f"{self._storage_url}/object/public/{self._bucket}/{path}"

    def delete_object(self, path: str) -> None:
        url = f"{self._storage_url}/object/{self._bucket}/{path}"

        try:
            with httpx.Client() as client:
                response = client.delete(url, headers=self._headers, timeout=30.0)
            if response.status_code not in (200, 204, 404):
                logger.warning("storage_delete_failed", status_code=response.status_code)
        except httpx.HTTPError as e:
            logger.warning("storage_delete_error", error=str(e))


class FakeStorageClient(StorageClientBase):
    """Fake storage client for testing without real Supabase.

    Stores files in memory and provides deterministic URLs.
    """

    def __init__(self, fail_uploads: bool = False):
        self._objects: dict[str, tuple[bytes, str]] = {}  # path -> (content, content_type)
        self.fail_uploads = fail_uploads

    def upload_object(self, path: str, content: bytes, *, content_type: str) -> None:
        if self.fail_uploads:
            raise StorageError("Fake upload failure", code="E_UPLOAD_FAILED")
        self._objects[path] = (content, content_type)

    def public_url(self, path: str) -> str:
        return f"https://fake-storage.test/public/{path}"

    def delete_object(self, path: str) -> None:
        self._objects.pop(path, None)

    # Test helper methods

    def get_object(self, path: str) -> bytes | None:
        """Get object content directly (test helper)."""
        if path not in self._objects:
            return None
        return self._objects[path][0]

    def paths(self) -> list[str]:
        """All stored paths (test helper)."""
        return sorted(self._objects)


def get_storage_client(settings) -> StorageClientBase:
    """Get the configured storage client.

    Returns:
        StorageClient if SUPABASE_URL and SUPABASE_SERVICE_KEY are set,
        FakeStorageClient otherwise (local dev / tests).
    """
    if settings.supabase_url and settings.supabase_service_key:
        return StorageClient(
            supabase_url=settings.supabase_url,
            service_key=settings.supabase_service_key,
            bucket=settings.audio_bucket,
        )

    return FakeStorageClient()
