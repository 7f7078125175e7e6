"""Storage module for Supabase Storage operations.

Provides:
- StorageClient for uploading recorded audio messages
- Path building utilities for consistent storage paths
"""

from companion.storage.client import (
    FakeStorageClient,
    StorageClient,
    StorageClientBase,
    StorageError,
    get_storage_client,
)
from companion.storage.paths import build_audio_path, get_audio_extension, normalize_mime

__all__ = [
    "StorageClient",
    "StorageClientBase",
    "StorageError",
    "FakeStorageClient",
    "get_storage_client",
    "build_audio_path",
    "get_audio_extension",
    "normalize_mime",
]
