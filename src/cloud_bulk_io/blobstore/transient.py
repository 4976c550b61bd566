"""In-memory storage strategy."""

import threading
from typing import Iterable, Optional

from cloud_bulk_io.blobstore.domain import StorageMetadata
from cloud_bulk_io.blobstore.local import LocalBlobStore, StorageStrategy, _blob_metadata


class TransientStorageStrategy(StorageStrategy):
    """Keeps containers in process memory. Safe for concurrent use."""

    def __init__(self) -> None:
        self._blobs: dict[str, dict[str, tuple[bytes, StorageMetadata]]] = {}
        self._directories: dict[str, set[str]] = {}
        self._lock = threading.RLock()

    def container_exists(self, container: str) -> bool:
        with self._lock:
            return container in self._blobs

    def create_container(self, container: str) -> bool:
        with self._lock:
            if container in self._blobs:
                return False
            self._blobs[container] = {}
            self._directories[container] = set()
            return True

    def delete_container(self, container: str) -> None:
        with self._lock:
            self._blobs.pop(container, None)
            self._directories.pop(container, None)

    def list_keys(self, container: str) -> Iterable[str]:
        with self._lock:
            return list(self._blobs.get(container, {})) + sorted(
                self._directories.get(container, set())
            )

    def blob_exists(self, container: str, key: str) -> bool:
        with self._lock:
            return key in self._blobs.get(container, {})

    def get_blob(self, container: str, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._blobs.get(container, {}).get(key)
        return entry[0] if entry is not None else None

    def get_metadata(self, container: str, key: str) -> Optional[StorageMetadata]:
        with self._lock:
            entry = self._blobs.get(container, {}).get(key)
        return entry[1] if entry is not None else None

    def put_blob(self, container: str, key: str, data: bytes) -> str:
        metadata = _blob_metadata(key, data)
        with self._lock:
            self._blobs[container][key] = (data, metadata)
        return metadata.etag or ""

    def remove_blob(self, container: str, key: str) -> None:
        with self._lock:
            self._blobs.get(container, {}).pop(key, None)

    def directory_exists(self, container: str, directory: str) -> bool:
        with self._lock:
            return directory in self._directories.get(container, set())

    def create_directory(self, container: str, directory: str) -> None:
        with self._lock:
            self._directories[container].add(directory)

    def remove_directory(self, container: str, directory: str) -> None:
        with self._lock:
            self._directories.get(container, set()).discard(directory)


def transient_blob_store(**kwargs) -> LocalBlobStore:
    """Create an empty in-memory blob store.

    Keyword arguments are passed to LocalBlobStore.
    """
    return LocalBlobStore(TransientStorageStrategy(), **kwargs)
