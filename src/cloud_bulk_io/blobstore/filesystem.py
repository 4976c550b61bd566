"""Filesystem storage strategy: one directory per container."""

import hashlib
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from cloud_bulk_io.blobstore.domain import StorageMetadata, StorageType
from cloud_bulk_io.blobstore.local import SEPARATOR, LocalBlobStore, StorageStrategy
from cloud_bulk_io.utils.logging import get_logger

logger = get_logger(__name__)


class FilesystemStorageStrategy(StorageStrategy):
    """Stores blobs as files under ``base_dir/<container>/<key>``.

    Empty directories are reported as directory markers. Removing a blob
    also removes parent directories it leaves empty.
    """

    def __init__(self, base_dir: str | os.PathLike) -> None:
        self.base_dir = Path(base_dir)

    def _container_path(self, container: str) -> Path:
        return self.base_dir / container

    def _blob_path(self, container: str, key: str) -> Path:
        return self._container_path(container).joinpath(*key.split(SEPARATOR))

    def container_exists(self, container: str) -> bool:
        return self._container_path(container).is_dir()

    def create_container(self, container: str) -> bool:
        path = self._container_path(container)
        if path.is_dir():
            return False
        path.mkdir(parents=True, exist_ok=True)
        return True

    def delete_container(self, container: str) -> None:
        shutil.rmtree(self._container_path(container), ignore_errors=True)

    def list_keys(self, container: str) -> Iterable[str]:
        root = self._container_path(container)
        keys = []
        for dirpath, dirnames, filenames in os.walk(root):
            relative = Path(dirpath).relative_to(root)
            if relative != Path(".") and not dirnames and not filenames:
                keys.append(relative.as_posix())
            for filename in filenames:
                if filename.startswith(".tmp-"):
                    continue
                keys.append((relative / filename).as_posix())
        return keys

    def blob_exists(self, container: str, key: str) -> bool:
        return self._blob_path(container, key).is_file()

    def get_blob(self, container: str, key: str) -> Optional[bytes]:
        path = self._blob_path(container, key)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            return None

    def get_metadata(self, container: str, key: str) -> Optional[StorageMetadata]:
        path = self._blob_path(container, key)
        if not path.is_file():
            return None
        stat = path.stat()
        return StorageMetadata(
            type=StorageType.BLOB,
            name=key,
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def put_blob(self, container: str, key: str, data: bytes) -> str:
        path = self._blob_path(container, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return hashlib.md5(data).hexdigest()

    def remove_blob(self, container: str, key: str) -> None:
        path = self._blob_path(container, key)
        path.unlink(missing_ok=True)
        self._prune_empty_parents(container, path.parent)

    def directory_exists(self, container: str, directory: str) -> bool:
        return self._blob_path(container, directory).is_dir()

    def create_directory(self, container: str, directory: str) -> None:
        self._blob_path(container, directory).mkdir(parents=True, exist_ok=True)

    def remove_directory(self, container: str, directory: str) -> None:
        path = self._blob_path(container, directory)
        if path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
            self._prune_empty_parents(container, path.parent)

    def _prune_empty_parents(self, container: str, path: Path) -> None:
        root = self._container_path(container)
        while path != root and root in path.parents:
            try:
                path.rmdir()
            except OSError:
                # not empty, or removed concurrently by another delete
                return
            path = path.parent


def filesystem_blob_store(base_dir: str | os.PathLike, **kwargs) -> LocalBlobStore:
    """Create a blob store rooted at a local directory.

    Keyword arguments are passed to LocalBlobStore.
    """
    Path(base_dir).mkdir(parents=True, exist_ok=True)
    logger.debug("filesystem_store_opened", base_dir=str(base_dir))
    return LocalBlobStore(FilesystemStorageStrategy(base_dir), **kwargs)
