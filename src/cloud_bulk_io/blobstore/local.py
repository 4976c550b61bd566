"""Blob store over a local storage strategy (memory or filesystem)."""

import hashlib
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from cloud_bulk_io.blobstore.base import (
    BlobStore,
    ContainerNotFoundError,
    KeyNotFoundError,
    MultipartUploadError,
)
from cloud_bulk_io.blobstore.domain import (
    ListContainerOptions,
    MultipartPart,
    MultipartUpload,
    PageSet,
    StorageMetadata,
    StorageType,
)
from cloud_bulk_io.http.payloads import Payload
from cloud_bulk_io.utils.logging import get_logger
from cloud_bulk_io.utils.validators import validate_container_name, validate_key

logger = get_logger(__name__)

SEPARATOR = "/"
DEFAULT_PAGE_SIZE = 1000
GIB = 1024 * 1024 * 1024


class StorageStrategy(ABC):
    """Primitive operations a local blob store is built from."""

    @abstractmethod
    def container_exists(self, container: str) -> bool:
        pass

    @abstractmethod
    def create_container(self, container: str) -> bool:
        """Create a container.

        Returns:
            False if it already existed.
        """
        pass

    @abstractmethod
    def delete_container(self, container: str) -> None:
        pass

    @abstractmethod
    def list_keys(self, container: str) -> Iterable[str]:
        """Keys of blobs and of directory markers in a container."""
        pass

    @abstractmethod
    def blob_exists(self, container: str, key: str) -> bool:
        pass

    @abstractmethod
    def get_blob(self, container: str, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    def get_metadata(self, container: str, key: str) -> Optional[StorageMetadata]:
        pass

    @abstractmethod
    def put_blob(self, container: str, key: str, data: bytes) -> str:
        """Store a blob, replacing any previous one.

        Returns:
            ETag of the stored blob.
        """
        pass

    @abstractmethod
    def remove_blob(self, container: str, key: str) -> None:
        pass

    @abstractmethod
    def directory_exists(self, container: str, directory: str) -> bool:
        pass

    @abstractmethod
    def create_directory(self, container: str, directory: str) -> None:
        pass

    @abstractmethod
    def remove_directory(self, container: str, directory: str) -> None:
        """Remove a directory marker, if there is one."""
        pass


def _etag(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def _blob_metadata(key: str, data: bytes) -> StorageMetadata:
    return StorageMetadata(
        type=StorageType.BLOB,
        name=key,
        size=len(data),
        etag=_etag(data),
        last_modified=datetime.now(timezone.utc),
    )


class LocalBlobStore(BlobStore):
    """Blob store whose data lives in a local storage strategy.

    Listings follow object-store delimiter semantics: without recursion,
    keys below a nested directory are collapsed into one RELATIVE_PATH
    entry; directory markers are reported as FOLDER entries.
    """

    def __init__(
        self,
        strategy: StorageStrategy,
        page_size: int = DEFAULT_PAGE_SIZE,
        minimum_part_size: int = 1,
        maximum_part_size: int = 5 * GIB,
        maximum_parts: int = 10000,
    ) -> None:
        """Initialize blob store.

        Args:
            strategy: Storage primitives.
            page_size: Maximum entries per listing page.
            minimum_part_size: Smallest multipart part accepted.
            maximum_part_size: Largest multipart part accepted.
            maximum_parts: Most parts one upload may have.
        """
        self.strategy = strategy
        self.page_size = page_size
        self._minimum_part_size = minimum_part_size
        self._maximum_part_size = maximum_part_size
        self._maximum_parts = maximum_parts
        self._uploads: dict[str, dict[int, bytes]] = {}
        self._uploads_lock = threading.Lock()

    def create_container(self, container: str) -> bool:
        validate_container_name(container)
        created = self.strategy.create_container(container)
        if created:
            logger.debug("container_created", container=container)
        return created

    def container_exists(self, container: str) -> bool:
        return self.strategy.container_exists(container)

    def delete_container(self, container: str) -> None:
        self._check_container(container)
        self.strategy.delete_container(container)

    def put_blob(self, container: str, name: str, payload: Payload) -> str:
        self._check_container(container)
        validate_key(name)
        data = payload.open_stream().read()
        return self.strategy.put_blob(container, name, data)

    def get_blob(self, container: str, name: str) -> Optional[bytes]:
        self._check_container(container)
        return self.strategy.get_blob(container, name)

    def blob_exists(self, container: str, name: str) -> bool:
        self._check_container(container)
        return self.strategy.blob_exists(container, name)

    def blob_metadata(self, container: str, name: str) -> StorageMetadata:
        """Metadata of one blob.

        Raises:
            KeyNotFoundError: If there is no such blob.
        """
        self._check_container(container)
        metadata = self.strategy.get_metadata(container, name)
        if metadata is None:
            raise KeyNotFoundError(f"Blob not found: {container}/{name}")
        return metadata

    def remove_blob(self, container: str, name: str) -> None:
        self._check_container(container)
        self.strategy.remove_blob(container, name)

    def create_directory(self, container: str, directory: str) -> None:
        self._check_container(container)
        validate_key(directory)
        self.strategy.create_directory(container, directory.rstrip(SEPARATOR))

    def delete_directory(self, container: str, directory: str) -> None:
        self._check_container(container)
        directory = directory.rstrip(SEPARATOR)
        prefix = directory + SEPARATOR
        for key in list(self.strategy.list_keys(container)):
            if key.startswith(prefix) and self.strategy.blob_exists(container, key):
                self.strategy.remove_blob(container, key)
        self.strategy.remove_directory(container, directory)

    def list(
        self, container: str, options: ListContainerOptions = ListContainerOptions()
    ) -> PageSet:
        self._check_container(container)

        contents: dict[str, StorageMetadata] = {}
        for key in self.strategy.list_keys(container):
            metadata = self.strategy.get_metadata(container, key)
            if metadata is None:
                if not self.strategy.directory_exists(container, key):
                    # removed since list_keys
                    continue
                metadata = StorageMetadata(type=StorageType.FOLDER, name=key)
            contents[key] = metadata

        prefix = ""
        if options.dir:
            prefix = options.dir.rstrip(SEPARATOR) + SEPARATOR
            contents = {
                name: md
                for name, md in contents.items()
                if name.startswith(prefix) and name != prefix
            }

        if not options.recursive:
            common_prefixes: set[str] = set()
            direct: dict[str, StorageMetadata] = {}
            for name, md in contents.items():
                rest = name[len(prefix):]
                if SEPARATOR in rest:
                    common_prefixes.add(prefix + rest.split(SEPARATOR, 1)[0])
                else:
                    direct[name] = md
            for name in common_prefixes:
                direct.setdefault(name, StorageMetadata(type=StorageType.RELATIVE_PATH, name=name))
            contents = direct

        names = sorted(contents)
        if options.marker is not None:
            names = [name for name in names if name > options.marker]

        limit = options.max_results or self.page_size
        page = names[:limit]
        next_marker = page[-1] if len(names) > limit else None
        return PageSet(tuple(contents[name] for name in page), next_marker)

    @property
    def minimum_multipart_part_size(self) -> int:
        return self._minimum_part_size

    @property
    def maximum_multipart_part_size(self) -> int:
        return self._maximum_part_size

    @property
    def maximum_number_of_parts(self) -> int:
        return self._maximum_parts

    def initiate_multipart_upload(
        self, container: str, name: str, content_type: Optional[str] = None
    ) -> MultipartUpload:
        self._check_container(container)
        validate_key(name)
        upload = MultipartUpload(
            container=container, name=name, id=uuid.uuid4().hex, content_type=content_type
        )
        with self._uploads_lock:
            self._uploads[upload.id] = {}
        logger.debug("multipart_initiated", container=container, name=name, upload_id=upload.id)
        return upload

    def upload_multipart_part(
        self, upload: MultipartUpload, part_number: int, payload: Payload
    ) -> MultipartPart:
        if not 1 <= part_number <= self._maximum_parts:
            raise MultipartUploadError(
                f"Part number {part_number} outside 1..{self._maximum_parts}"
            )
        data = payload.open_stream().read()
        with self._uploads_lock:
            parts = self._uploads.get(upload.id)
            if parts is None:
                raise MultipartUploadError(f"Unknown upload {upload.id}")
            parts[part_number] = data
        return MultipartPart(part_number=part_number, size=len(data), etag=_etag(data))

    def complete_multipart_upload(
        self, upload: MultipartUpload, parts: Sequence[MultipartPart]
    ) -> str:
        with self._uploads_lock:
            staged = self._uploads.pop(upload.id, None)
        if staged is None:
            raise MultipartUploadError(f"Unknown upload {upload.id}")

        ordered = sorted(parts, key=lambda p: p.part_number)
        chunks = []
        for part in ordered:
            data = staged.get(part.part_number)
            if data is None or _etag(data) != part.etag:
                raise MultipartUploadError(
                    f"Part {part.part_number} of upload {upload.id} is missing or changed"
                )
            chunks.append(data)

        self.strategy.put_blob(upload.container, upload.name, b"".join(chunks))
        digest = hashlib.md5(b"".join(bytes.fromhex(p.etag) for p in ordered)).hexdigest()
        etag = f"{digest}-{len(parts)}"
        logger.debug(
            "multipart_completed",
            container=upload.container,
            name=upload.name,
            parts=len(parts),
            etag=etag,
        )
        return etag

    def abort_multipart_upload(self, upload: MultipartUpload) -> None:
        with self._uploads_lock:
            self._uploads.pop(upload.id, None)
        logger.debug("multipart_aborted", upload_id=upload.id)

    def _check_container(self, container: str) -> None:
        if not self.strategy.container_exists(container):
            raise ContainerNotFoundError(f"Container not found: {container}")
