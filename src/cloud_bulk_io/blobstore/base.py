"""Abstract base class for blob stores."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Sequence

from cloud_bulk_io.blobstore.domain import (
    ListContainerOptions,
    MultipartPart,
    MultipartUpload,
    PageSet,
    StorageType,
    recursive,
)
from cloud_bulk_io.http.payloads import Payload

if TYPE_CHECKING:
    from cloud_bulk_io.config import BlobStoreSettings


class BlobStore(ABC):
    """Abstract interface for blob storage operations."""

    @abstractmethod
    def list(
        self, container: str, options: ListContainerOptions = ListContainerOptions()
    ) -> PageSet:
        """List one page of a container.

        Args:
            container: Container name.
            options: Directory scope, recursion and pagination marker.

        Returns:
            PageSet with the entries and the next marker, if any.

        Raises:
            ContainerNotFoundError: If the container does not exist.
            BlobStoreError: If listing fails.
        """
        pass

    @abstractmethod
    def remove_blob(self, container: str, name: str) -> None:
        """Delete a blob. Deleting a missing blob is not an error.

        Raises:
            BlobStoreError: If deletion fails.
        """
        pass

    @abstractmethod
    def delete_directory(self, container: str, directory: str) -> None:
        """Delete a directory entry and any directory marker it has.

        Raises:
            BlobStoreError: If deletion fails.
        """
        pass

    @abstractmethod
    def initiate_multipart_upload(
        self, container: str, name: str, content_type: Optional[str] = None
    ) -> MultipartUpload:
        """Start a multipart upload.

        Raises:
            ContainerNotFoundError: If the container does not exist.
        """
        pass

    @abstractmethod
    def upload_multipart_part(
        self, upload: MultipartUpload, part_number: int, payload: Payload
    ) -> MultipartPart:
        """Upload one part; part numbers start at 1.

        Raises:
            MultipartUploadError: If the upload is unknown or the part is rejected.
        """
        pass

    @abstractmethod
    def complete_multipart_upload(
        self, upload: MultipartUpload, parts: Sequence[MultipartPart]
    ) -> str:
        """Assemble uploaded parts into a blob.

        Returns:
            ETag of the assembled blob.

        Raises:
            MultipartUploadError: If the upload is unknown or parts are missing.
        """
        pass

    @abstractmethod
    def abort_multipart_upload(self, upload: MultipartUpload) -> None:
        """Discard an upload and its parts."""
        pass

    def count_blobs(
        self, container: str, options: Optional[ListContainerOptions] = None
    ) -> int:
        """Count blobs reachable with the given options (recursive by default)."""
        options = options or recursive()
        count = 0
        while True:
            page = self.list(container, options)
            count += sum(1 for md in page if md.type == StorageType.BLOB)
            if page.next_marker is None:
                return count
            options = options.after_marker(page.next_marker)

    def clear_container(
        self,
        container: str,
        options: Optional[ListContainerOptions] = None,
        settings: Optional["BlobStoreSettings"] = None,
    ) -> None:
        """Delete everything reachable with the given options (recursive by default).

        Raises:
            BulkOperationError: If deletes kept failing.
        """
        from cloud_bulk_io.deleter import BulkDeleter

        with BulkDeleter.from_settings(self, settings) as deleter:
            deleter.execute(container, options or recursive())

    @property
    @abstractmethod
    def minimum_multipart_part_size(self) -> int:
        pass

    @property
    @abstractmethod
    def maximum_multipart_part_size(self) -> int:
        pass

    @property
    @abstractmethod
    def maximum_number_of_parts(self) -> int:
        pass


class BlobStoreError(Exception):
    """Base exception for blob store operations."""

    pass


class ContainerNotFoundError(BlobStoreError):
    """Container does not exist."""

    pass


class KeyNotFoundError(BlobStoreError):
    """Blob does not exist."""

    pass


class BulkOperationError(BlobStoreError):
    """A bulk operation did not succeed within its allowed attempts."""

    pass


class MultipartUploadError(BlobStoreError):
    """A multipart upload could not be completed."""

    pass
