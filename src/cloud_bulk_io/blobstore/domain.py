"""Immutable data models for blobstore listings and multipart uploads."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional


class StorageType(str, Enum):
    """Kind of entry returned by a listing."""

    BLOB = "blob"
    FOLDER = "folder"
    RELATIVE_PATH = "relative_path"
    CONTAINER = "container"


@dataclass(frozen=True)
class StorageMetadata:
    """One entry of a container listing."""

    type: StorageType
    name: str
    size: Optional[int] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None


@dataclass(frozen=True)
class PageSet:
    """One page of a listing and the marker of the next page, if any."""

    entries: tuple[StorageMetadata, ...] = ()
    next_marker: Optional[str] = None

    def __iter__(self) -> Iterator[StorageMetadata]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class ListContainerOptions:
    """Scope and paging of a container listing.

    Options are immutable; the builder methods return modified copies.
    """

    dir: Optional[str] = None
    marker: Optional[str] = None
    recursive: bool = False
    max_results: Optional[int] = None

    def in_directory(self, directory: str) -> "ListContainerOptions":
        """Scope to a directory, restarting pagination."""
        return replace(self, dir=directory, marker=None)

    def after_marker(self, marker: str) -> "ListContainerOptions":
        return replace(self, marker=marker)

    def as_recursive(self) -> "ListContainerOptions":
        return replace(self, recursive=True)

    def with_max_results(self, max_results: int) -> "ListContainerOptions":
        if max_results <= 0:
            raise ValueError("max_results must be positive")
        return replace(self, max_results=max_results)


ListContainerOptions.NONE = ListContainerOptions()  # type: ignore[attr-defined]


def recursive() -> ListContainerOptions:
    return ListContainerOptions(recursive=True)


def in_directory(directory: str) -> ListContainerOptions:
    return ListContainerOptions(dir=directory)


@dataclass(frozen=True)
class MultipartUpload:
    """An initiated, not yet completed, multipart upload."""

    container: str
    name: str
    id: str
    content_type: Optional[str] = None
    user_metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MultipartPart:
    """A part accepted by the store."""

    part_number: int
    size: int
    etag: str
