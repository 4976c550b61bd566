"""Request and response bodies."""

import hashlib
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional

from cloud_bulk_io.utils.logging import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class ContentMetadata:
    """Content headers that travel with a payload rather than a message."""

    content_length: Optional[int] = None
    content_type: Optional[str] = None
    content_md5: Optional[bytes] = None

    def to_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.content_type is not None:
            headers["Content-Type"] = self.content_type
        if self.content_length is not None:
            headers["Content-Length"] = str(self.content_length)
        return headers


class Payload(ABC):
    """Body of a request or response.

    A payload is either repeatable (backed by bytes, safe to send more
    than once) or a one-shot stream. Releasing a payload closes its
    stream; releasing twice is harmless.
    """

    def __init__(self, metadata: Optional[ContentMetadata] = None) -> None:
        self.metadata = metadata or ContentMetadata()
        self.released = False

    @property
    def content_length(self) -> Optional[int]:
        return self.metadata.content_length

    @property
    @abstractmethod
    def is_repeatable(self) -> bool:
        """Whether the payload can be sent more than once."""
        pass

    @abstractmethod
    def open_stream(self) -> BinaryIO:
        """Return a readable stream over the body."""
        pass

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        stream = self.open_stream()
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            yield chunk

    def release(self) -> None:
        """Close the underlying stream, logging instead of raising."""
        self.released = True


class BytesPayload(Payload):
    """Repeatable in-memory payload."""

    def __init__(
        self, data: bytes | bytearray | memoryview, content_type: Optional[str] = None
    ) -> None:
        super().__init__(ContentMetadata(content_length=len(data), content_type=content_type))
        self.data = data

    @property
    def is_repeatable(self) -> bool:
        return True

    def open_stream(self) -> BinaryIO:
        return io.BytesIO(self.data)

    def md5(self) -> bytes:
        return hashlib.md5(self.data).digest()

    def __repr__(self) -> str:
        return f"BytesPayload(length={len(self.data)})"


class StreamPayload(Payload):
    """One-shot payload over a readable stream."""

    def __init__(self, stream: BinaryIO, metadata: Optional[ContentMetadata] = None) -> None:
        super().__init__(metadata)
        self.stream = stream

    @property
    def is_repeatable(self) -> bool:
        return False

    def open_stream(self) -> BinaryIO:
        return self.stream

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        try:
            self.stream.close()
        except OSError as e:
            logger.warning("payload_close_failed", error=str(e))

    def buffer(self) -> BytesPayload:
        """Read what is left of the stream into memory and close it.

        Returns:
            A repeatable payload holding the unread bytes, carrying the
            same content type.
        """
        try:
            data = self.stream.read()
        finally:
            self.release()
        buffered = BytesPayload(data or b"", content_type=self.metadata.content_type)
        return buffered

    def __repr__(self) -> str:
        return f"StreamPayload(length={self.metadata.content_length})"


def release_payload(payload: Optional[Payload]) -> None:
    if payload is not None:
        payload.release()
