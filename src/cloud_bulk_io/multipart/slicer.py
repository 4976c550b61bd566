"""Cutting payloads into part payloads."""

from typing import BinaryIO, Iterator, Sequence

from cloud_bulk_io.http.payloads import BytesPayload, Payload


def _read_exactly(stream: BinaryIO, length: int) -> bytes:
    chunks = []
    remaining = length
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise ValueError(
                f"Stream ended {remaining} bytes short of a {length} byte slice"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


class PayloadSlicer:
    """Produces part payloads from a whole payload.

    Byte payloads are sliced through a memoryview, without copying.
    Seekable streams are positioned at each slice's offset; other
    streams are read forward, so their slices must be requested in
    offset order.
    """

    def slice(self, payload: Payload, offset: int, length: int) -> Payload:
        """Return the ``length`` bytes of payload starting at ``offset``."""
        if offset < 0 or length < 0:
            raise ValueError("offset and length must not be negative")
        content_type = payload.metadata.content_type
        if isinstance(payload, BytesPayload):
            if offset + length > len(payload.data):
                raise ValueError(
                    f"Slice {offset}+{length} exceeds payload of {len(payload.data)} bytes"
                )
            view = memoryview(payload.data)[offset:offset + length]
            return BytesPayload(view, content_type=content_type)

        stream = payload.open_stream()
        seekable = getattr(stream, "seekable", None)
        if seekable is not None and seekable():
            stream.seek(offset)
        return BytesPayload(_read_exactly(stream, length), content_type=content_type)

    def slices(
        self, payload: Payload, plan: Sequence[tuple[int, int, int]]
    ) -> Iterator[tuple[int, Payload]]:
        """Yield ``(part_number, slice)`` for each entry of a part table."""
        for part_number, offset, size in plan:
            yield part_number, self.slice(payload, offset, size)
