"""Partitioning of large objects into provider-legal multipart plans."""

from typing import Optional

from cloud_bulk_io.config import MIB
from cloud_bulk_io.utils.logging import get_logger
from cloud_bulk_io.utils.validators import check_positive

logger = get_logger(__name__)

DEFAULT_PART_SIZE = 32 * MIB
DEFAULT_MAGNITUDE_BASE = 100


class MultipartUploadSlicingAlgorithm:
    """Computes part size, full part count and trailing remainder for a length.

    The plan prefers the default part size, scales it up by order of
    magnitude for very large objects, and falls back to the minimum part
    size when the part count would exceed the provider limit. The plan
    satisfies ``chunk_size * parts + remaining == length``.

    The progress accessors (get_next_part, get_next_chunk_offset,
    add_copied) are for a single driving thread. Parallel uploads should
    dispatch from part_offsets() instead.
    """

    def __init__(
        self,
        minimum_part_size: int,
        maximum_part_size: int,
        maximum_number_of_parts: int,
        default_part_size: int = DEFAULT_PART_SIZE,
        magnitude_base: int = DEFAULT_MAGNITUDE_BASE,
    ) -> None:
        """Initialize algorithm.

        Args:
            minimum_part_size: Smallest part the provider accepts.
            maximum_part_size: Largest part the provider accepts.
            maximum_number_of_parts: Most parts one upload may have.
            default_part_size: Preferred part size unit.
            magnitude_base: Part count per order of magnitude of scaling.

        Raises:
            ValueError: If any size or count is not positive.
        """
        check_positive(minimum_part_size, "minimum_part_size")
        check_positive(maximum_part_size, "maximum_part_size")
        check_positive(maximum_number_of_parts, "maximum_number_of_parts")
        check_positive(default_part_size, "default_part_size")
        check_positive(magnitude_base, "magnitude_base")
        self.minimum_part_size = minimum_part_size
        self.maximum_part_size = maximum_part_size
        self.maximum_number_of_parts = maximum_number_of_parts
        self.default_part_size = default_part_size
        self.magnitude_base = magnitude_base

        self._length: Optional[int] = None
        self._chunk_size = 0
        self._parts = 0
        self._remaining = 0
        self._part = 0
        self._chunk_offset = 0
        self._copied = 0

    def calculate_chunk_size(self, length: int) -> int:
        """Compute the plan for an object of the given length.

        Args:
            length: Total object size in bytes, zero allowed.

        Returns:
            Size of every full part.

        Raises:
            ValueError: If length is negative.
        """
        if length < 0:
            raise ValueError(f"length must not be negative, got {length}")

        unit_part_size = self.default_part_size
        parts = length // unit_part_size
        part_size = unit_part_size
        magnitude = parts // self.magnitude_base
        if magnitude > 0:
            part_size = magnitude * unit_part_size
            if part_size > self.maximum_part_size:
                part_size = unit_part_size = self.maximum_part_size
            parts = length // part_size
            if parts * part_size < length:
                part_size = (magnitude + 1) * unit_part_size
                if part_size > self.maximum_part_size:
                    part_size = unit_part_size = self.maximum_part_size
                parts = length // part_size

        if part_size > self.maximum_part_size:
            part_size = unit_part_size = self.maximum_part_size
            parts = length // unit_part_size

        if parts > self.maximum_number_of_parts:
            part_size = unit_part_size = self.minimum_part_size
            parts = length // unit_part_size

        if parts > self.maximum_number_of_parts:
            # the trailing part absorbs the rest, possibly above maximum_part_size
            parts = self.maximum_number_of_parts - 1

        if length % unit_part_size == 0 and parts > 0:
            parts -= 1

        self._length = length
        self._chunk_size = part_size
        self._parts = parts
        self._remaining = length - part_size * parts

        overflow = self._remaining > self.maximum_part_size
        log = logger.warning if overflow else logger.debug
        log(
            "multipart_partitioned",
            length=length,
            parts=parts,
            chunk_size=part_size,
            remaining=self._remaining,
            overflow=overflow,
        )
        return self._chunk_size

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def parts(self) -> int:
        return self._parts

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def copied(self) -> int:
        return self._copied

    def add_copied(self, copied: int) -> None:
        self._copied += copied

    def get_next_part(self) -> int:
        """Return the next 1-based part number."""
        self._part += 1
        return self._part

    def get_next_chunk_offset(self) -> int:
        """Return the offset of the next full part and advance past it."""
        offset = self._chunk_offset
        self._chunk_offset += self._chunk_size
        return offset

    def part_offsets(self) -> list[tuple[int, int, int]]:
        """Precomputed ``(part_number, offset, size)`` for every part.

        Full parts come first; the trailing remainder, if any, is the
        last entry. Does not touch the sequential progress state.

        Raises:
            RuntimeError: If no plan has been calculated yet.
        """
        if self._length is None:
            raise RuntimeError("calculate_chunk_size has not been called")
        table = [
            (number + 1, number * self._chunk_size, self._chunk_size)
            for number in range(self._parts)
        ]
        if self._remaining > 0:
            table.append((self._parts + 1, self._parts * self._chunk_size, self._remaining))
        return table

    def __repr__(self) -> str:
        return (
            f"MultipartUploadSlicingAlgorithm(chunk_size={self._chunk_size}, "
            f"parts={self._parts}, remaining={self._remaining})"
        )
