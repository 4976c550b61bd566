"""Unit tests for the multipart slicing algorithm."""

import pytest
from structlog.testing import capture_logs

from cloud_bulk_io.multipart.slicing import (
    DEFAULT_PART_SIZE,
    MultipartUploadSlicingAlgorithm,
)

MIB = 1024 * 1024
GIB = 1024 * MIB
MAX_PARTS = 10000


@pytest.fixture
def algorithm() -> MultipartUploadSlicingAlgorithm:
    """Algorithm with S3-like limits."""
    return MultipartUploadSlicingAlgorithm(5 * MIB, 5 * GIB, MAX_PARTS)


def assert_plan_covers(algorithm: MultipartUploadSlicingAlgorithm, length: int) -> None:
    assert algorithm.chunk_size * algorithm.parts + algorithm.remaining == length
    assert algorithm.parts <= algorithm.maximum_number_of_parts


def test_zero_length(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test that an empty object has no parts and no remainder."""
    assert algorithm.calculate_chunk_size(0) == DEFAULT_PART_SIZE
    assert algorithm.parts == 0
    assert algorithm.remaining == 0
    assert algorithm.part_offsets() == []


def test_length_below_default_part_size(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test that a small object is a single trailing part."""
    algorithm.calculate_chunk_size(1000)

    assert algorithm.chunk_size == DEFAULT_PART_SIZE
    assert algorithm.parts == 0
    assert algorithm.remaining == 1000
    assert algorithm.part_offsets() == [(1, 0, 1000)]


def test_exact_multiple_folds_last_part_into_remaining(
    algorithm: MultipartUploadSlicingAlgorithm,
) -> None:
    """Test that an evenly divisible length keeps a full-size remainder."""
    length = 5 * DEFAULT_PART_SIZE
    algorithm.calculate_chunk_size(length)

    assert algorithm.chunk_size == DEFAULT_PART_SIZE
    assert algorithm.parts == 4
    assert algorithm.remaining == DEFAULT_PART_SIZE
    assert_plan_covers(algorithm, length)


def test_one_byte_over_multiple(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test that a single extra byte becomes the remainder."""
    length = 5 * DEFAULT_PART_SIZE + 1
    algorithm.calculate_chunk_size(length)

    assert algorithm.chunk_size == DEFAULT_PART_SIZE
    assert algorithm.parts == 5
    assert algorithm.remaining == 1
    assert_plan_covers(algorithm, length)


def test_magnitude_scales_part_size(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test that 250 default parts scale the part size by two."""
    length = 250 * DEFAULT_PART_SIZE
    algorithm.calculate_chunk_size(length)

    assert algorithm.chunk_size == 64 * MIB
    assert algorithm.parts == 124
    assert algorithm.remaining == 64 * MIB
    assert_plan_covers(algorithm, length)


def test_magnitude_bumped_when_scaled_parts_undercount(
    algorithm: MultipartUploadSlicingAlgorithm,
) -> None:
    """Test that a length not covered by the scaled size bumps the magnitude."""
    length = 250 * DEFAULT_PART_SIZE + 1
    algorithm.calculate_chunk_size(length)

    assert algorithm.chunk_size == 96 * MIB
    assert algorithm.parts == 83
    assert algorithm.remaining == 32 * MIB + 1
    assert_plan_covers(algorithm, length)


def test_scaled_part_size_clamped_to_maximum() -> None:
    """Test that the scaled part size never exceeds the maximum part size."""
    algorithm = MultipartUploadSlicingAlgorithm(MIB, 64 * MIB, MAX_PARTS)
    length = 300 * DEFAULT_PART_SIZE
    algorithm.calculate_chunk_size(length)

    assert algorithm.chunk_size == 64 * MIB
    assert algorithm.parts == 149
    assert algorithm.remaining == 64 * MIB
    assert_plan_covers(algorithm, length)


def test_too_many_parts_falls_back_to_minimum_part_size() -> None:
    """Test the fallback to the minimum part size and the hard part clamp."""
    algorithm = MultipartUploadSlicingAlgorithm(5 * MIB, 5 * GIB, 10)
    length = 640 * MIB
    algorithm.calculate_chunk_size(length)

    assert algorithm.chunk_size == 5 * MIB
    assert algorithm.parts == 8
    assert algorithm.remaining == 600 * MIB
    assert_plan_covers(algorithm, length)


def test_remaining_overflow_is_logged_not_corrected() -> None:
    """Test that a remainder above the maximum part size is only reported."""
    algorithm = MultipartUploadSlicingAlgorithm(MIB, 2 * MIB, 10)
    length = 100 * MIB

    with capture_logs() as logs:
        algorithm.calculate_chunk_size(length)

    assert algorithm.chunk_size == MIB
    assert algorithm.parts == 8
    assert algorithm.remaining == 92 * MIB
    assert_plan_covers(algorithm, length)
    partitioned = [log for log in logs if log["event"] == "multipart_partitioned"]
    assert partitioned[0]["overflow"] is True
    assert partitioned[0]["log_level"] == "warning"


def test_plan_covers_length_across_sizes(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test the coverage invariant for a spread of lengths."""
    for length in (1, 5 * MIB, 33 * MIB, 3 * GIB + 7, 100 * GIB, 5 * 1024 * GIB):
        algorithm.calculate_chunk_size(length)
        assert_plan_covers(algorithm, length)
        assert algorithm.chunk_size <= algorithm.maximum_part_size


def test_sequential_accessors(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test part numbering and offset progression."""
    algorithm.calculate_chunk_size(3 * DEFAULT_PART_SIZE + 10)

    assert algorithm.get_next_part() == 1
    assert algorithm.get_next_part() == 2
    assert algorithm.get_next_chunk_offset() == 0
    assert algorithm.get_next_chunk_offset() == DEFAULT_PART_SIZE
    assert algorithm.get_next_chunk_offset() == 2 * DEFAULT_PART_SIZE


def test_copied_accumulates(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test copied byte tracking."""
    algorithm.add_copied(100)
    algorithm.add_copied(23)

    assert algorithm.copied == 123


def test_part_offsets_table(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test the precomputed part table and that it leaves progress untouched."""
    length = 3 * DEFAULT_PART_SIZE + 10
    algorithm.calculate_chunk_size(length)

    table = algorithm.part_offsets()

    assert table == [
        (1, 0, DEFAULT_PART_SIZE),
        (2, DEFAULT_PART_SIZE, DEFAULT_PART_SIZE),
        (3, 2 * DEFAULT_PART_SIZE, DEFAULT_PART_SIZE),
        (4, 3 * DEFAULT_PART_SIZE, 10),
    ]
    assert sum(size for _, _, size in table) == length
    assert algorithm.get_next_part() == 1


def test_part_offsets_requires_plan(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test that the table is unavailable before a plan is calculated."""
    with pytest.raises(RuntimeError):
        algorithm.part_offsets()


@pytest.mark.parametrize(
    "minimum,maximum,parts",
    [(0, 5 * GIB, MAX_PARTS), (5 * MIB, 0, MAX_PARTS), (5 * MIB, 5 * GIB, 0), (-1, 1, 1)],
)
def test_constructor_rejects_non_positive_limits(minimum: int, maximum: int, parts: int) -> None:
    """Test constructor preconditions."""
    with pytest.raises(ValueError):
        MultipartUploadSlicingAlgorithm(minimum, maximum, parts)


def test_negative_length_rejected(algorithm: MultipartUploadSlicingAlgorithm) -> None:
    """Test that a negative length is rejected."""
    with pytest.raises(ValueError):
        algorithm.calculate_chunk_size(-1)
