"""Pytest configuration and fixtures."""

from concurrent.futures import ThreadPoolExecutor
from typing import Iterator

import pytest

from cloud_bulk_io.blobstore.local import LocalBlobStore
from cloud_bulk_io.blobstore.transient import transient_blob_store
from cloud_bulk_io.http.handlers import BackoffLimitedRetryHandler
from cloud_bulk_io.http.payloads import BytesPayload

CONTAINER = "container"
TOP_LEVEL_BLOBS = 1111
NESTED_BLOBS = 2222


@pytest.fixture
def blob_store() -> LocalBlobStore:
    """Create an empty in-memory blob store."""
    return transient_blob_store()


@pytest.fixture
def populated_store(blob_store: LocalBlobStore) -> LocalBlobStore:
    """Create a store with 1111 top-level blobs and 2222 blobs under ``directory``."""
    blob_store.create_container(CONTAINER)
    payload = BytesPayload(b"")
    for i in range(TOP_LEVEL_BLOBS):
        blob_store.put_blob(CONTAINER, f"blob-{i}", payload)
    for i in range(NESTED_BLOBS):
        blob_store.put_blob(CONTAINER, f"directory/blob-{i}", payload)
    return blob_store


@pytest.fixture
def thread_pool() -> Iterator[ThreadPoolExecutor]:
    """Create a worker pool, shut down after the test."""
    executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="test")
    yield executor
    executor.shutdown(wait=True, cancel_futures=True)


@pytest.fixture
def fast_retry_handler() -> BackoffLimitedRetryHandler:
    """Create a retry handler with a negligible backoff."""
    return BackoffLimitedRetryHandler(retry_count_limit=5, delay_start=0.001)
