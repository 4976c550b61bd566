"""Bounded-concurrency deletion of everything under a container or directory."""

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Optional

from cloud_bulk_io.blobstore.base import BlobStore, BulkOperationError, ContainerNotFoundError
from cloud_bulk_io.blobstore.domain import (
    ListContainerOptions,
    PageSet,
    StorageMetadata,
    StorageType,
    recursive,
)
from cloud_bulk_io.config import BlobStoreSettings, HttpSettings
from cloud_bulk_io.http.handlers import BackoffLimitedRetryHandler
from cloud_bulk_io.utils.logging import get_logger

logger = get_logger(__name__)


class OutstandingFutures:
    """Thread-safe set of dispatched, not yet completed, delete futures."""

    def __init__(self) -> None:
        self._futures: set[Future] = set()
        self._lock = threading.Lock()

    def add(self, future: Future) -> None:
        with self._lock:
            self._futures.add(future)

    def discard(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    def cancel_all(self) -> int:
        """Cancel every outstanding future.

        Returns:
            Number of futures cancelled.
        """
        with self._lock:
            futures = list(self._futures)
        cancelled = sum(1 for future in futures if future.cancel())
        logger.debug("outstanding_futures_cancelled", total=len(futures), cancelled=cancelled)
        return cancelled

    def __len__(self) -> int:
        with self._lock:
            return len(self._futures)


@dataclass
class DeletePass:
    """State shared by the whole tree of iterations of one execute() call.

    The semaphore admits at most ``max_parallel_deletes`` in-flight
    deletes; each completion callback removes its future from
    ``outstanding`` and returns one permit. ``failed`` is set by any
    delete that fails or is cancelled.
    """

    semaphore: threading.Semaphore
    outstanding: OutstandingFutures = field(default_factory=OutstandingFutures)
    failed: threading.Event = field(default_factory=threading.Event)


class BulkDeleter:
    """Deletes all keys reachable from a container or directory.

    Listing pages are drained into delete tasks on an executor. A whole
    pass is retried, with exponential backoff, when any delete failed;
    deletes must therefore be idempotent.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        executor: Executor,
        retry_handler: BackoffLimitedRetryHandler,
        max_parallel_deletes: int,
        max_time: Optional[float] = None,
        max_errors: int = 3,
    ) -> None:
        """Initialize deleter.

        Args:
            blob_store: Store providing listing and deletion.
            executor: Executor running the delete tasks.
            retry_handler: Imposes the backoff between passes.
            max_parallel_deletes: Maximum in-flight deletes.
            max_time: Seconds to wait for a free delete slot. None waits forever.
            max_errors: Maximum number of passes.
        """
        if max_parallel_deletes <= 0:
            raise ValueError("max_parallel_deletes must be positive")
        if max_errors <= 0:
            raise ValueError("max_errors must be positive")
        self.blob_store = blob_store
        self.executor = executor
        self.retry_handler = retry_handler
        self.max_parallel_deletes = max_parallel_deletes
        self.max_time = max_time
        self.max_errors = max_errors
        self._owned_executor: Optional[ThreadPoolExecutor] = None

    @classmethod
    def from_settings(
        cls,
        blob_store: BlobStore,
        settings: Optional[BlobStoreSettings] = None,
        http_settings: Optional[HttpSettings] = None,
    ) -> "BulkDeleter":
        """Build a deleter with its own thread pool.

        The pool is shut down by close() or on leaving a ``with`` block.
        """
        settings = settings or BlobStoreSettings()
        http_settings = http_settings or HttpSettings()
        executor = ThreadPoolExecutor(
            max_workers=settings.user_threads, thread_name_prefix="bulk-delete"
        )
        deleter = cls(
            blob_store,
            executor,
            BackoffLimitedRetryHandler(http_settings.max_retries, http_settings.retry_delay_start),
            settings.max_parallel_deletes,
            max_time=settings.request_timeout,
            max_errors=settings.max_errors,
        )
        deleter._owned_executor = executor
        return deleter

    def close(self) -> None:
        if self._owned_executor is not None:
            self._owned_executor.shutdown(wait=True)
            self._owned_executor = None

    def __enter__(self) -> "BulkDeleter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def new_pass(self) -> DeletePass:
        return DeletePass(threading.Semaphore(self.max_parallel_deletes))

    def execute(self, container: str, options: Optional[ListContainerOptions] = None) -> None:
        """Delete everything reachable with the given options.

        Args:
            container: Container to clear.
            options: Scope of the deletion. Defaults to recursive.

        Raises:
            BulkOperationError: If every pass had a failure.
            ValueError: If a listing contains a container entry.
        """
        options = options if options is not None else recursive()
        state = self.new_pass()
        message = self._describe(container, options)
        logger.info("bulk_delete_started", operation=message)

        retries = self.max_errors
        while retries > 0:
            state.failed.clear()
            self.execute_one_iteration(container, options, state, blocking=False)
            self._wait_for_completion(state)

            if state.failed.is_set():
                retries -= 1
                logger.warning(
                    "bulk_delete_pass_failed", operation=message, retries_left=retries
                )
                if retries > 0:
                    self.retry_handler.impose_backoff_exponential_delay(
                        self.max_errors - retries, message
                    )
                    continue
            break

        if retries == 0:
            state.outstanding.cancel_all()
            raise BulkOperationError("Exceeded maximum retry attempts")
        logger.info("bulk_delete_completed", operation=message)

    def execute_one_iteration(
        self,
        container: str,
        options: ListContainerOptions,
        state: DeletePass,
        blocking: bool,
    ) -> None:
        """Dispatch deletes for every page of one listing.

        Subdirectories are drained first, blocking, when listing
        recursively. A timeout waiting for a delete slot cancels the
        outstanding deletes and marks the pass failed.

        Args:
            container: Container being cleared.
            options: Listing scope for this iteration.
            state: Shared pass state.
            blocking: Wait for all in-flight deletes before returning.
        """
        message = self._describe(container, options)
        logger.debug("clearing", operation=message, recursive=options.recursive)

        listing = self._get_listing(container, options, state)
        while listing is not None and len(listing) > 0:
            try:
                self._delete_blobs_and_empty_dirs(container, options, listing, state)
            except TimeoutError as e:
                logger.debug("delete_slot_timeout", operation=message, error=str(e))
                state.outstanding.cancel_all()
                state.failed.set()

            if listing.next_marker is None:
                break
            logger.debug("clearing_next_page", operation=message, marker=listing.next_marker)
            options = options.after_marker(listing.next_marker)
            listing = self._get_listing(container, options, state)

        if blocking:
            self._wait_for_completion(state)

    def _get_listing(
        self, container: str, options: ListContainerOptions, state: DeletePass
    ) -> Optional[PageSet]:
        try:
            listing = self.blob_store.list(container, options)
        except ContainerNotFoundError:
            # nothing to delete; also seen right after creation on eventually consistent stores
            logger.debug("container_not_found", container=container)
            return None

        if options.recursive:
            for md in listing:
                if md.type == StorageType.CONTAINER:
                    raise ValueError("Container type not supported")
                if md.type in (StorageType.FOLDER, StorageType.RELATIVE_PATH):
                    full_path = self._full_path(options, md)
                    if full_path != options.dir:
                        self.execute_one_iteration(
                            container, options.in_directory(full_path), state, blocking=True
                        )
        return listing

    def _delete_blobs_and_empty_dirs(
        self,
        container: str,
        options: ListContainerOptions,
        listing: PageSet,
        state: DeletePass,
    ) -> None:
        for md in listing:
            if md.type == StorageType.CONTAINER:
                raise ValueError("Container type not supported")
            full_path = self._full_path(options, md)

            if not state.semaphore.acquire(timeout=self.max_time):
                raise TimeoutError("Timeout waiting for semaphore")

            future: Optional[Future] = None
            if md.type == StorageType.BLOB:
                future = self.executor.submit(self.blob_store.remove_blob, container, full_path)
            elif md.type == StorageType.FOLDER:
                future = self._delete_directory(options, container, full_path)
            elif md.type == StorageType.RELATIVE_PATH:
                future = self._delete_directory(options, container, md.name)

            if future is None:
                # permit taken but nothing dispatched, e.g. a folder in a non-recursive pass
                state.semaphore.release()
                continue
            state.outstanding.add(future)
            future.add_done_callback(partial(self._on_delete_done, state))

    def _delete_directory(
        self, options: ListContainerOptions, container: str, directory: str
    ) -> Optional[Future]:
        if not options.recursive:
            return None
        return self.executor.submit(self.blob_store.delete_directory, container, directory)

    @staticmethod
    def _on_delete_done(state: DeletePass, future: Future) -> None:
        try:
            if future.cancelled():
                state.failed.set()
            elif future.exception() is not None:
                logger.debug("delete_failed", error=str(future.exception()))
                state.failed.set()
        finally:
            state.outstanding.discard(future)
            state.semaphore.release()

    def _wait_for_completion(self, state: DeletePass) -> None:
        # holding every permit means nothing is in flight
        acquired = 0
        try:
            for _ in range(self.max_parallel_deletes):
                state.semaphore.acquire()
                acquired += 1
        except KeyboardInterrupt:
            logger.debug("interrupted_waiting_for_deletes")
            state.outstanding.cancel_all()
            raise
        finally:
            if acquired:
                state.semaphore.release(acquired)

    @staticmethod
    def _full_path(options: ListContainerOptions, md: StorageMetadata) -> str:
        if options.dir is not None and "/" not in md.name:
            return f"{options.dir}/{md.name}"
        return md.name

    @staticmethod
    def _describe(container: str, options: ListContainerOptions) -> str:
        if options.dir is not None:
            return f"clearing path {container}/{options.dir}"
        return f"clearing container {container}"
