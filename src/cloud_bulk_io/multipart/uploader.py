"""Multipart upload driver."""

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Optional

from cloud_bulk_io.blobstore.base import BlobStore
from cloud_bulk_io.blobstore.domain import MultipartPart, MultipartUpload
from cloud_bulk_io.config import BlobStoreSettings
from cloud_bulk_io.http.payloads import Payload
from cloud_bulk_io.multipart.slicer import PayloadSlicer
from cloud_bulk_io.multipart.slicing import MultipartUploadSlicingAlgorithm
from cloud_bulk_io.utils.logging import get_logger

logger = get_logger(__name__)


class MultipartUploader:
    """Uploads a payload as a multipart blob.

    The payload is planned with MultipartUploadSlicingAlgorithm against the
    store's part limits, cut into parts, uploaded, and completed. Any
    failure aborts the upload before the error propagates.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        executor: Optional[Executor] = None,
        settings: Optional[BlobStoreSettings] = None,
        slicer: Optional[PayloadSlicer] = None,
    ) -> None:
        """Initialize uploader.

        Args:
            blob_store: Store receiving the parts.
            executor: Executor for parallel uploads. A temporary pool is
                created per upload when omitted.
            settings: Part size, magnitude base and thread count.
            slicer: Payload slicer.
        """
        self.blob_store = blob_store
        self.executor = executor
        self.settings = settings or BlobStoreSettings()
        self.slicer = slicer or PayloadSlicer()

    def new_algorithm(self) -> MultipartUploadSlicingAlgorithm:
        return MultipartUploadSlicingAlgorithm(
            self.blob_store.minimum_multipart_part_size,
            self.blob_store.maximum_multipart_part_size,
            self.blob_store.maximum_number_of_parts,
            default_part_size=self.settings.mpu_part_size,
            magnitude_base=self.settings.mpu_magnitude_base,
        )

    def put_multipart_blob(
        self,
        container: str,
        name: str,
        payload: Payload,
        parallel: bool = False,
        content_type: Optional[str] = None,
    ) -> str:
        """Upload a payload in parts.

        Args:
            container: Destination container.
            name: Destination blob name.
            payload: Payload with a known content length.
            parallel: Upload parts concurrently.
            content_type: Overrides the payload's content type.

        Returns:
            ETag of the assembled blob.

        Raises:
            ValueError: If the payload has no content length.
            ContainerNotFoundError: If the container does not exist.
            MultipartUploadError: If the store rejects a part or the completion.
        """
        length = payload.content_length
        if length is None:
            raise ValueError("Multipart upload requires a payload with a content length")

        algorithm = self.new_algorithm()
        algorithm.calculate_chunk_size(length)
        upload = self.blob_store.initiate_multipart_upload(
            container, name, content_type or payload.metadata.content_type
        )
        logger.info(
            "multipart_upload_started",
            container=container,
            name=name,
            upload_id=upload.id,
            length=length,
            parallel=parallel,
        )

        try:
            if parallel:
                parts = self._upload_parallel(upload, payload, algorithm)
            else:
                parts = self._upload_sequential(upload, payload, algorithm)
            etag = self.blob_store.complete_multipart_upload(upload, parts)
        except BaseException as e:
            logger.warning(
                "multipart_upload_aborted", upload_id=upload.id, name=name, error=str(e)
            )
            self.blob_store.abort_multipart_upload(upload)
            raise

        logger.info("multipart_upload_completed", name=name, parts=len(parts), etag=etag)
        return etag

    def _upload_sequential(
        self,
        upload: MultipartUpload,
        payload: Payload,
        algorithm: MultipartUploadSlicingAlgorithm,
    ) -> list[MultipartPart]:
        parts = []
        for _ in range(algorithm.parts):
            part_number = algorithm.get_next_part()
            offset = algorithm.get_next_chunk_offset()
            part_payload = self.slicer.slice(payload, offset, algorithm.chunk_size)
            parts.append(self.blob_store.upload_multipart_part(upload, part_number, part_payload))
            algorithm.add_copied(algorithm.chunk_size)

        if algorithm.remaining > 0:
            part_number = algorithm.get_next_part()
            part_payload = self.slicer.slice(payload, algorithm.copied, algorithm.remaining)
            parts.append(self.blob_store.upload_multipart_part(upload, part_number, part_payload))
            algorithm.add_copied(algorithm.remaining)
        return parts

    def _upload_parallel(
        self,
        upload: MultipartUpload,
        payload: Payload,
        algorithm: MultipartUploadSlicingAlgorithm,
    ) -> list[MultipartPart]:
        if self.executor is not None:
            return self._dispatch_parts(self.executor, upload, payload, algorithm)
        with ThreadPoolExecutor(
            max_workers=self.settings.user_threads, thread_name_prefix="multipart"
        ) as executor:
            return self._dispatch_parts(executor, upload, payload, algorithm)

    def _dispatch_parts(
        self,
        executor: Executor,
        upload: MultipartUpload,
        payload: Payload,
        algorithm: MultipartUploadSlicingAlgorithm,
    ) -> list[MultipartPart]:
        # slicing stays on this thread; the permits bound the parts held in memory
        permits = threading.Semaphore(self.settings.user_threads)
        futures: list[Future] = []
        try:
            for part_number, part_payload in self.slicer.slices(
                payload, algorithm.part_offsets()
            ):
                permits.acquire()
                future = executor.submit(
                    self.blob_store.upload_multipart_part, upload, part_number, part_payload
                )
                future.add_done_callback(lambda _: permits.release())
                futures.append(future)
            return [future.result() for future in futures]
        except BaseException:
            for future in futures:
                future.cancel()
            wait(futures)
            raise
