"""Ingestion and processing services for the image pipeline."""

import io
import time
import uuid
from typing import BinaryIO, Callable, List, Optional, Tuple

from .config import ServiceConfig
from .error_handling import BestEffortContextManager
from .exceptions import (
    DecodeFailureError,
    ImageProcessorError,
    InvalidIdError,
    PayloadTooLargeError,
    StaleWriteError,
)
from .image_utils import (
    CONTENT_TYPES,
    ORIGINAL_PREFIX,
    PROCESSED_PREFIX,
    THUMBNAIL_PREFIX,
    blob_path,
    decode_image,
    encode_image,
    extension_for,
    measure_image,
    parse_format,
    resize_exact,
    split_extension,
)
from .models import Image, ImageStatus, ProcessingTask, utc_now
from .observability import LogContext, MetricsCollector
from .protocols import BlobStore, ImageRegistry, LoggerProtocol, TaskProducer


def generate_id() -> str:
    return str(uuid.uuid4())


def derived_paths(image_id: str, ext: str) -> Tuple[str, str]:
    """(processed, thumbnail) blob paths for an image."""
    return (
        blob_path(PROCESSED_PREFIX, image_id, ext),
        blob_path(THUMBNAIL_PREFIX, image_id, ext),
    )


class IngestionService:
    """
    Synchronous upload path plus the read/delete/list boundary operations.

    An upload runs blob write, decode, registry insert and enqueue in that
    order. Without the outbox the insert and the enqueue are two separate
    writes: if the enqueue fails the row stays pending with no task.
    """

    def __init__(
        self,
        registry: ImageRegistry,
        blob_store: BlobStore,
        producer: TaskProducer,
        config: ServiceConfig,
        logger: LoggerProtocol,
        id_factory: Callable[[], str] = generate_id,
    ):
        self._registry = registry
        self._blob_store = blob_store
        self._producer = producer
        self._config = config
        self._logger = logger
        self._id_factory = id_factory

        self._use_outbox = config.outbox_enabled and hasattr(registry, "create_with_task")
        if config.outbox_enabled and not self._use_outbox:
            self._logger.warning(
                "Outbox requested but the registry cannot store tasks; "
                "falling back to direct enqueue"
            )

    def upload(self, stream: BinaryIO, declared_size: int, filename: str) -> Image:
        """
        Ingest an uploaded file and schedule its processing.

        Raises:
            PayloadTooLargeError: declared_size exceeds the configured maximum
            UnsupportedFormatError: extension is not jpeg/jpg, png or gif
            StoreIOError: the original could not be written or read back
            DecodeFailureError: the stored bytes are not a valid image
            RegistryError: the row could not be inserted
            QueueIOError: the task could not be enqueued
        """
        max_size = self._config.image.max_file_size
        if declared_size > max_size:
            raise PayloadTooLargeError(declared_size, max_size)

        image_format, ext = parse_format(filename)
        image_id = self._id_factory()
        log_context = LogContext(
            correlation_id=image_id, operation="upload", component="ingestion_service"
        ).with_metadata(filename=filename, format=image_format.value)

        original_path = blob_path(ORIGINAL_PREFIX, image_id, ext)
        self._blob_store.save(original_path, stream)
        self._logger.debug("Stored original", log_context, path=original_path)

        try:
            width, height = measure_image(self._blob_store.read(original_path), image_format)
        except DecodeFailureError:
            with BestEffortContextManager(f"cleanup of {original_path}") as cleanup:
                cleanup.attempt(original_path, lambda: self._blob_store.delete(original_path))
            self._logger.error("Uploaded file is not a decodable image", log_context)
            raise

        now = utc_now()
        image = Image(
            id=image_id,
            original_path=original_path,
            processed_path="",
            thumbnail_path="",
            status=ImageStatus.PENDING,
            format=image_format,
            original_width=width,
            original_height=height,
            processed_width=None,
            processed_height=None,
            created_at=now,
            updated_at=now,
        )
        image.validate_fields()
        task = ProcessingTask.from_image(image)

        if self._use_outbox:
            self._registry.create_with_task(image, task)  # type: ignore[attr-defined]
            self._logger.info("Image registered with outbox task", log_context)
            return image

        self._registry.create(image)
        try:
            self._producer.send_task(task)
        except ImageProcessorError as e:
            self._logger.error(
                "Enqueue failed after registry insert; image stays pending",
                log_context.with_metadata(error=str(e)),
            )
            raise

        self._logger.info(
            "Image registered and queued", log_context, width=width, height=height
        )
        return image

    def get_by_id(self, image_id: str) -> Image:
        if not image_id:
            raise InvalidIdError("image id is required")
        return self._registry.get(image_id)

    def delete(self, image_id: str) -> None:
        """
        Remove an image's blobs (best effort) and then its registry row.

        Raises ImageNotFoundError if the row does not exist, which makes a
        repeated delete report NotFound without touching the store.
        """
        image = self.get_by_id(image_id)
        ext = split_extension(image.original_path) or extension_for(image.format)
        processed_path, thumbnail_path = derived_paths(image.id, ext)
        paths = [
            image.original_path,
            image.processed_path or processed_path,
            image.thumbnail_path or thumbnail_path,
        ]

        with BestEffortContextManager(f"blob cleanup for image {image_id}") as cleanup:
            for path in paths:
                cleanup.attempt(path, lambda path=path: self._blob_store.delete(path))

        self._registry.delete(image_id)
        self._logger.info(
            "Image deleted",
            LogContext(correlation_id=image_id, operation="delete", component="ingestion_service"),
        )

    def list(self, limit: Optional[int] = None, offset: int = 0) -> List[Image]:
        """Newest first; limit clamped to [1, list_max_limit], offset to >= 0."""
        if limit is None or limit <= 0:
            limit = self._config.list_default_limit
        limit = min(limit, self._config.list_max_limit)
        offset = max(offset, 0)
        return self._registry.list(limit, offset)

    def open_image(self, image_id: str) -> Tuple[bytes, str]:
        """Bytes of the processed image if present, else the original, with its content type."""
        image = self.get_by_id(image_id)
        path = image.processed_path or image.original_path
        return self._blob_store.read(path), CONTENT_TYPES[image.format]


class ImageProcessingService:
    """
    Worker-side processor: decode, resize twice, store, finalize.

    Every failure after the image enters ``processing`` is recorded as a
    terminal ``failed`` status before the error is raised again.
    """

    def __init__(
        self,
        registry: ImageRegistry,
        blob_store: BlobStore,
        config: ServiceConfig,
        logger: LoggerProtocol,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        self._registry = registry
        self._blob_store = blob_store
        self._settings = config.image
        self._logger = logger
        self._metrics_collector = metrics_collector

        if self._settings.watermark_enabled:
            self._logger.warning(
                "Watermark overlay is not supported; IMAGE_WATERMARK_ENABLED is ignored",
                watermark_path=self._settings.watermark_path or "<unset>",
            )

    def process_image(self, task: ProcessingTask) -> None:
        """
        Process one task.

        Raises:
            ImageNotFoundError: no registry row for task.image_id
            InvalidTransitionError: the image is already completed or failed
            StaleWriteError: a concurrent delivery of the task updated the
                row first; its status and derived blobs are left as they are
            StoreIOError, DecodeFailureError, EncodeFailureError: after the
                row has been marked failed
        """
        start_time = time.time()
        log_context = LogContext(
            correlation_id=task.image_id,
            operation="process_image",
            component="image_processing_service",
        ).with_metadata(image_path=task.image_path, format=task.format.value)

        try:
            image = self._registry.get(task.image_id)
            image = self._registry.update(image.transition_to(ImageStatus.PROCESSING))
        except ImageProcessorError as e:
            self._record(start_time, False, e)
            raise

        written: List[str] = []
        try:
            completed = self._transform(image, task, written, log_context)
            self._registry.update(completed)
        except StaleWriteError as e:
            # Another delivery of this task owns the row and its derived blobs.
            self._logger.warning(
                "Image was updated by a concurrent delivery",
                log_context.with_metadata(error=str(e)),
            )
            self._record(start_time, False, e)
            raise
        except Exception as e:
            self._logger.error(
                "Image processing failed", log_context.with_metadata(error=str(e))
            )
            self._discard(written)
            self._mark_failed(image, log_context)
            self._record(start_time, False, e)
            raise

        self._record(start_time, True)
        self._logger.info(
            "Image processing completed",
            log_context,
            processed=f"{completed.processed_width}x{completed.processed_height}",
            duration_ms=round((time.time() - start_time) * 1000, 1),
        )

    def _transform(
        self,
        image: Image,
        task: ProcessingTask,
        written: List[str],
        log_context: LogContext,
    ) -> Image:
        settings = self._settings

        self._logger.debug("Reading original", log_context.with_operation("read_original"))
        data = self._blob_store.read(task.image_path)
        original = decode_image(data, task.format)

        processed = resize_exact(original, settings.processed_width, settings.processed_height)
        thumbnail = resize_exact(original, settings.thumbnail_width, settings.thumbnail_height)

        # Derived blobs reuse the uploaded extension, so "a.jpeg" yields
        # "processed/<id>.jpeg" rather than always ".jpg" for JPEG.
        ext = split_extension(task.image_path) or extension_for(task.format)
        processed_path, thumbnail_path = derived_paths(task.image_id, ext)

        if self._registry.get(image.id).version != image.version:
            raise StaleWriteError(image.id, image.version)

        for path, resized in ((processed_path, processed), (thumbnail_path, thumbnail)):
            encoded = encode_image(resized, task.format, settings.jpeg_quality)
            self._blob_store.save(path, io.BytesIO(encoded))
            written.append(path)
            self._logger.debug(
                "Stored derived image", log_context.with_operation("store_derived"), path=path
            )

        return image.transition_to(
            ImageStatus.COMPLETED,
            processed_path=processed_path,
            thumbnail_path=thumbnail_path,
            processed_width=processed.width,
            processed_height=processed.height,
        )

    def _mark_failed(self, image: Image, log_context: LogContext) -> None:
        try:
            self._registry.update(image.transition_to(ImageStatus.FAILED))
        except ImageProcessorError as e:
            self._logger.error(
                "Could not record failed status",
                log_context.with_metadata(error=str(e)),
            )

    def _discard(self, paths: List[str]) -> None:
        if not paths:
            return
        with BestEffortContextManager("discard partial outputs") as cleanup:
            for path in paths:
                cleanup.attempt(path, lambda path=path: self._blob_store.delete(path))

    def _record(
        self, start_time: float, success: bool, error: Optional[BaseException] = None
    ) -> None:
        if self._metrics_collector is not None:
            self._metrics_collector.record(
                "process_image",
                start_time,
                success,
                error_message=str(error) if error else None,
            )
