"""Protocol definitions for dependency injection and testability."""

import threading
from typing import Any, BinaryIO, Dict, List, Optional, Protocol

from .models import Image, ProcessingTask, QueueMessage


class S3ClientProtocol(Protocol):
    """Protocol for the S3 client operations the blob store uses."""

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        """Get object from S3."""
        ...

    def put_object(
        self, Bucket: str, Key: str, Body: bytes, ContentType: str
    ) -> Dict[str, Any]:
        """Put object to S3."""
        ...

    def delete_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        """Delete object from S3."""
        ...

    def head_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        """Get object metadata from S3."""
        ...


class SQSClientProtocol(Protocol):
    """Protocol for the SQS client operations the queue backend uses."""

    def send_message(self, **kwargs: Any) -> Dict[str, Any]:
        """Send one message."""
        ...

    def receive_message(self, **kwargs: Any) -> Dict[str, Any]:
        """Receive up to MaxNumberOfMessages messages."""
        ...

    def delete_message(self, **kwargs: Any) -> Dict[str, Any]:
        """Acknowledge a received message."""
        ...

    def get_queue_attributes(self, **kwargs: Any) -> Dict[str, Any]:
        """Read queue attributes such as the approximate message counts."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log debug message."""
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log info message."""
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log warning message."""
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log error message."""
        ...


class BlobStore(Protocol):
    """Path-addressed binary storage, paths relative to a configured root."""

    def save(self, path: str, stream: BinaryIO) -> None:
        """Write the stream to ``path``, creating parents as needed."""
        ...

    def read(self, path: str) -> bytes:
        """Return the bytes at ``path``; raises BlobNotFoundError if missing."""
        ...

    def delete(self, path: str) -> None:
        """Remove ``path``; a missing path is not an error."""
        ...

    def exists(self, path: str) -> bool:
        """Return True if ``path`` holds a blob."""
        ...


class ImageRegistry(Protocol):
    """Durable image metadata keyed by image id."""

    def create(self, image: Image) -> None:
        """Insert a new row."""
        ...

    def get(self, image_id: str) -> Image:
        """Point lookup; raises ImageNotFoundError if missing."""
        ...

    def update(self, image: Image) -> Image:
        """Compare-and-swap on version; returns the stored row."""
        ...

    def delete(self, image_id: str) -> None:
        """Remove a row; raises ImageNotFoundError if missing."""
        ...

    def list(self, limit: int, offset: int) -> List[Image]:
        """Rows ordered by created_at descending."""
        ...


class OutboxRegistry(ImageRegistry, Protocol):
    """Registry that can persist a task in the same transaction as its row."""

    def create_with_task(self, image: Image, task: ProcessingTask) -> None:
        """Insert the row and an outbox entry atomically."""
        ...


class TaskProducer(Protocol):
    """Producer side of the task queue."""

    def send_task(self, task: ProcessingTask) -> None:
        """Blocking send keyed by image id; no internal retry."""
        ...

    def send_raw(self, topic: str, key: str, payload: bytes) -> None:
        """Publish an already-encoded payload to an arbitrary topic."""
        ...

    def close(self) -> None:
        ...


class TaskConsumer(Protocol):
    """Consumer side of the task queue, one logical consumer in a group."""

    def fetch(
        self, timeout: Optional[float] = None, stop_event: Optional[threading.Event] = None
    ) -> Optional[QueueMessage]:
        """Return the next uncommitted message, or None if none arrived."""
        ...

    def commit(self, message: QueueMessage) -> None:
        """Acknowledge a fetched message."""
        ...

    def lag(self) -> int:
        """Number of messages still waiting for this consumer."""
        ...

    def close(self) -> None:
        ...


class TaskProcessor(Protocol):
    """Anything that can process a decoded task."""

    def process_image(self, task: ProcessingTask) -> None:
        """Process the task; raises on failure after recording it."""
        ...
