"""Shared data models for the image processor."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import InvalidIdError, InvalidPathError, InvalidTransitionError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ImageStatus(str, Enum):
    """Lifecycle status of an image."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImageFormat(str, Enum):
    """Supported image formats."""

    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"


# processing -> processing lets a redelivered task resume an image whose
# previous attempt crashed before the queue commit.
ALLOWED_TRANSITIONS: Dict[ImageStatus, FrozenSet[ImageStatus]] = {
    ImageStatus.PENDING: frozenset({ImageStatus.PROCESSING}),
    ImageStatus.PROCESSING: frozenset(
        {ImageStatus.PROCESSING, ImageStatus.COMPLETED, ImageStatus.FAILED}
    ),
    ImageStatus.COMPLETED: frozenset(),
    ImageStatus.FAILED: frozenset(),
}


class Image(BaseModel):
    """Registry row for an uploaded image."""

    model_config = ConfigDict(use_enum_values=False)

    id: str
    original_path: str
    processed_path: str = ""
    thumbnail_path: str = ""
    status: ImageStatus = ImageStatus.PENDING
    format: ImageFormat
    original_width: int
    original_height: int
    processed_width: Optional[int] = None
    processed_height: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 1

    def validate_fields(self) -> None:
        """Check the fields a new row must carry before it is inserted."""
        if not self.id:
            raise InvalidIdError("invalid image id")
        if not self.original_path:
            raise InvalidPathError("invalid image path")

    @property
    def is_terminal(self) -> bool:
        return self.status in (ImageStatus.COMPLETED, ImageStatus.FAILED)

    def can_transition_to(self, status: ImageStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, status: ImageStatus, **changes) -> "Image":
        """
        Return a copy moved to ``status`` with ``updated_at`` refreshed.

        Raises InvalidTransitionError for any move that is not forward along
        pending -> processing -> {completed, failed}. Processed dimensions are
        cleared for every status except completed.
        """
        if not self.can_transition_to(status):
            raise InvalidTransitionError(self.id, self.status.value, status.value)

        update = dict(changes)
        update["status"] = status
        update["updated_at"] = utc_now()
        if status != ImageStatus.COMPLETED:
            update["processed_width"] = None
            update["processed_height"] = None
        return self.model_copy(update=update)


class ProcessingTask(BaseModel):
    """Queue-borne projection of an Image at enqueue time."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    image_id: str = Field(min_length=1)
    image_path: str = Field(min_length=1)
    format: ImageFormat
    width: int
    height: int

    @classmethod
    def from_image(cls, image: Image) -> "ProcessingTask":
        return cls(
            image_id=image.id,
            image_path=image.original_path,
            format=image.format,
            width=image.original_width,
            height=image.original_height,
        )


class ProcessingOutcome(str, Enum):
    """Result of one worker loop iteration."""

    IDLE = "idle"
    PROCESSED = "processed"
    FAILED = "failed"
    DROPPED = "dropped"


class WorkerStats(BaseModel):
    """Counters accumulated by a worker loop run."""

    processed: int = 0
    failed: int = 0
    dropped: int = 0

    def record(self, outcome: ProcessingOutcome) -> None:
        if outcome == ProcessingOutcome.PROCESSED:
            self.processed += 1
        elif outcome == ProcessingOutcome.FAILED:
            self.failed += 1
        elif outcome == ProcessingOutcome.DROPPED:
            self.dropped += 1


class QueueMessage(BaseModel):
    """A message fetched from a task queue, not yet committed."""

    model_config = ConfigDict(frozen=True)

    topic: str
    key: str
    payload: bytes
    partition: int = 0
    offset: int = 0
    # Backend-specific acknowledgement handle (e.g. an SQS receipt handle).
    receipt: str = ""
