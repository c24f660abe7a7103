"""Core models, configuration and shared utilities for the image processor."""

from .config import ServiceConfig, ImageSettings, StorageSettings, DatabaseSettings, QueueSettings
from .exceptions import (
    ImageProcessorError,
    ConfigurationError,
    InvalidIdError,
    InvalidPathError,
    ImageNotFoundError,
    UnsupportedFormatError,
    PayloadTooLargeError,
    StoreIOError,
    BlobNotFoundError,
    RegistryError,
    StaleWriteError,
    InvalidTransitionError,
    DecodeFailureError,
    EncodeFailureError,
    QueueIOError,
    TaskDecodeError,
)
from .logging_config import get_logger, setup_logger, configure_worker_logging
from .models import (
    Image,
    ImageFormat,
    ImageStatus,
    ProcessingOutcome,
    ProcessingTask,
    QueueMessage,
    WorkerStats,
)

__all__ = [
    "ServiceConfig",
    "ImageSettings",
    "StorageSettings",
    "DatabaseSettings",
    "QueueSettings",
    "ImageProcessorError",
    "ConfigurationError",
    "InvalidIdError",
    "InvalidPathError",
    "ImageNotFoundError",
    "UnsupportedFormatError",
    "PayloadTooLargeError",
    "StoreIOError",
    "BlobNotFoundError",
    "RegistryError",
    "StaleWriteError",
    "InvalidTransitionError",
    "DecodeFailureError",
    "EncodeFailureError",
    "QueueIOError",
    "TaskDecodeError",
    "get_logger",
    "setup_logger",
    "configure_worker_logging",
    "Image",
    "ImageFormat",
    "ImageStatus",
    "ProcessingOutcome",
    "ProcessingTask",
    "QueueMessage",
    "WorkerStats",
]
