"""Custom exceptions for the image processor."""

from __future__ import annotations

from typing import Optional


class ImageProcessorError(Exception):
    """Base exception for all image processor errors."""


class ConfigurationError(ImageProcessorError):
    """Error raised for invalid configuration options."""


class InvalidIdError(ImageProcessorError):
    """Error raised when an image id is empty or malformed."""


class InvalidPathError(ImageProcessorError):
    """Error raised when an image has no usable original path."""


class ImageNotFoundError(ImageProcessorError):
    """Error raised when the registry has no row for an image id."""

    def __init__(self, image_id: str, message: Optional[str] = None):
        self.image_id = image_id
        super().__init__(message or f"image not found: {image_id}")


class UnsupportedFormatError(ImageProcessorError):
    """Error raised for file extensions outside jpeg/jpg, png and gif."""


class PayloadTooLargeError(ImageProcessorError):
    """Error raised when an upload exceeds the configured maximum size."""

    def __init__(self, declared_size: int, max_size: int):
        self.declared_size = declared_size
        self.max_size = max_size
        super().__init__(
            f"file size {declared_size} exceeds maximum allowed size {max_size}"
        )


class StoreIOError(ImageProcessorError):
    """Error raised for blob store read/write failures."""


class BlobNotFoundError(StoreIOError):
    """Error raised when a blob path does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"blob not found: {path}")


class RegistryError(ImageProcessorError):
    """Error raised for image registry failures."""


class StaleWriteError(RegistryError):
    """Error raised when a registry update loses a version race."""

    def __init__(self, image_id: str, expected_version: int):
        self.image_id = image_id
        self.expected_version = expected_version
        super().__init__(
            f"stale write for image {image_id}: expected version {expected_version}"
        )


class InvalidTransitionError(ImageProcessorError):
    """Error raised when a status change would move an image backwards."""

    def __init__(self, image_id: str, current: str, target: str):
        self.image_id = image_id
        self.current = current
        self.target = target
        super().__init__(
            f"invalid status transition for image {image_id}: {current} -> {target}"
        )


class DecodeFailureError(ImageProcessorError):
    """Error raised when image bytes cannot be decoded."""


class EncodeFailureError(ImageProcessorError):
    """Error raised when a resized image cannot be encoded."""


class QueueIOError(ImageProcessorError):
    """Error raised for task queue send/fetch/commit failures."""


class TaskDecodeError(QueueIOError):
    """Error raised when a queue payload is not a valid processing task."""
