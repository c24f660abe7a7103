"""Testing utilities and fakes for the image processor."""

from .fakes import (
    FakeS3Client,
    FakeSQSClient,
    FakeLogger,
    InMemoryBlobStore,
    InMemoryImageRegistry,
    InMemoryTaskQueue,
    S3Object,
    S3Bucket,
    create_test_image,
)

__all__ = [
    "FakeS3Client",
    "FakeSQSClient",
    "FakeLogger",
    "InMemoryBlobStore",
    "InMemoryImageRegistry",
    "InMemoryTaskQueue",
    "S3Object",
    "S3Bucket",
    "create_test_image",
]
