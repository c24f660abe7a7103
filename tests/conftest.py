"""Shared fixtures for the image processor test suite."""

import pytest

from image_processor.core.config import ServiceConfig
from image_processor.storage.schema import create_db_engine, init_schema
from image_processor.testing.fakes import (
    FakeLogger,
    InMemoryBlobStore,
    InMemoryImageRegistry,
    InMemoryTaskQueue,
)


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with all tables created."""
    engine = create_db_engine("sqlite://")
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def config():
    return ServiceConfig()


@pytest.fixture
def fake_logger():
    return FakeLogger()


@pytest.fixture
def registry():
    return InMemoryImageRegistry()


@pytest.fixture
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture
def task_queue():
    return InMemoryTaskQueue()
