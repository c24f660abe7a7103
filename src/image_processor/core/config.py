"""Service configuration, built once and passed into each component."""

import os
from typing import Callable, Literal, Mapping, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError, model_validator

from .exceptions import ConfigurationError

T = TypeVar("T")

TRUE_VALUES = ("1", "true", "t", "yes", "y", "on")
FALSE_VALUES = ("0", "false", "f", "no", "n", "off")


class ImageSettings(BaseModel):
    """Upload limits and resize targets."""

    max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)
    processed_width: int = Field(default=800, gt=0)
    processed_height: int = Field(default=800, gt=0)
    thumbnail_width: int = Field(default=200, gt=0)
    thumbnail_height: int = Field(default=200, gt=0)
    jpeg_quality: int = Field(default=90, ge=1, le=100)
    # Accepted for compatibility; the overlay is never applied.
    watermark_enabled: bool = False
    watermark_path: str = ""


class StorageSettings(BaseModel):
    """Blob store backend selection."""

    backend: Literal["local", "s3"] = "local"
    base_path: str = "./storage"
    s3_bucket: str = ""
    s3_prefix: str = ""

    @model_validator(mode="after")
    def _check_backend(self) -> "StorageSettings":
        if self.backend == "local" and not self.base_path:
            raise ValueError("storage base path is required")
        if self.backend == "s3" and not self.s3_bucket:
            raise ValueError("s3 bucket is required for the s3 storage backend")
        return self


class DatabaseSettings(BaseModel):
    """Image registry connection."""

    url: str = "sqlite:///./imageprocessor.db"
    echo: bool = False


class QueueSettings(BaseModel):
    """Task queue backend and consumer group."""

    backend: Literal["sql", "sqs"] = "sql"
    topic: str = Field(default="image-processing", min_length=1)
    consumer_group: str = Field(default="image-processor-group", min_length=1)
    partitions: int = Field(default=3, gt=0)
    poll_interval: float = Field(default=0.5, gt=0)
    fetch_timeout: float = Field(default=5.0, gt=0)
    sqs_queue_url: str = ""
    sqs_dead_letter_url: str = ""
    dead_letter_topic: Optional[str] = None
    worker_index: int = Field(default=0, ge=0)
    worker_count: int = Field(default=1, gt=0)

    @model_validator(mode="after")
    def _check_backend(self) -> "QueueSettings":
        if self.backend == "sqs" and not self.sqs_queue_url:
            raise ValueError("queue url is required for the sqs queue backend")
        if self.worker_index >= self.worker_count:
            raise ValueError("worker index must be lower than worker count")
        return self


class ServiceConfig(BaseModel):
    """Complete configuration for ingestion, worker and stores."""

    image: ImageSettings = Field(default_factory=ImageSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    outbox_enabled: bool = False
    list_max_limit: int = Field(default=100, gt=0)
    list_default_limit: int = Field(default=50, gt=0)
    debug: bool = False

    @classmethod
    def build(cls, **values) -> "ServiceConfig":
        """Construct a config, surfacing validation problems as ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"config validation failed: {e}") from e

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServiceConfig":
        """
        Load configuration from environment variables.

        Unset or empty variables fall back to defaults; values that are set
        but cannot be parsed raise ConfigurationError.
        """
        env = EnvReader(os.environ if environ is None else environ)

        return cls.build(
            image=dict(
                max_file_size=env.get_int("IMAGE_MAX_FILE_SIZE", 10 * 1024 * 1024),
                processed_width=env.get_int("IMAGE_PROCESSED_WIDTH", 800),
                processed_height=env.get_int("IMAGE_PROCESSED_HEIGHT", 800),
                thumbnail_width=env.get_int("IMAGE_THUMBNAIL_WIDTH", 200),
                thumbnail_height=env.get_int("IMAGE_THUMBNAIL_HEIGHT", 200),
                jpeg_quality=env.get_int("IMAGE_JPEG_QUALITY", 90),
                watermark_enabled=env.get_bool("IMAGE_WATERMARK_ENABLED", False),
                watermark_path=env.get_str("IMAGE_WATERMARK_PATH", ""),
            ),
            storage=dict(
                backend=env.get_str("STORAGE_BACKEND", "local"),
                base_path=env.get_str("STORAGE_BASE_PATH", "./storage"),
                s3_bucket=env.get_str("STORAGE_S3_BUCKET", ""),
                s3_prefix=env.get_str("STORAGE_S3_PREFIX", ""),
            ),
            database=dict(
                url=env.get_str("DATABASE_URL", "sqlite:///./imageprocessor.db"),
                echo=env.get_bool("DATABASE_ECHO", False),
            ),
            queue=dict(
                backend=env.get_str("QUEUE_BACKEND", "sql"),
                topic=env.get_str("QUEUE_TOPIC", env.get_str("KAFKA_TOPIC", "image-processing")),
                consumer_group=env.get_str(
                    "QUEUE_CONSUMER_GROUP",
                    env.get_str("KAFKA_CONSUMER_GROUP", "image-processor-group"),
                ),
                partitions=env.get_int("QUEUE_PARTITIONS", 3),
                poll_interval=env.get_float("QUEUE_POLL_INTERVAL", 0.5),
                fetch_timeout=env.get_float("QUEUE_FETCH_TIMEOUT", 5.0),
                sqs_queue_url=env.get_str("QUEUE_SQS_URL", ""),
                sqs_dead_letter_url=env.get_str("QUEUE_SQS_DEAD_LETTER_URL", ""),
                dead_letter_topic=env.get_str("QUEUE_DEAD_LETTER_TOPIC", "") or None,
                worker_index=env.get_int("WORKER_INDEX", 0),
                worker_count=env.get_int("WORKER_COUNT", 1),
            ),
            outbox_enabled=env.get_bool("OUTBOX_ENABLED", False),
            list_max_limit=env.get_int("LIST_MAX_LIMIT", 100),
            debug=env.get_bool("DEBUG", False),
        )


class EnvReader:
    """Typed access to an environment mapping."""

    def __init__(self, environ: Mapping[str, str]):
        self._environ = environ

    def _get(self, key: str, default: T, parse: Callable[[str], T]) -> T:
        raw = self._environ.get(key, "")
        if raw == "":
            return default
        try:
            return parse(raw.strip())
        except ValueError as e:
            raise ConfigurationError(f"invalid value for {key}: {raw!r}") from e

    def get_str(self, key: str, default: str) -> str:
        return self._get(key, default, lambda raw: raw)

    def get_int(self, key: str, default: int) -> int:
        return self._get(key, default, int)

    def get_float(self, key: str, default: float) -> float:
        return self._get(key, default, float)

    def get_bool(self, key: str, default: bool) -> bool:
        return self._get(key, default, _parse_bool)


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {raw}")
