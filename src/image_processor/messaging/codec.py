"""JSON wire format for processing tasks."""

import zlib

from pydantic import ValidationError

from ..core.exceptions import TaskDecodeError
from ..core.models import ProcessingTask


def encode_task(task: ProcessingTask) -> bytes:
    """Serialize a task as a JSON object with the five task fields."""
    return task.model_dump_json().encode("utf-8")


def decode_task(payload: bytes) -> ProcessingTask:
    """
    Parse a queue payload into a task.

    Raises:
        TaskDecodeError: If the payload is not JSON or misses/extends fields
    """
    try:
        return ProcessingTask.model_validate_json(payload)
    except (ValidationError, ValueError) as e:
        raise TaskDecodeError(f"invalid task payload: {e}") from e


def partition_for(key: str, partitions: int) -> int:
    """Stable partition for a message key."""
    return zlib.crc32(key.encode("utf-8")) % partitions
