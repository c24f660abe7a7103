"""Decorators and helpers that translate third-party failures into our errors."""

import functools
import logging
from typing import Any, Callable, Dict, List, Tuple, Type, TypeVar

from botocore.exceptions import BotoCoreError, ClientError as BotocoreClientError
from PIL import UnidentifiedImageError as PILUnidentifiedImageError
from PIL.Image import DecompressionBombError
from sqlalchemy.exc import SQLAlchemyError

from .exceptions import (
    DecodeFailureError,
    ImageProcessorError,
    QueueIOError,
    RegistryError,
    StoreIOError,
)

F = TypeVar("F", bound=Callable[..., Any])

NOT_FOUND_ERROR_CODES = ("NoSuchKey", "404", "NotFound")


def is_not_found_error(exc: BaseException) -> bool:
    """Return True if a botocore ClientError reports a missing object."""
    if not isinstance(exc, BotocoreClientError):
        return False
    code = exc.response.get("Error", {}).get("Code")
    return code in NOT_FOUND_ERROR_CODES


def translate_errors(
    operation: str,
    source: Tuple[Type[BaseException], ...],
    target: Type[ImageProcessorError],
) -> Callable[[F], F]:
    """
    Wrap a function so that ``source`` exceptions surface as ``target``.

    Errors that are already ``ImageProcessorError`` pass through untouched, so
    callers can raise precise errors (e.g. not found) from inside the wrapped
    function. The original exception is chained as ``__cause__``.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            logger = logging.getLogger(func.__module__ + "." + func.__qualname__)
            try:
                return func(*args, **kwargs)
            except ImageProcessorError:
                raise
            except source as e:
                logger.error(f"Error in '{operation}': {e}", exc_info=True)
                raise target(f"{operation} failed: {e}") from e

        return wrapper  # type: ignore[return-value]

    return decorator


def with_store_errors(operation: str) -> Callable[[F], F]:
    """Translate S3 and filesystem failures into StoreIOError."""
    return translate_errors(
        operation, (BotocoreClientError, BotoCoreError, OSError), StoreIOError
    )


def with_registry_errors(operation: str) -> Callable[[F], F]:
    """Translate SQLAlchemy failures into RegistryError."""
    return translate_errors(operation, (SQLAlchemyError,), RegistryError)


def with_queue_errors(operation: str) -> Callable[[F], F]:
    """Translate broker failures (SQL log or SQS) into QueueIOError."""
    return translate_errors(
        operation,
        (SQLAlchemyError, BotocoreClientError, BotoCoreError),
        QueueIOError,
    )


def with_decode_errors(operation: str) -> Callable[[F], F]:
    """Translate Pillow decode failures into DecodeFailureError."""
    return translate_errors(
        operation,
        (
            PILUnidentifiedImageError,
            DecompressionBombError,
            OSError,
            SyntaxError,
            ValueError,
        ),
        DecodeFailureError,
    )


class BestEffortContextManager:
    """
    Context manager for best-effort cleanup steps.

    Failures reported through ``add_error`` are logged as warnings on exit
    and never raised; exceptions escaping the block still propagate.
    """

    def __init__(self, operation_name: str = "Cleanup"):
        self.operation_name = operation_name
        self.errors: List[Dict[str, str]] = []
        self.logger = logging.getLogger(
            self.__class__.__module__ + "." + self.__class__.__name__
        )

    def __enter__(self) -> "BestEffortContextManager":
        self.logger.debug(f"Starting {self.operation_name}.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self.errors:
            self.logger.warning(
                f"{self.operation_name} completed with {len(self.errors)} error(s)."
            )
            for i, error_detail in enumerate(self.errors):
                self.logger.warning(
                    f"  Error {i + 1}/{len(self.errors)} for item "
                    f"'{error_detail['item']}': {error_detail['error']}"
                )
        elif exc_type is None:
            self.logger.debug(f"{self.operation_name} completed successfully.")
        return False

    def attempt(self, item_identifier: str, func: Callable[[], Any]) -> bool:
        """Run ``func``; record any ImageProcessorError instead of raising it."""
        try:
            func()
            return True
        except ImageProcessorError as e:
            self.add_error(str(e), item_identifier)
            return False

    def add_error(self, error_message: str, item_identifier: str = "Unknown item") -> None:
        """Report an error for a specific item without aborting the block."""
        self.errors.append({"item": item_identifier, "error": str(error_message)})
