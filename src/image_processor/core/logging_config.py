"""Logging setup shared by the CLI, the ingestion service and the workers."""

import os
import sys
import logging
import threading
from typing import Optional, TextIO

STRUCTURED_FORMAT = (
    "%(asctime)s | %(name)s | %(levelname)-8s | "
    "%(threadName)s | %(filename)s:%(lineno)d | %(message)s"
)
SIMPLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "image-processor"


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, name, logging.INFO)


def _resolve_stream() -> TextIO:
    # Commands that print JSON set LOG_STREAM=stderr to keep stdout parseable.
    if os.getenv("LOG_STREAM", "stdout").lower() == "stderr":
        return sys.stderr
    return sys.stdout


def _build_formatter(format_type: str) -> logging.Formatter:
    if os.getenv("LOG_FORMAT", format_type).lower() == "structured":
        return logging.Formatter(STRUCTURED_FORMAT, datefmt=DATE_FORMAT)
    return logging.Formatter(SIMPLE_FORMAT)


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Optional[str] = None,
    format_type: str = "structured",
) -> logging.Logger:
    """
    Configure and return the named logger.

    The level is taken from ``level``, else ``LOG_LEVEL``, else INFO; an
    unknown level name falls back to INFO. A single stream handler is
    attached the first time a name is configured, and records do not
    propagate to the root logger.

    Environment Variables:
        LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL
        LOG_FORMAT: "structured" or "simple", overrides ``format_type``
        LOG_STREAM: "stdout" (default) or "stderr"
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))

    if not logger.handlers:
        handler = logging.StreamHandler(_resolve_stream())
        handler.setFormatter(_build_formatter(format_type))
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Logger for a component, configured from the environment."""
    return setup_logger(name)


def configure_worker_logging(worker_index: int = 0) -> logging.Logger:
    """
    Logger for one worker of a consumer group.

    The name carries the worker slot and thread, so output from several
    workers sharing a terminal or log file can be told apart.
    """
    thread_name = threading.current_thread().name
    return setup_logger(f"{ROOT_LOGGER_NAME}.worker-{worker_index}.{thread_name}")
