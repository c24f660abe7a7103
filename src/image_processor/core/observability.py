"""Observability utilities: log context, structured logger and metrics."""

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Deque, Dict, List, Optional

from .logging_config import setup_logger


def _format_fields(fields: Dict[str, Any]) -> str:
    return ", ".join(f"{key}={value}" for key, value in fields.items())


@dataclass(frozen=True)
class LogContext:
    """
    Correlation data attached to log lines.

    The correlation id is the image id wherever one exists, so every line
    about an image can be found with a single search.
    """

    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    operation: str = ""
    component: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_operation(self, operation: str) -> "LogContext":
        return replace(self, operation=operation, metadata=dict(self.metadata))

    def with_metadata(self, **kwargs: Any) -> "LogContext":
        return replace(self, metadata={**self.metadata, **kwargs})


class StructuredLogger:
    """
    Logger that renders a LogContext into the message.

    Lines look like ``[operation] [correlation_id] message (key=value, ...)``;
    keyword arguments are appended after the context metadata.
    """

    def __init__(self, name: str, level: Optional[str] = None):
        self._logger = setup_logger(name, level=level)

    @property
    def name(self) -> str:
        return self._logger.name

    def _render(self, message: str, context: Optional[LogContext], kwargs: Dict[str, Any]) -> str:
        fields = dict(kwargs)
        if context is not None:
            fields = {**context.metadata, **kwargs}
            message = f"[{context.correlation_id}] {message}"
            if context.operation:
                message = f"[{context.operation}] {message}"
        if fields:
            message = f"{message} ({_format_fields(fields)})"
        return message

    def _log(
        self, level: int, message: str, context: Optional[LogContext], kwargs: Dict[str, Any]
    ) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, self._render(message, context, kwargs))

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, context, kwargs)

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs: Any) -> None:
        self._log(logging.INFO, message, context, kwargs)

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, context, kwargs)

    def error(self, message: str, context: Optional[LogContext] = None, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, context, kwargs)


@dataclass
class PerformanceMetrics:
    """Timing and outcome of one operation."""

    operation: str
    start_time: float
    end_time: float
    success: bool
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000


class MetricsCollector:
    """
    In-process metrics store, safe to share between worker threads.

    Only the most recent ``max_metrics`` entries are kept; summaries cover
    that window.
    """

    def __init__(self, max_metrics: int = 10000) -> None:
        self._metrics: Deque[PerformanceMetrics] = deque(maxlen=max_metrics)
        self._lock = threading.Lock()

    def record_metric(self, metric: PerformanceMetrics) -> None:
        with self._lock:
            self._metrics.append(metric)

    def record(
        self,
        operation: str,
        start_time: float,
        success: bool,
        error_message: Optional[str] = None,
        **metadata: Any,
    ) -> PerformanceMetrics:
        """Record an operation that started at ``start_time`` and ends now."""
        metric = PerformanceMetrics(
            operation=operation,
            start_time=start_time,
            end_time=time.time(),
            success=success,
            error_message=error_message,
            metadata=metadata,
        )
        self.record_metric(metric)
        return metric

    def get_metrics(self, operation: Optional[str] = None) -> List[PerformanceMetrics]:
        with self._lock:
            metrics = list(self._metrics)
        if operation:
            return [m for m in metrics if m.operation == operation]
        return metrics

    def get_summary(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """Counts, success rate and duration statistics; empty when nothing was recorded."""
        metrics = self.get_metrics(operation)
        if not metrics:
            return {}

        durations = sorted(m.duration for m in metrics)
        succeeded = sum(1 for m in metrics if m.success)
        p95_index = min(len(durations) - 1, int(round(0.95 * (len(durations) - 1))))

        return {
            "total_operations": len(metrics),
            "successful_operations": succeeded,
            "failed_operations": len(metrics) - succeeded,
            "success_rate": succeeded / len(metrics),
            "avg_duration": sum(durations) / len(durations),
            "min_duration": durations[0],
            "max_duration": durations[-1],
            "p95_duration": durations[p95_index],
            "total_duration": sum(durations),
        }

    def clear_metrics(self) -> None:
        with self._lock:
            self._metrics.clear()
