"""Consumer loop that feeds queued tasks to the image processor."""

import threading
from typing import Optional

from ..core.exceptions import ImageProcessorError, TaskDecodeError
from ..core.models import ProcessingOutcome, QueueMessage, WorkerStats
from ..core.observability import LogContext, MetricsCollector
from ..core.protocols import LoggerProtocol, TaskConsumer, TaskProcessor, TaskProducer
from .codec import decode_task


class WorkerLoop:
    """
    Fetch one message, decode it, process it, then commit it.

    The commit happens whether processing succeeded or not, so a task is
    never redelivered after it has been handed to the processor. Processor
    errors are logged and counted, never raised. When a dead-letter topic is
    configured the payload of every dropped or failed message is copied
    there before the commit.
    """

    def __init__(
        self,
        consumer: TaskConsumer,
        processor: TaskProcessor,
        logger: LoggerProtocol,
        fetch_timeout: float = 5.0,
        dead_letter_producer: Optional[TaskProducer] = None,
        dead_letter_topic: Optional[str] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        self._consumer = consumer
        self._processor = processor
        self._logger = logger
        self._fetch_timeout = fetch_timeout
        self._dead_letter_producer = dead_letter_producer
        self._dead_letter_topic = dead_letter_topic
        self._metrics_collector = metrics_collector
        self.stats = WorkerStats()

    def run(self, stop_event: threading.Event) -> WorkerStats:
        """
        Loop until ``stop_event`` is set.

        The event is only checked between fetches: a message that has been
        fetched is processed and committed before the loop exits. Fetch and
        commit errors propagate to the caller.
        """
        self._logger.info("Worker loop started")
        while not stop_event.is_set():
            self.run_once(stop_event)
        self._report("Worker loop stopped")
        return self.stats

    def run_once(self, stop_event: Optional[threading.Event] = None) -> ProcessingOutcome:
        """Run a single fetch/decode/process/commit iteration."""
        message = self._consumer.fetch(timeout=self._fetch_timeout, stop_event=stop_event)
        if message is None:
            return ProcessingOutcome.IDLE

        outcome = self._handle(message)
        self._consumer.commit(message)
        self.stats.record(outcome)
        return outcome

    def drain(self) -> WorkerStats:
        """Process messages until a fetch comes back empty."""
        while self.run_once() != ProcessingOutcome.IDLE:
            pass
        self._report("Worker drained the queue")
        return self.stats

    def _handle(self, message: QueueMessage) -> ProcessingOutcome:
        log_context = LogContext(
            correlation_id=message.key or "unknown",
            operation="consume",
            component="worker_loop",
        ).with_metadata(partition=message.partition, offset=message.offset)

        try:
            task = decode_task(message.payload)
        except TaskDecodeError as e:
            self._logger.error(
                "Dropping undecodable message", log_context.with_metadata(error=str(e))
            )
            self._dead_letter(message, log_context)
            return ProcessingOutcome.DROPPED

        try:
            self._processor.process_image(task)
        except ImageProcessorError as e:
            self._logger.error(
                "Task processing failed",
                log_context.with_metadata(error_type=type(e).__name__, error=str(e)),
            )
            self._dead_letter(message, log_context)
            return ProcessingOutcome.FAILED
        except Exception as e:  # noqa: BLE001
            self._logger.error(
                "Unexpected error while processing task",
                log_context.with_metadata(error_type=type(e).__name__, error=str(e)),
            )
            self._dead_letter(message, log_context)
            return ProcessingOutcome.FAILED

        return ProcessingOutcome.PROCESSED

    def _dead_letter(self, message: QueueMessage, log_context: LogContext) -> None:
        if self._dead_letter_producer is None or not self._dead_letter_topic:
            return
        try:
            self._dead_letter_producer.send_raw(
                self._dead_letter_topic, message.key, message.payload
            )
        except ImageProcessorError as e:
            self._logger.error(
                "Could not forward message to dead-letter topic",
                log_context.with_metadata(error=str(e)),
            )

    def _report(self, message: str) -> None:
        """Log the counters, the queue backlog and the processing duration summary."""
        self._logger.info(
            message,
            processed=self.stats.processed,
            failed=self.stats.failed,
            dropped=self.stats.dropped,
            backlog=self._backlog(),
        )
        if self._metrics_collector is None:
            return

        summary = self._metrics_collector.get_summary("process_image")
        if summary:
            self._logger.info(
                "Processing duration summary",
                operations=summary["total_operations"],
                success_rate=round(summary["success_rate"], 3),
                avg_ms=round(summary["avg_duration"] * 1000, 1),
                p95_ms=round(summary["p95_duration"] * 1000, 1),
                max_ms=round(summary["max_duration"] * 1000, 1),
            )
        self._metrics_collector.clear_metrics()

    def _backlog(self) -> Optional[int]:
        try:
            return self._consumer.lag()
        except ImageProcessorError as e:
            self._logger.warning("Could not measure queue backlog", error=str(e))
            return None
