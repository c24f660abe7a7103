"""Relay that publishes outbox entries written alongside registry rows."""

from ..core.exceptions import ImageProcessorError
from ..core.protocols import LoggerProtocol, TaskProducer
from ..storage.registry import SqlImageRegistry


class OutboxRelay:
    """
    Publishes unpublished ``task_outbox`` rows in insertion order.

    An entry is marked published only after the send succeeded, so a crash
    in between causes a duplicate send rather than a lost task.
    """

    def __init__(
        self,
        registry: SqlImageRegistry,
        producer: TaskProducer,
        topic: str,
        logger: LoggerProtocol,
    ):
        self._registry = registry
        self._producer = producer
        self._topic = topic
        self._logger = logger

    def relay_pending(self, batch_size: int = 100) -> int:
        """
        Publish up to ``batch_size`` entries; returns how many were sent.

        Stops at the first send failure so later entries for the same image
        cannot overtake an earlier one.
        """
        sent = 0
        for entry_id, image_id, payload in self._registry.pending_outbox(batch_size):
            try:
                self._producer.send_raw(self._topic, image_id, payload)
            except ImageProcessorError as e:
                self._logger.error(
                    f"Outbox relay stopped at entry {entry_id}",
                    image_id=image_id,
                    error=str(e),
                )
                break
            self._registry.mark_outbox_published(entry_id)
            sent += 1

        if sent:
            self._logger.info(f"Relayed {sent} outbox task(s)")
        return sent
