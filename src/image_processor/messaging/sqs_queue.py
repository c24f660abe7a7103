"""Task queue on an SQS FIFO queue."""

import threading
import time
import uuid
from typing import Dict, Optional

from ..core.error_handling import with_queue_errors
from ..core.exceptions import QueueIOError
from ..core.logging_config import get_logger
from ..core.models import ProcessingTask, QueueMessage
from ..core.protocols import SQSClientProtocol
from .codec import encode_task

# SQS long polling accepts at most 20 seconds per receive call.
MAX_WAIT_SECONDS = 20
LAG_ATTRIBUTES = ["ApproximateNumberOfMessages", "ApproximateNumberOfMessagesNotVisible"]


class SqsTaskProducer:
    """
    Sends tasks to a FIFO queue with the image id as message group.

    Messages in one group are delivered in order, which gives the same
    per-image ordering as a partition key. ``topics`` maps extra topic names
    (e.g. a dead-letter topic) to their queue URLs.
    """

    def __init__(
        self,
        sqs_client: SQSClientProtocol,
        queue_url: str,
        topic: str,
        topics: Optional[Dict[str, str]] = None,
    ):
        self._sqs_client = sqs_client
        self._topic = topic
        self._queue_urls: Dict[str, str] = {topic: queue_url, **(topics or {})}
        self._logger = get_logger("image-processor.queue")

    def send_task(self, task: ProcessingTask) -> None:
        self.send_raw(self._topic, task.image_id, encode_task(task))

    @with_queue_errors("send message")
    def send_raw(self, topic: str, key: str, payload: bytes) -> None:
        queue_url = self._queue_urls.get(topic)
        if queue_url is None:
            raise QueueIOError(f"no queue url configured for topic {topic}")
        self._sqs_client.send_message(
            QueueUrl=queue_url,
            MessageBody=payload.decode("utf-8"),
            MessageGroupId=key,
            MessageDeduplicationId=uuid.uuid4().hex,
        )
        self._logger.debug(f"Sent message key={key} to {topic}")

    def close(self) -> None:
        """The boto3 client is shared; nothing to release here."""


class SqsTaskConsumer:
    """
    Receives one message at a time; committing deletes it from the queue.

    SQS has no consumer groups: every consumer on the queue competes for
    messages, and a message not deleted before its visibility timeout is
    redelivered.
    """

    def __init__(
        self,
        sqs_client: SQSClientProtocol,
        queue_url: str,
        topic: str,
        group: str = "",
        poll_interval: float = 0.5,
    ):
        self._sqs_client = sqs_client
        self._queue_url = queue_url
        self._topic = topic
        self._poll_interval = poll_interval
        self._logger = get_logger("image-processor.queue")
        if group:
            self._logger.info(
                f"SQS has no consumer groups; group '{group}' is informational only"
            )

    def fetch(
        self, timeout: Optional[float] = None, stop_event: Optional[threading.Event] = None
    ) -> Optional[QueueMessage]:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = 0.0 if deadline is None else max(0.0, deadline - time.monotonic())
            message = self._receive(min(int(remaining), MAX_WAIT_SECONDS))
            if message is not None:
                return message
            if deadline is None or time.monotonic() >= deadline:
                return None
            if stop_event is not None:
                if stop_event.wait(self._poll_interval):
                    return None
            else:
                time.sleep(self._poll_interval)

    @with_queue_errors("fetch message")
    def _receive(self, wait_seconds: int) -> Optional[QueueMessage]:
        response = self._sqs_client.receive_message(
            QueueUrl=self._queue_url,
            MaxNumberOfMessages=1,
            WaitTimeSeconds=wait_seconds,
            AttributeNames=["MessageGroupId", "SequenceNumber"],
        )
        messages = response.get("Messages", [])
        if not messages:
            return None
        raw = messages[0]
        attributes = raw.get("Attributes", {})
        return QueueMessage(
            topic=self._topic,
            key=attributes.get("MessageGroupId", ""),
            payload=raw["Body"].encode("utf-8"),
            offset=int(attributes.get("SequenceNumber", 0)),
            receipt=raw["ReceiptHandle"],
        )

    @with_queue_errors("commit message")
    def commit(self, message: QueueMessage) -> None:
        self._sqs_client.delete_message(
            QueueUrl=self._queue_url, ReceiptHandle=message.receipt
        )

    @with_queue_errors("measure lag")
    def lag(self) -> int:
        """Approximate count of visible plus in-flight messages on the queue."""
        response = self._sqs_client.get_queue_attributes(
            QueueUrl=self._queue_url, AttributeNames=LAG_ATTRIBUTES
        )
        attributes = response.get("Attributes", {})
        return sum(int(attributes.get(name, 0)) for name in LAG_ATTRIBUTES)

    def close(self) -> None:
        """The boto3 client is shared; nothing to release here."""
