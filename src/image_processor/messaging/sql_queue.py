"""Durable, partitioned task log stored in the registry database."""

import threading
import time
from typing import List, Optional

from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.engine import Connection, Engine

from ..core.error_handling import with_queue_errors
from ..core.logging_config import get_logger
from ..core.models import ProcessingTask, QueueMessage, utc_now
from ..storage.schema import consumer_offsets, task_messages
from .codec import encode_task, partition_for


class SqlTaskProducer:
    """
    Appends tasks to the ``task_messages`` log.

    The image id is the message key, so every task for one image lands in
    the same partition and keeps its submission order.
    """

    def __init__(self, engine: Engine, topic: str, partitions: int = 3):
        self._engine = engine
        self._topic = topic
        self._partitions = partitions
        self._logger = get_logger("image-processor.queue")

    @property
    def topic(self) -> str:
        return self._topic

    def send_task(self, task: ProcessingTask) -> None:
        self.send_raw(self._topic, task.image_id, encode_task(task))

    @with_queue_errors("send message")
    def send_raw(self, topic: str, key: str, payload: bytes) -> None:
        partition = partition_for(key, self._partitions)
        with self._engine.begin() as conn:
            conn.execute(
                insert(task_messages).values(
                    topic=topic,
                    partition=partition,
                    message_key=key,
                    payload=payload,
                    created_at=utc_now(),
                )
            )
        self._logger.debug(f"Appended message key={key} to {topic}[{partition}]")

    def close(self) -> None:
        """Nothing to release; the engine belongs to the caller."""


class SqlTaskConsumer:
    """
    One consumer of a consumer group reading the ``task_messages`` log.

    Partitions are assigned statically: this consumer owns every partition
    ``p`` with ``p % worker_count == worker_index``. Committed offsets live
    in ``consumer_offsets`` per (group, topic, partition).
    """

    def __init__(
        self,
        engine: Engine,
        topic: str,
        group: str,
        partitions: int = 3,
        poll_interval: float = 0.5,
        worker_index: int = 0,
        worker_count: int = 1,
    ):
        if not 0 <= worker_index < worker_count:
            raise ValueError("worker_index must be in [0, worker_count)")
        self._engine = engine
        self._topic = topic
        self._group = group
        self._poll_interval = poll_interval
        self._partitions: List[int] = [
            p for p in range(partitions) if p % worker_count == worker_index
        ]
        self._logger = get_logger("image-processor.queue")

    @property
    def assigned_partitions(self) -> List[int]:
        return list(self._partitions)

    @property
    def group(self) -> str:
        return self._group

    def fetch(
        self, timeout: Optional[float] = None, stop_event: Optional[threading.Event] = None
    ) -> Optional[QueueMessage]:
        """
        Return the oldest uncommitted message across owned partitions.

        Polls until a message is available, ``timeout`` seconds pass, or
        ``stop_event`` is set. ``timeout=None`` checks exactly once.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            message = self._fetch_once()
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
    def _fetch_once(self) -> Optional[QueueMessage]:
        if not self._partitions:
            return None

        committed = (
            select(
                consumer_offsets.c.partition,
                consumer_offsets.c.committed_offset,
            )
            .where(consumer_offsets.c.group_name == self._group)
            .where(consumer_offsets.c.topic == self._topic)
            .subquery()
        )
        query = (
            select(task_messages)
            .outerjoin(committed, committed.c.partition == task_messages.c.partition)
            .where(task_messages.c.topic == self._topic)
            .where(task_messages.c.partition.in_(self._partitions))
            .where(
                or_(
                    committed.c.committed_offset.is_(None),
                    task_messages.c.offset > committed.c.committed_offset,
                )
            )
            .order_by(task_messages.c.offset)
            .limit(1)
        )
        with self._engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        if row is None:
            return None
        return QueueMessage(
            topic=row["topic"],
            key=row["message_key"],
            payload=bytes(row["payload"]),
            partition=row["partition"],
            offset=row["offset"],
        )

    @with_queue_errors("commit message")
    def commit(self, message: QueueMessage) -> None:
        """Advance the group offset to ``message.offset``; never moves it back."""
        with self._engine.begin() as conn:
            if not self._advance(conn, message):
                conn.execute(
                    insert(consumer_offsets).values(
                        group_name=self._group,
                        topic=message.topic,
                        partition=message.partition,
                        committed_offset=message.offset,
                    )
                )
        self._logger.debug(
            f"Committed {message.topic}[{message.partition}]@{message.offset} "
            f"for group {self._group}"
        )

    def _advance(self, conn: Connection, message: QueueMessage) -> bool:
        row = conn.execute(
            select(consumer_offsets.c.committed_offset).where(
                and_(
                    consumer_offsets.c.group_name == self._group,
                    consumer_offsets.c.topic == message.topic,
                    consumer_offsets.c.partition == message.partition,
                )
            )
        ).first()
        if row is None:
            return False
        if row[0] < message.offset:
            conn.execute(
                update(consumer_offsets)
                .where(consumer_offsets.c.group_name == self._group)
                .where(consumer_offsets.c.topic == message.topic)
                .where(consumer_offsets.c.partition == message.partition)
                .where(consumer_offsets.c.committed_offset < message.offset)
                .values(committed_offset=message.offset)
            )
        return True

    @with_queue_errors("measure lag")
    def lag(self) -> int:
        """Number of uncommitted messages in the owned partitions."""
        total = 0
        with self._engine.connect() as conn:
            for partition in self._partitions:
                committed = conn.execute(
                    select(consumer_offsets.c.committed_offset)
                    .where(consumer_offsets.c.group_name == self._group)
                    .where(consumer_offsets.c.topic == self._topic)
                    .where(consumer_offsets.c.partition == partition)
                ).scalar()
                query = (
                    select(func.count())
                    .select_from(task_messages)
                    .where(task_messages.c.topic == self._topic)
                    .where(task_messages.c.partition == partition)
                )
                if committed is not None:
                    query = query.where(task_messages.c.offset > committed)
                total += conn.execute(query).scalar_one()
        return total

    def close(self) -> None:
        """Nothing to release; the engine belongs to the caller."""
