"""Tests for the SQL-backed partitioned task log."""

import threading
import time

import pytest

from image_processor.core.models import ImageFormat, ProcessingTask
from image_processor.messaging.codec import decode_task, partition_for
from image_processor.messaging.sql_queue import SqlTaskConsumer, SqlTaskProducer
from image_processor.storage.schema import create_db_engine, init_schema

TOPIC = "image-processing"
GROUP = "image-processor-group"


def make_task(image_id: str, width: int = 100) -> ProcessingTask:
    return ProcessingTask(
        image_id=image_id,
        image_path=f"original/{image_id}.jpg",
        format=ImageFormat.JPEG,
        width=width,
        height=100,
    )


@pytest.fixture
def producer(engine):
    return SqlTaskProducer(engine, TOPIC, partitions=3)


@pytest.fixture
def consumer(engine):
    return SqlTaskConsumer(engine, TOPIC, GROUP, partitions=3, poll_interval=0.01)


class TestSqlTaskProducer:
    """Tests for SqlTaskProducer."""

    def test_send_task_uses_image_id_as_key(self, producer, consumer):
        producer.send_task(make_task("img-1"))

        message = consumer.fetch()

        assert message.key == "img-1"
        assert message.topic == TOPIC
        assert message.partition == partition_for("img-1", 3)
        assert decode_task(message.payload) == make_task("img-1")

    def test_send_raw_to_other_topic_is_invisible(self, producer, consumer):
        producer.send_raw("dead-letters", "img-1", b"{}")

        assert consumer.fetch() is None


class TestSqlTaskConsumer:
    """Tests for fetch/commit semantics."""

    def test_empty_log_returns_none(self, consumer):
        assert consumer.fetch() is None

    def test_uncommitted_message_is_fetched_again(self, producer, consumer):
        producer.send_task(make_task("img-1"))

        first = consumer.fetch()
        second = consumer.fetch()

        assert first == second

    def test_commit_advances_to_next_message(self, producer, consumer):
        producer.send_task(make_task("img-1", width=1))
        producer.send_task(make_task("img-1", width=2))

        first = consumer.fetch()
        consumer.commit(first)
        second = consumer.fetch()
        consumer.commit(second)

        assert decode_task(first.payload).width == 1
        assert decode_task(second.payload).width == 2
        assert consumer.fetch() is None

    def test_per_key_order_is_preserved(self, producer, consumer):
        for width in range(1, 6):
            producer.send_task(make_task("img-1", width=width))
        producer.send_task(make_task("img-2"))

        widths = []
        while True:
            message = consumer.fetch()
            if message is None:
                break
            if message.key == "img-1":
                widths.append(decode_task(message.payload).width)
            consumer.commit(message)

        assert widths == [1, 2, 3, 4, 5]

    def test_commit_never_moves_backwards(self, producer, consumer):
        producer.send_task(make_task("img-1", width=1))
        producer.send_task(make_task("img-1", width=2))
        first = consumer.fetch()
        consumer.commit(first)
        second = consumer.fetch()
        consumer.commit(second)

        consumer.commit(first)

        assert consumer.fetch() is None
        assert consumer.lag() == 0

    def test_commit_is_idempotent(self, producer, consumer):
        producer.send_task(make_task("img-1"))
        message = consumer.fetch()

        consumer.commit(message)
        consumer.commit(message)

        assert consumer.fetch() is None

    def test_restarted_consumer_resumes_after_commit(self, engine, producer, consumer):
        producer.send_task(make_task("img-1", width=1))
        producer.send_task(make_task("img-1", width=2))
        consumer.commit(consumer.fetch())

        restarted = SqlTaskConsumer(engine, TOPIC, GROUP, partitions=3)

        assert decode_task(restarted.fetch().payload).width == 2

    def test_groups_track_offsets_independently(self, engine, producer, consumer):
        producer.send_task(make_task("img-1"))
        consumer.commit(consumer.fetch())

        other = SqlTaskConsumer(engine, TOPIC, "audit-group", partitions=3)

        assert other.fetch() is not None

    def test_lag_counts_uncommitted_messages(self, producer, consumer):
        for i in range(4):
            producer.send_task(make_task(f"img-{i}"))

        assert consumer.lag() == 4
        consumer.commit(consumer.fetch())
        assert consumer.lag() == 3


class TestPartitionAssignment:
    """Tests for static partition ownership across workers."""

    def test_assigned_partitions(self, engine):
        assert SqlTaskConsumer(engine, TOPIC, GROUP, partitions=5).assigned_partitions == [
            0, 1, 2, 3, 4,
        ]
        consumer = SqlTaskConsumer(
            engine, TOPIC, GROUP, partitions=5, worker_index=1, worker_count=2
        )
        assert consumer.assigned_partitions == [1, 3]

    def test_invalid_worker_index(self, engine):
        with pytest.raises(ValueError):
            SqlTaskConsumer(engine, TOPIC, GROUP, worker_index=2, worker_count=2)

    def test_workers_split_the_log(self, engine, producer):
        keys = [f"img-{i}" for i in range(30)]
        for key in keys:
            producer.send_task(make_task(key))
        workers = [
            SqlTaskConsumer(engine, TOPIC, GROUP, partitions=3, worker_index=i, worker_count=3)
            for i in range(3)
        ]

        seen = {}
        for index, worker in enumerate(workers):
            while True:
                message = worker.fetch()
                if message is None:
                    break
                assert message.partition in worker.assigned_partitions
                seen[message.key] = index
                worker.commit(message)

        assert sorted(seen) == sorted(keys)

    def test_worker_without_partitions_is_idle(self, engine, producer):
        producer.send_task(make_task("img-1"))
        consumer = SqlTaskConsumer(
            engine, TOPIC, GROUP, partitions=2, worker_index=2, worker_count=3
        )

        assert consumer.assigned_partitions == []
        assert consumer.fetch() is None


class TestFetchTimeout:
    """Tests for blocking fetch."""

    def test_timeout_elapses(self, consumer):
        start = time.monotonic()

        assert consumer.fetch(timeout=0.05) is None

        assert time.monotonic() - start >= 0.05

    def test_stop_event_ends_wait(self, consumer):
        stop_event = threading.Event()
        stop_event.set()
        start = time.monotonic()

        assert consumer.fetch(timeout=10, stop_event=stop_event) is None

        assert time.monotonic() - start < 1

    def test_message_arriving_during_wait(self, tmp_path):
        # File database so the sending thread gets its own connection.
        engine = create_db_engine(f"sqlite:///{tmp_path / 'queue.db'}")
        init_schema(engine)
        producer = SqlTaskProducer(engine, TOPIC)
        consumer = SqlTaskConsumer(engine, TOPIC, GROUP, poll_interval=0.01)
        timer = threading.Timer(0.05, producer.send_task, args=(make_task("late"),))
        timer.start()
        try:
            message = consumer.fetch(timeout=5)
        finally:
            timer.join()
            engine.dispose()

        assert message is not None
        assert message.key == "late"
