"""Tests for wiring components from configuration."""

import pytest

from image_processor.core.config import ServiceConfig
from image_processor.core.factories import LoggerFactory, PipelineFactory
from image_processor.core.observability import StructuredLogger
from image_processor.messaging.sql_queue import SqlTaskConsumer, SqlTaskProducer
from image_processor.messaging.sqs_queue import SqsTaskConsumer, SqsTaskProducer
from image_processor.storage.blob_store import LocalBlobStore, S3BlobStore
from image_processor.testing.fakes import FakeS3Client, FakeSQSClient

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123/images.fifo"


def test_logger_factory_debug_level():
    logger = LoggerFactory.create_logger(
        "test-factory-logger", ServiceConfig.build(debug=True)
    )

    assert isinstance(logger, StructuredLogger)
    assert logger.name == "test-factory-logger"


class TestPipelineFactory:
    """Tests for PipelineFactory.create_pipeline."""

    def test_default_backends(self, tmp_path):
        config = ServiceConfig.build(
            storage={"base_path": str(tmp_path)}, database={"url": "sqlite://"}
        )

        pipeline = PipelineFactory.create_pipeline(config)
        try:
            assert isinstance(pipeline.blob_store, LocalBlobStore)
            assert isinstance(pipeline.producer, SqlTaskProducer)
            assert isinstance(pipeline.create_consumer(), SqlTaskConsumer)
            assert pipeline.registry.list(10, 0) == []
        finally:
            pipeline.close()

    def test_worker_slot_from_config(self, tmp_path):
        config = ServiceConfig.build(
            storage={"base_path": str(tmp_path)},
            database={"url": "sqlite://"},
            queue={"partitions": 4, "worker_index": 1, "worker_count": 2},
        )

        pipeline = PipelineFactory.create_pipeline(config)
        try:
            assert pipeline.create_consumer().assigned_partitions == [1, 3]
        finally:
            pipeline.close()

    def test_aws_backends(self):
        s3_client = FakeS3Client()
        s3_client.create_bucket("images")
        sqs_client = FakeSQSClient()
        config = ServiceConfig.build(
            storage={"backend": "s3", "s3_bucket": "images"},
            database={"url": "sqlite://"},
            queue={
                "backend": "sqs",
                "sqs_queue_url": QUEUE_URL,
                "dead_letter_topic": "dlq",
                "sqs_dead_letter_url": QUEUE_URL + "-dlq",
            },
        )

        pipeline = PipelineFactory.create_pipeline(
            config, s3_client=s3_client, sqs_client=sqs_client
        )
        try:
            assert isinstance(pipeline.blob_store, S3BlobStore)
            assert isinstance(pipeline.producer, SqsTaskProducer)
            assert isinstance(pipeline.create_consumer(), SqsTaskConsumer)

            pipeline.producer.send_raw("dlq", "img-1", b"{}")
            assert len(sqs_client.queues[QUEUE_URL + "-dlq"]) == 1
        finally:
            pipeline.close()

    @pytest.mark.parametrize("dead_letter_topic", [None, "dlq"])
    def test_worker_dead_letter_wiring(self, tmp_path, dead_letter_topic):
        config = ServiceConfig.build(
            storage={"base_path": str(tmp_path)},
            database={"url": "sqlite://"},
            queue={"dead_letter_topic": dead_letter_topic, "fetch_timeout": 0.2},
        )

        pipeline = PipelineFactory.create_pipeline(config)
        try:
            worker = pipeline.create_worker()
            assert worker._dead_letter_topic == dead_letter_topic
            assert (worker._dead_letter_producer is pipeline.producer) == bool(dead_letter_topic)
            assert worker._fetch_timeout == 0.2
            assert worker._metrics_collector is pipeline.metrics
        finally:
            pipeline.close()

    def test_outbox_relay(self, tmp_path):
        config = ServiceConfig.build(
            storage={"base_path": str(tmp_path)}, database={"url": "sqlite://"}
        )

        pipeline = PipelineFactory.create_pipeline(config)
        try:
            assert pipeline.create_outbox_relay().relay_pending() == 0
        finally:
            pipeline.close()
