"""Factory classes for wiring configured service instances."""

from dataclasses import dataclass
from typing import Any, Optional

import boto3
from sqlalchemy.engine import Engine

from ..messaging.outbox import OutboxRelay
from ..messaging.sql_queue import SqlTaskConsumer, SqlTaskProducer
from ..messaging.sqs_queue import SqsTaskConsumer, SqsTaskProducer
from ..messaging.worker import WorkerLoop
from ..storage.blob_store import LocalBlobStore, S3BlobStore
from ..storage.registry import SqlImageRegistry
from ..storage.schema import create_db_engine, init_schema
from .config import ServiceConfig
from .observability import MetricsCollector, StructuredLogger
from .protocols import (
    BlobStore,
    LoggerProtocol,
    S3ClientProtocol,
    SQSClientProtocol,
    TaskConsumer,
    TaskProducer,
)
from .services import ImageProcessingService, IngestionService


class LoggerFactory:
    """Factory for creating logger instances."""

    @staticmethod
    def create_logger(name: str, config: Optional[ServiceConfig] = None) -> LoggerProtocol:
        level = "DEBUG" if config is not None and config.debug else None
        return StructuredLogger(name, level=level)


class AwsClientFactory:
    """Factory for boto3 clients."""

    @staticmethod
    def create_s3_client(**kwargs: Any) -> S3ClientProtocol:
        session = boto3.Session()
        return session.client("s3", **kwargs)  # type: ignore[return-value]

    @staticmethod
    def create_sqs_client(**kwargs: Any) -> SQSClientProtocol:
        session = boto3.Session()
        return session.client("sqs", **kwargs)  # type: ignore[return-value]


@dataclass
class Pipeline:
    """All components of one process, sharing the same stores."""

    config: ServiceConfig
    engine: Engine
    registry: SqlImageRegistry
    blob_store: BlobStore
    producer: TaskProducer
    ingestion: IngestionService
    processor: ImageProcessingService
    metrics: MetricsCollector
    logger: LoggerProtocol
    s3_client: Optional[S3ClientProtocol] = None
    sqs_client: Optional[SQSClientProtocol] = None

    def create_consumer(self) -> TaskConsumer:
        """A consumer for this worker's slot in the consumer group."""
        queue = self.config.queue
        if queue.backend == "sqs":
            return SqsTaskConsumer(
                self.sqs_client,  # type: ignore[arg-type]
                queue.sqs_queue_url,
                topic=queue.topic,
                group=queue.consumer_group,
                poll_interval=queue.poll_interval,
            )
        return SqlTaskConsumer(
            self.engine,
            topic=queue.topic,
            group=queue.consumer_group,
            partitions=queue.partitions,
            poll_interval=queue.poll_interval,
            worker_index=queue.worker_index,
            worker_count=queue.worker_count,
        )

    def create_worker(self, consumer: Optional[TaskConsumer] = None) -> WorkerLoop:
        queue = self.config.queue
        return WorkerLoop(
            consumer=consumer or self.create_consumer(),
            processor=self.processor,
            logger=LoggerFactory.create_logger("image-processor.worker", self.config),
            fetch_timeout=queue.fetch_timeout,
            dead_letter_producer=self.producer if queue.dead_letter_topic else None,
            dead_letter_topic=queue.dead_letter_topic,
            metrics_collector=self.metrics,
        )

    def create_outbox_relay(self) -> OutboxRelay:
        return OutboxRelay(
            registry=self.registry,
            producer=self.producer,
            topic=self.config.queue.topic,
            logger=LoggerFactory.create_logger("image-processor.outbox", self.config),
        )

    def close(self) -> None:
        self.producer.close()
        self.engine.dispose()


class PipelineFactory:
    """Factory for creating the complete pipeline from configuration."""

    @staticmethod
    def create_pipeline(
        config: ServiceConfig,
        engine: Optional[Engine] = None,
        s3_client: Optional[S3ClientProtocol] = None,
        sqs_client: Optional[SQSClientProtocol] = None,
        blob_store: Optional[BlobStore] = None,
        producer: Optional[TaskProducer] = None,
        create_schema: bool = True,
    ) -> Pipeline:
        """Create a fully configured pipeline; explicit arguments override config."""
        if engine is None:
            engine = create_db_engine(config.database.url, echo=config.database.echo)
        if create_schema:
            init_schema(engine)

        logger = LoggerFactory.create_logger("image-processor", config)

        if blob_store is None:
            if config.storage.backend == "s3":
                if s3_client is None:
                    s3_client = AwsClientFactory.create_s3_client()
                blob_store = S3BlobStore(
                    s3_client, config.storage.s3_bucket, config.storage.s3_prefix
                )
            else:
                blob_store = LocalBlobStore(config.storage.base_path)

        queue = config.queue
        if queue.backend == "sqs" and sqs_client is None:
            sqs_client = AwsClientFactory.create_sqs_client()
        if producer is None:
            if queue.backend == "sqs":
                topics = {}
                if queue.dead_letter_topic and queue.sqs_dead_letter_url:
                    topics[queue.dead_letter_topic] = queue.sqs_dead_letter_url
                producer = SqsTaskProducer(
                    sqs_client,  # type: ignore[arg-type]
                    queue.sqs_queue_url,
                    queue.topic,
                    topics=topics,
                )
            else:
                producer = SqlTaskProducer(engine, queue.topic, queue.partitions)

        registry = SqlImageRegistry(engine)
        metrics = MetricsCollector()

        ingestion = IngestionService(
            registry=registry,
            blob_store=blob_store,
            producer=producer,
            config=config,
            logger=LoggerFactory.create_logger("image-processor.ingestion", config),
        )
        processor = ImageProcessingService(
            registry=registry,
            blob_store=blob_store,
            config=config,
            logger=LoggerFactory.create_logger("image-processor.processor", config),
            metrics_collector=metrics,
        )

        return Pipeline(
            config=config,
            engine=engine,
            registry=registry,
            blob_store=blob_store,
            producer=producer,
            ingestion=ingestion,
            processor=processor,
            metrics=metrics,
            logger=logger,
            s3_client=s3_client,
            sqs_client=sqs_client,
        )
