"""Table definitions shared by the registry, the outbox and the SQL task log."""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

metadata = MetaData()

images = Table(
    "images",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("original_path", String(500), nullable=False),
    Column("processed_path", String(500), nullable=True),
    Column("thumbnail_path", String(500), nullable=True),
    Column("status", String(50), nullable=False),
    Column("format", String(10), nullable=False),
    Column("original_width", Integer, nullable=False),
    Column("original_height", Integer, nullable=False),
    Column("processed_width", Integer, nullable=True),
    Column("processed_height", Integer, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("version", Integer, nullable=False, default=1),
    Index("idx_images_status", "status"),
    Index("idx_images_created_at", "created_at"),
)

task_outbox = Table(
    "task_outbox",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("image_id", String(255), nullable=False),
    Column("payload", LargeBinary, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("published_at", DateTime(timezone=True), nullable=True),
    Index("idx_task_outbox_published_at", "published_at"),
)

task_messages = Table(
    "task_messages",
    metadata,
    Column("offset", Integer, primary_key=True, autoincrement=True),
    Column("topic", String(255), nullable=False),
    Column("partition", Integer, nullable=False),
    Column("message_key", String(255), nullable=False),
    Column("payload", LargeBinary, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("idx_task_messages_topic_partition", "topic", "partition", "offset"),
)

consumer_offsets = Table(
    "consumer_offsets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("group_name", String(255), nullable=False),
    Column("topic", String(255), nullable=False),
    Column("partition", Integer, nullable=False),
    Column("committed_offset", BigInteger, nullable=False),
    UniqueConstraint("group_name", "topic", "partition", name="uq_consumer_offsets"),
)


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine for ``url``.

    In-memory SQLite shares one connection across threads so the ingestion
    path and a worker thread see the same database.
    """
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


def init_schema(engine: Engine) -> None:
    """Create all tables and indexes that do not exist yet."""
    metadata.create_all(engine)
