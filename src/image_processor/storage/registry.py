"""SQL-backed image registry with an optional transactional outbox."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from ..core.error_handling import with_registry_errors
from ..core.exceptions import ImageNotFoundError, RegistryError, StaleWriteError
from ..core.models import Image, ImageFormat, ImageStatus, ProcessingTask, utc_now
from ..messaging.codec import encode_task
from .schema import images, task_outbox


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def image_to_row(image: Image) -> Dict[str, Any]:
    return {
        "id": image.id,
        "original_path": image.original_path,
        "processed_path": image.processed_path or None,
        "thumbnail_path": image.thumbnail_path or None,
        "status": image.status.value,
        "format": image.format.value,
        "original_width": image.original_width,
        "original_height": image.original_height,
        "processed_width": image.processed_width,
        "processed_height": image.processed_height,
        "created_at": image.created_at,
        "updated_at": image.updated_at,
        "version": image.version,
    }


def row_to_image(row: Mapping[str, Any]) -> Image:
    return Image(
        id=row["id"],
        original_path=row["original_path"],
        processed_path=row["processed_path"] or "",
        thumbnail_path=row["thumbnail_path"] or "",
        status=ImageStatus(row["status"]),
        format=ImageFormat(row["format"]),
        original_width=row["original_width"],
        original_height=row["original_height"],
        processed_width=row["processed_width"],
        processed_height=row["processed_height"],
        created_at=_as_utc(row["created_at"]),
        updated_at=_as_utc(row["updated_at"]),
        version=row["version"],
    )


class SqlImageRegistry:
    """
    Image registry on top of SQLAlchemy Core.

    Updates are compare-and-swap on the ``version`` column: a write based on
    a stale read is rejected with StaleWriteError instead of silently
    overwriting a concurrent update.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def _insert(self, conn: Connection, image: Image) -> None:
        try:
            conn.execute(insert(images).values(**image_to_row(image)))
        except IntegrityError as e:
            raise RegistryError(f"failed to create image {image.id}: {e}") from e

    @with_registry_errors("create image")
    def create(self, image: Image) -> None:
        with self._engine.begin() as conn:
            self._insert(conn, image)

    @with_registry_errors("create image with task")
    def create_with_task(self, image: Image, task: ProcessingTask) -> None:
        """Insert the image row and its outbox entry in one transaction."""
        with self._engine.begin() as conn:
            self._insert(conn, image)
            conn.execute(
                insert(task_outbox).values(
                    image_id=task.image_id,
                    payload=encode_task(task),
                    created_at=utc_now(),
                    published_at=None,
                )
            )

    @with_registry_errors("get image")
    def get(self, image_id: str) -> Image:
        with self._engine.connect() as conn:
            row = (
                conn.execute(select(images).where(images.c.id == image_id))
                .mappings()
                .first()
            )
        if row is None:
            raise ImageNotFoundError(image_id)
        return row_to_image(row)

    @with_registry_errors("update image")
    def update(self, image: Image) -> Image:
        stored = image.model_copy(update={"version": image.version + 1})
        values = image_to_row(stored)
        for immutable in ("id", "original_path", "format", "original_width",
                          "original_height", "created_at"):
            values.pop(immutable)

        with self._engine.begin() as conn:
            result = conn.execute(
                update(images)
                .where(images.c.id == image.id)
                .where(images.c.version == image.version)
                .values(**values)
            )
            if result.rowcount == 0:
                exists = conn.execute(
                    select(images.c.id).where(images.c.id == image.id)
                ).first()
                if exists is None:
                    raise ImageNotFoundError(image.id)
                raise StaleWriteError(image.id, image.version)
        return stored

    @with_registry_errors("delete image")
    def delete(self, image_id: str) -> None:
        with self._engine.begin() as conn:
            result = conn.execute(delete(images).where(images.c.id == image_id))
            if result.rowcount == 0:
                raise ImageNotFoundError(image_id)

    @with_registry_errors("list images")
    def list(self, limit: int, offset: int) -> List[Image]:
        query = (
            select(images)
            .order_by(images.c.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [row_to_image(row) for row in rows]

    @with_registry_errors("count images")
    def count_by_status(self) -> Dict[str, int]:
        query = select(images.c.status, func.count()).group_by(images.c.status)
        with self._engine.connect() as conn:
            return {status: total for status, total in conn.execute(query).all()}

    @with_registry_errors("read outbox")
    def pending_outbox(self, limit: int = 100) -> List[Tuple[int, str, bytes]]:
        """Unpublished outbox entries as (id, image_id, payload), oldest first."""
        query = (
            select(task_outbox.c.id, task_outbox.c.image_id, task_outbox.c.payload)
            .where(task_outbox.c.published_at.is_(None))
            .order_by(task_outbox.c.id)
            .limit(limit)
        )
        with self._engine.connect() as conn:
            return [(row[0], row[1], bytes(row[2])) for row in conn.execute(query).all()]

    @with_registry_errors("mark outbox published")
    def mark_outbox_published(
        self, entry_id: int, published_at: Optional[datetime] = None
    ) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                update(task_outbox)
                .where(task_outbox.c.id == entry_id)
                .values(published_at=published_at or utc_now())
            )
