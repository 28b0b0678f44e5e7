"""
SQLite-backed artifact store.

The default persistent substrate of the artifact cache: an artifact table
with a compound primary key, a secondary index by presentation for bulk
clears and an index by cache timestamp for the TTL sweep. A second table
keeps the last displayed slide of each presentation.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from slide_sync.config.table_names import ARTIFACT_CACHE_TABLE_NAME, LAST_VIEWED_TABLE_NAME
from slide_sync.models import CacheEntry, LastViewedSlide

from .exceptions import StoreError

logger = logging.getLogger(__name__)


def build_artifacts_table(metadata: MetaData, table_name: str = ARTIFACT_CACHE_TABLE_NAME) -> Table:
    """Describe the artifact table and its secondary indexes."""
    table = Table(
        table_name,
        metadata,
        Column("presentation_id", Text, primary_key=True),
        Column("slide_number", Integer, primary_key=True),
        Column("image", LargeBinary, nullable=False),
        Column("thumbnail", LargeBinary, nullable=True),
        Column("image_url", Text, nullable=True),
        Column("thumbnail_url", Text, nullable=True),
        Column("cached_at", BigInteger, nullable=False),
    )
    Index(f"ix_{table_name}_presentation_id", table.c.presentation_id)
    Index(f"ix_{table_name}_cached_at", table.c.cached_at)
    return table

def build_last_viewed_table(metadata: MetaData, table_name: str = LAST_VIEWED_TABLE_NAME) -> Table:
    """Describe the table holding the last displayed slide per presentation."""
    return Table(
        table_name,
        metadata,
        Column("presentation_id", Text, primary_key=True),
        Column("slide_number", Integer, nullable=False),
        Column("image_url", Text, nullable=False),
        Column("viewed_at", BigInteger, nullable=False),
    )


def create_sqlite_engine(url: str) -> Engine:
    """
    Create an engine usable from worker threads.

    In-memory databases share one connection so every thread sees the same
    data; file databases get their parent directory created.
    """
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    path = url.removeprefix("sqlite:///")
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return create_engine(url, connect_args={"check_same_thread": False})


class SqliteArtifactStore:
    """Store slide artifacts in a local SQLite database.

    Statements are serialized: the cache calls the store from worker
    threads and an in-memory database shares a single connection.
    """

    def __init__(
        self,
        url: str = "sqlite://",
        *,
        table_name: str = ARTIFACT_CACHE_TABLE_NAME,
        last_viewed_table_name: str = LAST_VIEWED_TABLE_NAME,
        engine: Optional[Engine] = None,
    ) -> None:
        self._engine = engine or create_sqlite_engine(url)
        self._lock = threading.Lock()
        self._metadata = MetaData()
        self._table = build_artifacts_table(self._metadata, table_name)
        self._last_viewed = build_last_viewed_table(self._metadata, last_viewed_table_name)
        try:
            self._metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to initialize artifact store: {e}") from e

    @property
    def table(self) -> Table:
        return self._table

    def put(self, entry: CacheEntry) -> None:
        table = self._table
        stmt = sqlite_insert(table).values(
            presentation_id=entry.presentation_id,
            slide_number=entry.slide_number,
            image=entry.image,
            thumbnail=entry.thumbnail,
            image_url=entry.image_url,
            thumbnail_url=entry.thumbnail_url,
            cached_at=entry.cached_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.presentation_id, table.c.slide_number],
            set_={
                "image": stmt.excluded.image,
                "thumbnail": stmt.excluded.thumbnail,
                "image_url": stmt.excluded.image_url,
                "thumbnail_url": stmt.excluded.thumbnail_url,
                "cached_at": stmt.excluded.cached_at,
            },
            # an older write never replaces a newer entry
            where=table.c.cached_at <= stmt.excluded.cached_at,
        )
        try:
            with self._lock, self._engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to write artifact {entry.key}: {e}") from e

    def get(self, presentation_id: str, slide_number: int) -> Optional[CacheEntry]:
        table = self._table
        query = select(table).where(
            table.c.presentation_id == presentation_id,
            table.c.slide_number == slide_number,
        )
        try:
            with self._lock, self._engine.connect() as conn:
                row = conn.execute(query).mappings().first()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read artifact ({presentation_id}, {slide_number}): {e}") from e

        if row is None:
            return None
        return CacheEntry(
            presentation_id=row["presentation_id"],
            slide_number=row["slide_number"],
            image=bytes(row["image"]),
            thumbnail=bytes(row["thumbnail"]) if row["thumbnail"] is not None else None,
            cached_at=row["cached_at"],
            image_url=row["image_url"],
            thumbnail_url=row["thumbnail_url"],
        )

    def exists(self, presentation_id: str, slide_number: int) -> bool:
        table = self._table
        query = select(func.count()).select_from(table).where(
            table.c.presentation_id == presentation_id,
            table.c.slide_number == slide_number,
        )
        try:
            with self._lock, self._engine.connect() as conn:
                return conn.execute(query).scalar_one() > 0
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to check artifact ({presentation_id}, {slide_number}): {e}") from e

    def delete_presentation(self, presentation_id: str) -> int:
        table = self._table
        stmt = delete(table).where(table.c.presentation_id == presentation_id)
        try:
            with self._lock, self._engine.begin() as conn:
                deleted = conn.execute(stmt).rowcount
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to clear presentation {presentation_id}: {e}") from e

        logger.info(f"Deleted {deleted} cached slides of presentation {presentation_id}")
        return deleted

    def delete_older_than(self, cutoff_ms: int) -> int:
        table = self._table
        stmt = delete(table).where(table.c.cached_at < cutoff_ms)
        try:
            with self._lock, self._engine.begin() as conn:
                deleted = conn.execute(stmt).rowcount
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to evict artifacts older than {cutoff_ms}: {e}") from e

        logger.info(f"Evicted {deleted} cached slides older than {cutoff_ms}")
        return deleted

    def size_bytes(self) -> int:
        table = self._table
        query = select(
            func.coalesce(
                func.sum(func.length(table.c.image) + func.coalesce(func.length(table.c.thumbnail), 0)),
                0,
            )
        )
        try:
            with self._lock, self._engine.connect() as conn:
                return int(conn.execute(query).scalar_one())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to estimate cache size: {e}") from e

    def put_last_viewed(self, slide: LastViewedSlide) -> None:
        table = self._last_viewed
        stmt = sqlite_insert(table).values(
            presentation_id=slide.presentation_id,
            slide_number=slide.slide_number,
            image_url=slide.image_url,
            viewed_at=slide.viewed_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.presentation_id],
            set_={
                "slide_number": stmt.excluded.slide_number,
                "image_url": stmt.excluded.image_url,
                "viewed_at": stmt.excluded.viewed_at,
            },
        )
        try:
            with self._lock, self._engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to record last viewed slide of {slide.presentation_id}: {e}") from e

    def get_last_viewed(self, presentation_id: str) -> Optional[LastViewedSlide]:
        table = self._last_viewed
        query = select(table).where(table.c.presentation_id == presentation_id)
        try:
            with self._lock, self._engine.connect() as conn:
                row = conn.execute(query).mappings().first()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read last viewed slide of {presentation_id}: {e}") from e

        if row is None:
            return None
        return LastViewedSlide(
            presentation_id=row["presentation_id"],
            slide_number=row["slide_number"],
            image_url=row["image_url"],
            viewed_at=row["viewed_at"],
        )

    def dispose(self) -> None:
        """Close pooled connections."""
        self._engine.dispose()
