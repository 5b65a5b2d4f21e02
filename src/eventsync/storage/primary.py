# Persistence layer for the primary event store
"""
Primary Store Synchronizer.

Keeps the relational `events` table in step with the latest crawl of each
source:

- `upsert()` writes a batch in one transaction and skips rows whose stored
  content hash is unchanged, so `updated_at` only moves on real changes;
- `prune()` deletes rows of a source that the latest batch no longer yields.

Also owns the two operator tables: `ics_sources` (calendar feeds to pull) and
`event_links` (submitted social event links).

Built on SQLAlchemy Core; SQLite by default, Postgres through psycopg2.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    insert,
    make_url,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from eventsync.schemas.event import CanonicalEvent

logger = logging.getLogger(__name__)

DELETE_CHUNK_SIZE = 500

metadata = MetaData()

events_table = Table(
    "events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("source", String(64), nullable=False),
    Column("source_id", String(512), nullable=False),
    Column("title", Text, nullable=False),
    Column("starts_at", String(32)),
    Column("ends_at", String(32)),
    Column("venue", Text),
    Column("city", Text),
    Column("url", Text),
    Column("image_url", Text),
    Column("description", Text),
    Column("price", Text),
    Column("organizer", Text),
    Column("tags", Text),
    Column("content_hash", String(40)),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("source", "source_id", name="uq_events_source_source_id"),
    Index("ix_events_starts_at", "starts_at"),
    Index("ix_events_source", "source"),
)

ics_sources_table = Table(
    "ics_sources",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("url", Text, nullable=False, unique=True),
    Column("label", Text),
    Column("active", Boolean, nullable=False, default=True),
    Column("last_status", Text),
    Column("last_checked_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

event_links_table = Table(
    "event_links",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("url", Text, nullable=False, unique=True),
    Column("last_status", Text),
    Column("last_checked_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_CONTENT_COLUMNS = (
    "title",
    "starts_at",
    "ends_at",
    "venue",
    "city",
    "url",
    "image_url",
    "description",
    "price",
    "organizer",
    "tags",
    "content_hash",
)


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _stamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class UpsertResult:
    """Counts of one upsert batch."""

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.updated


class PrimaryStoreError(RuntimeError):
    """A primary store operation failed and was rolled back."""

    def __init__(self, message: str, *, phase: str, source: Optional[str] = None):
        super().__init__(message)
        self.phase = phase
        self.source = source


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for `database_url`.

    In-memory SQLite shares one connection so every session sees the same
    database; file SQLite gets its parent directory created.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url)


class PrimaryStore:
    """
    Data mapper between `CanonicalEvent` batches and the `events` table.

    Args:
        database_url: SQLAlchemy URL (ignored when `engine` is given)
        engine: pre-built engine
        clock: returns "now"; injectable for deterministic `updated_at`
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        *,
        engine: Optional[Engine] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = build_engine(database_url)
        self.engine = engine
        self.clock = clock or _utc_now

    @classmethod
    def from_settings(cls, settings) -> "PrimaryStore":
        return cls(settings.DATABASE_URL)

    def create_schema(self) -> None:
        """Create all tables and indexes if missing."""
        metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def upsert(self, events: Iterable[CanonicalEvent]) -> UpsertResult:
        """
        Insert or update `events` in a single transaction.

        Rows whose stored content hash equals the incoming one are left
        untouched. Any failure rolls back the whole batch.

        Raises:
            PrimaryStoreError: the batch could not be written.
        """
        batch: Dict[Tuple[str, str], CanonicalEvent] = {}
        for event in events:
            batch[event.key] = event

        result = UpsertResult()
        if not batch:
            return result

        now = _stamp(self.clock())
        sources = sorted({source for source, _ in batch})
        try:
            with self.engine.begin() as conn:
                stored: Dict[Tuple[str, str], Optional[str]] = {}
                for source in sources:
                    rows = conn.execute(
                        select(
                            events_table.c.source_id, events_table.c.content_hash
                        ).where(events_table.c.source == source)
                    )
                    for source_id, content_hash in rows:
                        stored[(source, source_id)] = content_hash

                for key, event in batch.items():
                    row = event.to_row()
                    if key not in stored:
                        conn.execute(insert(events_table).values(**row, updated_at=now))
                        result.inserted += 1
                    elif stored[key] == row["content_hash"]:
                        result.unchanged += 1
                    else:
                        values = {c: row[c] for c in _CONTENT_COLUMNS}
                        conn.execute(
                            update(events_table)
                            .where(events_table.c.source == key[0])
                            .where(events_table.c.source_id == key[1])
                            .values(**values, updated_at=now)
                        )
                        result.updated += 1
        except SQLAlchemyError as e:
            logger.error(f"Upsert of {len(batch)} events rolled back: {e}")
            raise PrimaryStoreError(
                f"upsert failed: {e}", phase="upsert", source=",".join(sources)
            ) from e

        logger.info(
            f"Upserted {len(batch)} events "
            f"(inserted={result.inserted}, updated={result.updated}, "
            f"unchanged={result.unchanged})"
        )
        return result

    def prune(self, source: str, current_batch: Iterable) -> int:
        """
        Delete rows of `source` whose source id is not in `current_batch`.

        `current_batch` holds events or plain source ids. An empty batch
        deletes every row of the source.

        Returns:
            Number of deleted rows.
        """
        keep = {
            item.source_id if isinstance(item, CanonicalEvent) else str(item)
            for item in current_batch
        }
        deleted = 0
        try:
            with self.engine.begin() as conn:
                stored = conn.execute(
                    select(events_table.c.id, events_table.c.source_id).where(
                        events_table.c.source == source
                    )
                ).all()
                stale = [row_id for row_id, source_id in stored if source_id not in keep]
                for i in range(0, len(stale), DELETE_CHUNK_SIZE):
                    chunk = stale[i : i + DELETE_CHUNK_SIZE]
                    res = conn.execute(delete(events_table).where(events_table.c.id.in_(chunk)))
                    deleted += res.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Prune of source '{source}' rolled back: {e}")
            raise PrimaryStoreError(f"prune failed: {e}", phase="prune", source=source) from e

        if deleted:
            logger.info(f"Pruned {deleted} stale events from '{source}'")
        return deleted

    def read_rows(self, source: Optional[str] = None) -> List[dict]:
        """All stored rows (including bookkeeping) ordered by start time."""
        stmt = select(events_table).order_by(events_table.c.starts_at, events_table.c.id)
        if source:
            stmt = stmt.where(events_table.c.source == source)
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    def read_all(self, source: Optional[str] = None) -> List[CanonicalEvent]:
        return [CanonicalEvent.from_row(row) for row in self.read_rows(source)]

    def count(self, source: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(events_table)
        if source:
            stmt = stmt.where(events_table.c.source == source)
        with self.engine.connect() as conn:
            return int(conn.execute(stmt).scalar_one())

    def sources(self) -> List[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(events_table.c.source).distinct())
            return sorted(r[0] for r in rows)

    # ------------------------------------------------------------------
    # ICS feeds
    # ------------------------------------------------------------------

    def upsert_feed(self, url: str, label: Optional[str] = None, active: bool = True) -> None:
        """Add a calendar feed or update its label/active flag."""
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(ics_sources_table.c.id).where(ics_sources_table.c.url == url)
            ).first()
            if existing is None:
                conn.execute(
                    insert(ics_sources_table).values(
                        url=url, label=label, active=active, created_at=_stamp(self.clock())
                    )
                )
            else:
                conn.execute(
                    update(ics_sources_table)
                    .where(ics_sources_table.c.id == existing[0])
                    .values(label=label, active=active)
                )

    def list_active_feeds(self) -> List[dict]:
        stmt = (
            select(ics_sources_table.c.url, ics_sources_table.c.label)
            .where(ics_sources_table.c.active.is_(True))
            .order_by(ics_sources_table.c.id)
        )
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    def mark_feed(self, url: str, status: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(ics_sources_table)
                .where(ics_sources_table.c.url == url)
                .values(last_status=status, last_checked_at=_stamp(self.clock()))
            )

    # ------------------------------------------------------------------
    # Social event links
    # ------------------------------------------------------------------

    def record_link(self, url: str) -> bool:
        """Register a submitted event link. Returns False if already known."""
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(event_links_table.c.id).where(event_links_table.c.url == url)
            ).first()
            if existing is not None:
                return False
            conn.execute(
                insert(event_links_table).values(url=url, created_at=_stamp(self.clock()))
            )
            return True

    def list_links(self) -> List[dict]:
        stmt = select(
            event_links_table.c.url,
            event_links_table.c.last_status,
            event_links_table.c.last_checked_at,
        ).order_by(event_links_table.c.id)
        with self.engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(stmt)]

    def mark_link(self, url: str, status: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(event_links_table)
                .where(event_links_table.c.url == url)
                .values(last_status=status, last_checked_at=_stamp(self.clock()))
            )
