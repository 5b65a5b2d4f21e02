"""
Secondary Store Normalizer.

Projects flat canonical events into the normalized Supabase schema:

    venues, organizers, tags   keyed by deterministic external ids
    events                     with resolved venue_id / organizer_id
    event_tags                 fully replaced for every touched event

then prunes events (and their tag links) that the latest batch of a source no
longer contains.

Backend errors abort the sync with a `SecondarySyncError` naming the step and
table; chunks written before the failure stay committed. There is no internal
retry: the next reconciliation pass repeats the whole projection idempotently.
"""

from __future__ import annotations

import hashlib
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from eventsync.extraction.dates import infer_date_from_slug, to_iso
from eventsync.extraction.text import collapse_ws, slugify
from eventsync.schemas.event import CanonicalEvent

logger = logging.getLogger(__name__)

UPSERT_CHUNK_SIZE = 200
SELECT_PAGE_SIZE = 1000


# =============================================================================
# Identity helpers
# =============================================================================


def stable_hash(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


def build_external_id(prefix: str, *parts: Optional[str]) -> Optional[str]:
    """
    `"<prefix>_" + sha1("::".join(parts))` over trimmed, lower-cased parts.

    Empty parts are dropped; None when nothing is left.
    """
    cleaned = [str(p).strip().lower() for p in parts if p is not None and str(p).strip()]
    if not cleaned:
        return None
    return f"{prefix}_{stable_hash('::'.join(cleaned))}"


def _chunks(items: Sequence[Any], size: int):
    for i in range(0, len(items), size):
        yield items[i : i + size]


# =============================================================================
# Normalization
# =============================================================================


@dataclass
class NormalizedEvent:
    row: Dict[str, Any]
    venue_key: Optional[str] = None
    organizer_key: Optional[str] = None
    tag_keys: List[str] = field(default_factory=list)

    @property
    def external_id(self) -> str:
        return self.row["external_id"]

    @property
    def source(self) -> str:
        return self.row["source"]


@dataclass
class NormalizedBatch:
    events: List[NormalizedEvent] = field(default_factory=list)
    venues: List[Dict[str, Any]] = field(default_factory=list)
    organizers: List[Dict[str, Any]] = field(default_factory=list)
    tags: List[Dict[str, Any]] = field(default_factory=list)
    counts_by_source: Dict[str, int] = field(default_factory=dict)


def derive_event_date(event: CanonicalEvent) -> Optional[str]:
    """Start, else end, else a date found in the source id, URL or title."""
    return (
        to_iso(event.starts_at)
        or to_iso(event.ends_at)
        or infer_date_from_slug(event.source_id or event.url or event.title)
    )


def normalize_events(events: Iterable[CanonicalEvent]) -> NormalizedBatch:
    """Derive entity rows and event rows with deterministic external ids."""
    venues: Dict[str, Dict[str, Any]] = {}
    organizers: Dict[str, Dict[str, Any]] = {}
    tags: Dict[str, Dict[str, Any]] = {}
    counts: Counter = Counter()
    normalized: Dict[str, NormalizedEvent] = {}

    for event in events:
        source = event.source
        counts[source] += 1

        venue_name = collapse_ws(event.venue)
        city = collapse_ws(event.city)
        venue_key = build_external_id("venue", source, venue_name, city) if venue_name else None
        if venue_key and venue_key not in venues:
            venues[venue_key] = {"external_id": venue_key, "name": venue_name, "city": city}

        organizer_name = collapse_ws(event.organizer)
        organizer_key = build_external_id("organizer", source, organizer_name) if organizer_name else None
        if organizer_key and organizer_key not in organizers:
            organizers[organizer_key] = {"external_id": organizer_key, "name": organizer_name}

        tag_keys: List[str] = []
        for tag_name in event.tags:
            slug = slugify(tag_name) or stable_hash(tag_name)[:12]
            tag_key = build_external_id("tag", source, slug)
            if tag_key not in tags:
                tags[tag_key] = {"external_id": tag_key, "name": tag_name, "slug": slug}
            if tag_key not in tag_keys:
                tag_keys.append(tag_key)

        external_id = build_external_id("event", source, event.source_id)
        normalized[external_id] = NormalizedEvent(
            row={
                "external_id": external_id,
                "source": source,
                "source_id": event.source_id,
                "title": event.title,
                "description": event.description,
                "date": derive_event_date(event),
                "end_date": to_iso(event.ends_at),
                "url": event.url or event.source_id,
                "image_url": event.image_url,
                "price": event.price,
            },
            venue_key=venue_key,
            organizer_key=organizer_key,
            tag_keys=tag_keys,
        )

    return NormalizedBatch(
        events=list(normalized.values()),
        venues=list(venues.values()),
        organizers=list(organizers.values()),
        tags=list(tags.values()),
        counts_by_source=dict(counts),
    )


# =============================================================================
# Results & errors
# =============================================================================


@dataclass
class SecondarySyncResult:
    """Outcome of one secondary sync."""

    synced: bool
    reason: Optional[str] = None
    events: int = 0
    venues: int = 0
    organizers: int = 0
    tags: int = 0
    event_tags: int = 0
    pruned: Dict[str, int] = field(default_factory=dict)
    counts_by_source: Dict[str, int] = field(default_factory=dict)
    completed_steps: List[str] = field(default_factory=list)


class SecondarySyncError(RuntimeError):
    """A backend call failed; `completed_steps` lists what was already written."""

    def __init__(self, message: str, *, step: str, table: str, completed_steps: List[str]):
        super().__init__(message)
        self.step = step
        self.table = table
        self.completed_steps = list(completed_steps)


# =============================================================================
# Normalizer
# =============================================================================


class SecondaryStoreNormalizer:
    """
    Sync canonical events into the Supabase tables.

    Args:
        client: a supabase `Client`; None disables the sync (`missing_config`)
        chunk_size: rows per upsert / id lookup request
    """

    def __init__(self, client=None, chunk_size: int = UPSERT_CHUNK_SIZE):
        self.client = client
        self.chunk_size = chunk_size
        self._completed: List[str] = []

    @property
    def configured(self) -> bool:
        return self.client is not None

    def sync(
        self,
        events: Sequence[CanonicalEvent],
        prune_sources: Optional[Iterable[str]] = None,
        keep_sources: Optional[Iterable[str]] = None,
    ) -> SecondarySyncResult:
        """
        Project `events` into the secondary store and prune stale rows.

        `prune_sources` names sources to prune even though the batch holds no
        events for them (their latest crawl was empty and trusted).
        `keep_sources` names sources whose stale rows are never pruned.

        Raises:
            SecondarySyncError: a backend call failed.
        """
        prune_sources = set(prune_sources or ())
        if not self.configured:
            logger.warning("Supabase credentials missing; skipping secondary sync.")
            return SecondarySyncResult(synced=False, reason="missing_config")
        if not events and not prune_sources:
            logger.info("No events to sync to the secondary store.")
            return SecondarySyncResult(synced=False, reason="no_events")

        self._completed = []
        batch = normalize_events(events)
        result = SecondarySyncResult(synced=True, counts_by_source=batch.counts_by_source)

        venue_ids = self._upsert_entities("venues", batch.venues)
        organizer_ids = self._upsert_entities("organizers", batch.organizers)
        tag_ids = self._upsert_entities("tags", batch.tags)

        event_rows = []
        for event in batch.events:
            row = dict(event.row)
            row["venue_id"] = venue_ids.get(event.venue_key) if event.venue_key else None
            row["organizer_id"] = organizer_ids.get(event.organizer_key) if event.organizer_key else None
            event_rows.append(row)
        event_ids = self._upsert_entities("events", event_rows)

        result.event_tags = self._replace_event_tags(batch.events, event_ids, tag_ids)

        keep: Dict[str, set] = {source: set() for source in prune_sources}
        for event in batch.events:
            keep.setdefault(event.source, set()).add(event.external_id)
        for source in set(keep_sources or ()):
            keep.pop(source, None)
        for source in sorted(keep):
            result.pruned[source] = self._prune_source(source, keep[source])

        result.events = len(event_rows)
        result.venues = len(batch.venues)
        result.organizers = len(batch.organizers)
        result.tags = len(batch.tags)
        result.completed_steps = list(self._completed)

        summary = ", ".join(f"{s}={c}" for s, c in sorted(batch.counts_by_source.items()))
        logger.info(f"Synced {result.events} events to the secondary store ({summary})")
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _execute(self, step: str, table: str, request):
        try:
            return request.execute()
        except Exception as e:
            logger.error(f"Secondary sync failed at {step} ({table}): {e}")
            raise SecondarySyncError(
                f"{step} failed on {table}: {e}",
                step=step,
                table=table,
                completed_steps=self._completed,
            ) from e

    def _upsert_entities(
        self, table: str, rows: List[Dict[str, Any]], on_conflict: str = "external_id"
    ) -> Dict[str, Any]:
        """Upsert `rows` in chunks, then map external id -> backend id."""
        if not rows:
            return {}
        step = f"upsert_{table}"
        for chunk in _chunks(rows, self.chunk_size):
            self._execute(step, table, self.client.table(table).upsert(chunk, on_conflict=on_conflict))

        ids: Dict[str, Any] = {}
        external_ids = [r["external_id"] for r in rows if r.get("external_id")]
        for chunk in _chunks(external_ids, self.chunk_size):
            response = self._execute(
                f"resolve_{table}",
                table,
                self.client.table(table).select("id,external_id").in_("external_id", chunk),
            )
            for row in response.data or []:
                ids[row["external_id"]] = row["id"]
        self._completed.append(step)
        return ids

    def _replace_event_tags(
        self,
        events: List[NormalizedEvent],
        event_ids: Dict[str, Any],
        tag_ids: Dict[str, Any],
    ) -> int:
        touched: List[Any] = []
        links: List[Dict[str, Any]] = []
        for event in events:
            event_id = event_ids.get(event.external_id)
            if event_id is None:
                continue
            touched.append(event_id)
            seen = set()
            for tag_key in event.tag_keys:
                tag_id = tag_ids.get(tag_key)
                if tag_id is None or tag_id in seen:
                    continue
                seen.add(tag_id)
                links.append({"event_id": event_id, "tag_id": tag_id})

        if not touched:
            return 0
        for chunk in _chunks(touched, self.chunk_size):
            self._execute(
                "reset_event_tags",
                "event_tags",
                self.client.table("event_tags").delete().in_("event_id", chunk),
            )
        for chunk in _chunks(links, self.chunk_size):
            self._execute(
                "insert_event_tags",
                "event_tags",
                self.client.table("event_tags").upsert(chunk, on_conflict="event_id,tag_id"),
            )
        self._completed.append("sync_event_tags")
        return len(links)

    def _stored_events(self, source: str) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            response = self._execute(
                f"prune:{source}",
                "events",
                self.client.table("events")
                .select("id,external_id")
                .eq("source", source)
                .range(offset, offset + SELECT_PAGE_SIZE - 1),
            )
            page = response.data or []
            rows.extend(page)
            if len(page) < SELECT_PAGE_SIZE:
                return rows
            offset += SELECT_PAGE_SIZE

    def _prune_source(self, source: str, keep: set) -> int:
        stale_ids = [row["id"] for row in self._stored_events(source) if row["external_id"] not in keep]
        if stale_ids:
            for chunk in _chunks(stale_ids, self.chunk_size):
                self._execute(
                    f"prune:{source}",
                    "event_tags",
                    self.client.table("event_tags").delete().in_("event_id", chunk),
                )
                self._execute(
                    f"prune:{source}",
                    "events",
                    self.client.table("events").delete().in_("id", chunk),
                )
            logger.info(f"Pruned {len(stale_ids)} stale secondary events for source {source}")
        self._completed.append(f"prune:{source}")
        return len(stale_ids)
