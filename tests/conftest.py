"""
Shared pytest fixtures for the eventsync test suite.

Provides factories for canonical events, an in-memory primary store and an
in-memory stand-in for the Supabase client used by the secondary store.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from eventsync.schemas.event import CanonicalEvent
from eventsync.storage.primary import PrimaryStore


@pytest.fixture
def create_event():
    """
    Return a function that creates CanonicalEvent objects with sensible defaults.

    All defaults can be overridden via keyword arguments.

    Example:
        event = create_event(source_id="42", title="Jazz Night")
    """

    def _create_event(
        source: str = "test",
        source_id: str = "evt-1",
        title: str = "Test Event",
        starts_at: Optional[datetime] = None,
        **kwargs,
    ) -> CanonicalEvent:
        if starts_at is None:
            starts_at = datetime(2025, 10, 31, 21, 30, tzinfo=timezone.utc)

        defaults: Dict[str, Any] = {
            "source": source,
            "source_id": source_id,
            "title": title,
            "starts_at": starts_at,
            "venue": "The Rock House",
            "city": "St. John's, NL",
            "url": f"https://example.com/events/{source_id}",
        }
        defaults.update(kwargs)
        return CanonicalEvent(**defaults)

    return _create_event


@pytest.fixture
def sample_events(create_event):
    """Return three events of the same source with distinct ids."""
    return [
        create_event(source_id="1", title="Electronic Night"),
        create_event(source_id="2", title="Jazz Evening", tags=["Music", "Jazz"]),
        create_event(source_id="3", title="Comedy Show", organizer="Laugh Co"),
    ]


class Clock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(minutes=1)
        return value


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def primary_store(clock):
    """In-memory primary store with the schema created."""
    store = PrimaryStore("sqlite:///:memory:", clock=clock)
    store.create_schema()
    yield store
    store.dispose()


# =============================================================================
# Supabase stand-in
# =============================================================================


class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]]):
        self.data = data


class FakeQuery:
    """Records one chained postgrest-style request until `execute()`."""

    def __init__(self, client: "FakeSupabase", table: str):
        self.client = client
        self.table = table
        self.op: Optional[str] = None
        self.payload: List[Dict[str, Any]] = []
        self.on_conflict: Optional[str] = None
        self.filters: List[tuple] = []
        self.bounds: Optional[tuple] = None

    def upsert(self, rows, on_conflict=None):
        self.op = "upsert"
        self.payload = [dict(r) for r in rows]
        self.on_conflict = on_conflict
        return self

    def select(self, columns="*"):
        self.op = "select"
        return self

    def delete(self):
        self.op = "delete"
        return self

    def in_(self, column, values):
        self.filters.append((column, set(values)))
        return self

    def eq(self, column, value):
        self.filters.append((column, {value}))
        return self

    def range(self, start, end):
        self.bounds = (start, end)
        return self

    def matches(self, row: Dict[str, Any]) -> bool:
        return all(row.get(col) in values for col, values in self.filters)

    def execute(self):
        return self.client.execute(self)


class FakeSupabase:
    """
    Minimal in-memory backend for the calls the secondary normalizer makes.

    `fail_on = (table, op)` makes the next matching request raise.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail_on: Optional[tuple] = None
        self._next_id = 1

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def execute(self, query: FakeQuery) -> FakeResponse:
        self.calls.append((query.table, query.op))
        if self.fail_on == (query.table, query.op):
            raise RuntimeError(f"backend rejected {query.op} on {query.table}")

        rows = self.rows(query.table)
        if query.op == "upsert":
            keys = (query.on_conflict or "id").split(",")
            for incoming in query.payload:
                existing = next(
                    (r for r in rows if all(r.get(k) == incoming.get(k) for k in keys)),
                    None,
                )
                if existing is None:
                    incoming.setdefault("id", self._next_id)
                    self._next_id += 1
                    rows.append(incoming)
                else:
                    existing.update(incoming)
            return FakeResponse([])

        if query.op == "delete":
            kept = [r for r in rows if not query.matches(r)]
            deleted = [r for r in rows if query.matches(r)]
            self.tables[query.table] = kept
            return FakeResponse(deleted)

        selected = [dict(r) for r in rows if query.matches(r)]
        if query.bounds is not None:
            start, end = query.bounds
            selected = selected[start : end + 1]
        return FakeResponse(selected)


@pytest.fixture
def fake_supabase():
    return FakeSupabase()
