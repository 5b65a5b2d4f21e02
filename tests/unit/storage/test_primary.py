"""
Unit tests for the primary store module.

Tests for PrimaryStore: idempotent upserts, change detection, transactional
rollback, pruning and the operator feed/link tables.
"""

from datetime import datetime, timezone

import pytest

from eventsync.storage.primary import PrimaryStore, PrimaryStoreError, build_engine


class TestUpsert:
    """Tests for PrimaryStore.upsert."""

    def test_inserts(self, primary_store, sample_events):
        """Should insert new events."""
        result = primary_store.upsert(sample_events)
        assert (result.inserted, result.updated, result.unchanged) == (3, 0, 0)
        assert result.written == 3
        assert primary_store.count() == 3

    def test_idempotent(self, primary_store, sample_events):
        """Should leave unchanged rows and their updated_at untouched."""
        primary_store.upsert(sample_events)
        before = {r["source_id"]: r["updated_at"] for r in primary_store.read_rows()}

        result = primary_store.upsert(sample_events)

        assert (result.inserted, result.updated, result.unchanged) == (0, 0, 3)
        after = {r["source_id"]: r["updated_at"] for r in primary_store.read_rows()}
        assert after == before

    def test_updates_changed_rows_only(self, primary_store, sample_events, create_event):
        """Should rewrite a row only when its content hash changed."""
        primary_store.upsert(sample_events)
        before = {r["source_id"]: r["updated_at"] for r in primary_store.read_rows()}

        changed = create_event(source_id="1", title="Electronic Night (Moved)")
        result = primary_store.upsert([changed, sample_events[1]])

        assert (result.inserted, result.updated, result.unchanged) == (0, 1, 1)
        rows = {r["source_id"]: r for r in primary_store.read_rows()}
        assert rows["1"]["title"] == "Electronic Night (Moved)"
        assert rows["1"]["content_hash"] == changed.content_hash
        assert rows["1"]["updated_at"] > before["1"]
        assert rows["2"]["updated_at"] == before["2"]

    def test_round_trip(self, primary_store, sample_events):
        """Should read back events equal to the ones written."""
        primary_store.upsert(sample_events)
        stored = {e.key: e for e in primary_store.read_all()}
        for event in sample_events:
            assert stored[event.key] == event

    def test_duplicate_keys_in_batch(self, primary_store, create_event):
        """Should keep the last event for a repeated key."""
        result = primary_store.upsert([create_event(title="A"), create_event(title="B")])
        assert result.inserted == 1
        assert primary_store.read_all()[0].title == "B"

    def test_empty_batch(self, primary_store):
        """Should do nothing for an empty batch."""
        assert primary_store.upsert([]).written == 0

    def test_rollback_on_failure(self, primary_store, sample_events, create_event):
        """Should roll back the whole batch when one row fails."""
        with primary_store.engine.begin() as conn:
            conn.exec_driver_sql(
                "CREATE TRIGGER reject_boom BEFORE INSERT ON events "
                "WHEN NEW.title = 'Boom' BEGIN SELECT RAISE(ABORT, 'boom'); END;"
            )

        with pytest.raises(PrimaryStoreError) as exc_info:
            primary_store.upsert([*sample_events, create_event(source_id="4", title="Boom")])

        assert exc_info.value.phase == "upsert"
        assert primary_store.count() == 0


class TestPrune:
    """Tests for PrimaryStore.prune."""

    def test_prunes_stale(self, primary_store, create_event):
        """Should delete rows missing from the latest batch."""
        primary_store.upsert([create_event(source_id=i) for i in ("1", "2", "3")])
        latest = [create_event(source_id=i) for i in ("2", "3", "4")]
        primary_store.upsert(latest)

        deleted = primary_store.prune("test", latest)

        assert deleted == 1
        assert {r["source_id"] for r in primary_store.read_rows()} == {"2", "3", "4"}

    def test_accepts_plain_ids(self, primary_store, sample_events):
        """Should accept source ids instead of events."""
        primary_store.upsert(sample_events)
        assert primary_store.prune("test", ["1"]) == 2

    def test_empty_batch_clears_source(self, primary_store, sample_events, create_event):
        """Should delete every row of the source for an empty batch."""
        primary_store.upsert([*sample_events, create_event(source="other", source_id="x")])
        assert primary_store.prune("test", []) == 3
        assert primary_store.sources() == ["other"]

    def test_other_sources_untouched(self, primary_store, create_event):
        """Should only touch rows of the named source."""
        primary_store.upsert([create_event(source="a", source_id="1"), create_event(source="b", source_id="1")])
        primary_store.prune("a", [])
        assert primary_store.count("b") == 1


class TestOperatorTables:
    """Tests for the feed and link tables."""

    def test_feeds(self, primary_store):
        """Should list active feeds and update labels in place."""
        primary_store.upsert_feed("https://example.org/a.ics", label="A")
        primary_store.upsert_feed("https://example.org/b.ics", label="B", active=False)
        primary_store.upsert_feed("https://example.org/a.ics", label="A2")

        assert primary_store.list_active_feeds() == [{"url": "https://example.org/a.ics", "label": "A2"}]

    def test_mark_feed(self, primary_store):
        """Should record the last status of a feed."""
        primary_store.upsert_feed("https://example.org/a.ics")
        primary_store.mark_feed("https://example.org/a.ics", "ok: 3 events")
        with primary_store.engine.connect() as conn:
            status = conn.exec_driver_sql("SELECT last_status FROM ics_sources").scalar_one()
        assert status == "ok: 3 events"

    def test_links(self, primary_store):
        """Should register links once and record their status."""
        assert primary_store.record_link("https://www.facebook.com/events/1/") is True
        assert primary_store.record_link("https://www.facebook.com/events/1/") is False
        primary_store.mark_link("https://www.facebook.com/events/1/", "ok: 4 documents")

        links = primary_store.list_links()
        assert len(links) == 1
        assert links[0]["last_status"] == "ok: 4 documents"
        assert links[0]["last_checked_at"] is not None


class TestEngine:
    """Tests for engine construction."""

    def test_file_database_creates_directory(self, tmp_path):
        """Should create the parent directory of a SQLite file."""
        path = tmp_path / "nested" / "events.db"
        store = PrimaryStore(f"sqlite:///{path.as_posix()}")
        store.create_schema()
        assert path.exists()
        store.dispose()

    def test_requires_url_or_engine(self):
        """Should reject construction without a database."""
        with pytest.raises(ValueError):
            PrimaryStore()

    def test_injected_engine_and_clock(self):
        """Should use an injected engine and clock for updated_at."""
        fixed = datetime(2030, 5, 1, 8, 0, tzinfo=timezone.utc)
        store = PrimaryStore(engine=build_engine("sqlite://"), clock=lambda: fixed)
        store.create_schema()
        store.record_link("https://example.com/e")
        with store.engine.connect() as conn:
            created = conn.exec_driver_sql("SELECT created_at FROM event_links").scalar_one()
        assert created == "2030-05-01T08:00:00Z"
