"""
Unit tests for the strategies module.

Tests for each extraction strategy and the FieldExtractor dispatcher,
including the guarantee that malformed payloads become empty field sets.
"""

import json
from datetime import date, datetime, timezone

import pytest
from icalendar import Event as VEvent

from eventsync.extraction.strategies import (
    FieldExtractor,
    calendar_entry_identity,
    decode_redirect,
    discovery_slug,
    extract_calendar,
    extract_discovery,
    extract_dom_heuristic,
    extract_metadata,
    extract_structured_data,
    find_event_node,
    format_price,
)
from eventsync.schemas.event import ExtractionStrategy, RawDocument


# =============================================================================
# FIXTURES
# =============================================================================


def doc(strategy, payload, **kwargs) -> RawDocument:
    return RawDocument(source="test", strategy=strategy, payload=payload, **kwargs)


@pytest.fixture
def json_ld_page():
    node = {
        "@context": "https://schema.org",
        "@graph": [
            {"@type": "WebPage", "name": "Events"},
            {
                "@type": "MusicEvent",
                "name": "  Halloween   Howl ",
                "startDate": "2025-10-31T19:00:00-02:30",
                "endDate": "2025-10-31T23:00:00-02:30",
                "location": {
                    "@type": "Place",
                    "name": "The Rock House",
                    "address": {"addressLocality": "St. John's"},
                },
                "image": [{"url": "https://img.example.com/howl.jpg"}],
                "organizer": {"name": "Rock House Presents"},
                "offers": [{"price": "15"}, {"price": "12.5"}],
            },
        ],
    }
    return (
        "<html><head>"
        '<script type="application/ld+json">{broken</script>'
        f'<script type="application/ld+json">{json.dumps(node)}</script>'
        "</head><body></body></html>"
    )


@pytest.fixture
def vevent():
    event = VEvent()
    event.add("uid", "10001-1761951600@stjohnsliving.ca")
    event.add("summary", "Harbour Lights Parade")
    event.add("dtstart", datetime(2025, 11, 22, 22, 0, tzinfo=timezone.utc))
    event.add("dtend", datetime(2025, 11, 23, 0, 0, tzinfo=timezone.utc))
    event.add("location", "Water Street, St. John's, NL")
    event.add("url", "https://stjohnsliving.ca/event/parade/")
    event.add("description", "Annual   parade")
    event.add("categories", ["Family", "Holiday"])
    return event


# =============================================================================
# TEST CLASSES
# =============================================================================


class TestStructuredData:
    """Tests for extract_structured_data."""

    def test_maps_event_node(self, json_ld_page):
        """Should map the first Event node and skip invalid JSON-LD blocks."""
        partial = extract_structured_data(doc(ExtractionStrategy.STRUCTURED_DATA, json_ld_page))
        assert partial.title == "Halloween Howl"
        assert partial.starts_at == datetime(2025, 10, 31, 21, 30, tzinfo=timezone.utc)
        assert partial.venue == "The Rock House"
        assert partial.city == "St. John's"
        assert partial.image_url == "https://img.example.com/howl.jpg"
        assert partial.organizer == "Rock House Presents"
        assert partial.price == "$12.50"

    def test_no_event_node(self):
        """Should return an empty field set when the page has no Event."""
        partial = extract_structured_data(doc(ExtractionStrategy.STRUCTURED_DATA, "<p>hi</p>"))
        assert partial.is_empty()
        assert partial.strategy == ExtractionStrategy.STRUCTURED_DATA

    def test_find_event_node_by_type_list(self):
        """Should accept @type lists and schema.org URLs."""
        node = {"@type": ["Thing", "https://schema.org/Event"], "name": "x"}
        assert find_event_node([{"a": node}]) is node


class TestMetadata:
    """Tests for extract_metadata."""

    def test_reads_open_graph(self):
        """Should read OpenGraph and event meta tags."""
        html = (
            "<html><head>"
            '<meta property="og:title" content="Trivia Night">'
            '<meta property="og:description" content="Bring a team">'
            '<meta property="og:image" content="https://img.example.com/t.jpg">'
            '<meta property="event:start_time" content="2025-11-05T23:00:00Z">'
            '<meta property="og:url" content="https://example.com/trivia">'
            "</head></html>"
        )
        partial = extract_metadata(doc(ExtractionStrategy.METADATA, html))
        assert partial.title == "Trivia Night"
        assert partial.description == "Bring a team"
        assert partial.image_url == "https://img.example.com/t.jpg"
        assert partial.starts_at == datetime(2025, 11, 5, 23, 0, tzinfo=timezone.utc)
        assert partial.url == "https://example.com/trivia"

    def test_unparsable_start_time_is_dropped(self):
        """Should drop a start time that does not parse."""
        html = '<meta property="event:start_time" content="tonight">'
        partial = extract_metadata(doc(ExtractionStrategy.METADATA, html))
        assert partial.starts_at is None


class TestDomHeuristic:
    """Tests for extract_dom_heuristic."""

    def test_listing_card(self):
        """Should read title, date and time lines, venue and detail link from a card."""
        html = (
            "<div><h3>Jazz at the Ship</h3>"
            "<p>Friday, October 31, 2025</p>"
            "<p>7:00 pm - 10:00 pm</p>"
            '<a href="/venues/ship">The Ship Pub</a>'
            '<a href="/events/jazz">More Info</a></div>'
        )
        context = {"mode": "listing", "base_url": "https://example.com/events/", "default_city": "St. John's, NL"}
        partial = extract_dom_heuristic(doc(ExtractionStrategy.DOM_HEURISTIC, html, context=context))
        assert partial.title == "Jazz at the Ship"
        assert partial.date_text == "Friday, October 31, 2025"
        assert partial.time_text == "7:00 pm - 10:00 pm"
        assert partial.venue == "The Ship Pub"
        assert partial.city == "St. John's, NL"
        assert partial.url == "https://example.com/events/jazz"

    def test_listing_card_clock_date_line(self):
        """Should take a combined clock-and-date line as the date text."""
        html = "<div><h4>Comedy Night</h4><p>8:00 pm November 7, 2025</p><p>Mainstage</p></div>"
        context = {"mode": "listing", "venue_pattern": "Mainstage"}
        partial = extract_dom_heuristic(doc(ExtractionStrategy.DOM_HEURISTIC, html, context=context))
        assert partial.date_text == "8:00 pm November 7, 2025"
        assert partial.time_text is None
        assert partial.venue == "Mainstage"

    def test_full_page(self):
        """Should find date, city and title on a rendered event page."""
        html = (
            "<html><body>"
            "<div>Log In</div>"
            "<span>Friday, October 31, 2025 at 7:00 PM NDT</span>"
            "<h1>Halloween Costume Party</h1>"
            "<div>St. John's, Newfoundland and Labrador</div>"
            "<script>var x = 1;</script>"
            "</body></html>"
        )
        partial = extract_dom_heuristic(
            doc(ExtractionStrategy.DOM_HEURISTIC, html, url="https://www.facebook.com/events/1")
        )
        assert partial.starts_at == datetime(2025, 10, 31, 21, 30, tzinfo=timezone.utc)
        assert partial.title == "Halloween Costume Party"
        assert "Newfoundland" in partial.city
        assert partial.url == "https://www.facebook.com/events/1"

    def test_page_title_context_wins(self):
        """Should prefer the browser tab title when it is not chrome."""
        html = "<html><body><h1>Something Else Entirely</h1></body></html>"
        partial = extract_dom_heuristic(
            doc(ExtractionStrategy.DOM_HEURISTIC, html, context={"page_title": "Craft Fair | Facebook"})
        )
        assert partial.title == "Craft Fair"


class TestCalendar:
    """Tests for extract_calendar."""

    def test_maps_vevent(self, vevent):
        """Should map summary, times, location, url and categories."""
        context = {"label_tags": ["ICS"], "default_city": "St. John's, NL"}
        partial = extract_calendar(doc(ExtractionStrategy.CALENDAR, vevent, context=context))
        assert partial.source_id == "10001-1761951600@stjohnsliving.ca"
        assert partial.title == "Harbour Lights Parade"
        assert partial.starts_at == datetime(2025, 11, 22, 22, 0, tzinfo=timezone.utc)
        assert partial.ends_at == datetime(2025, 11, 23, 0, 0, tzinfo=timezone.utc)
        assert partial.venue == "Water Street"
        assert partial.city == "St. John's, NL"
        assert partial.description == "Annual parade"
        assert partial.tags == ["ICS", "Family", "Holiday"]

    def test_all_day_is_midnight_utc(self):
        """Should read a DATE start as midnight UTC."""
        event = VEvent()
        event.add("summary", "Craft Fair")
        event.add("dtstart", date(2025, 12, 6))
        partial = extract_calendar(doc(ExtractionStrategy.CALENDAR, event))
        assert partial.starts_at == datetime(2025, 12, 6, 0, 0, tzinfo=timezone.utc)

    def test_fallback_url(self):
        """Should use the context fallback url when the entry has none."""
        event = VEvent()
        event.add("summary", "Pop-up")
        partial = extract_calendar(
            doc(ExtractionStrategy.CALENDAR, event, context={"fallback_url": "https://feed.example/cal.ics"})
        )
        assert partial.url == "https://feed.example/cal.ics"

    def test_identity_without_uid(self):
        """Should derive identity from feed, summary and start when UID is missing."""
        event = VEvent()
        event.add("summary", "Market")
        event.add("dtstart", datetime(2025, 11, 1, 14, 0, tzinfo=timezone.utc))
        identity = calendar_entry_identity(event, "https://feed.example/cal.ics")
        assert identity == "https://feed.example/cal.ics::Market::2025-11-01T14:00:00Z"

    def test_identity_missing(self):
        """Should return None when neither UID, summary nor start exist."""
        assert calendar_entry_identity(VEvent(), "https://feed.example/cal.ics") is None


class TestDiscovery:
    """Tests for extract_discovery."""

    def test_maps_result(self):
        """Should map an API result with slug identity and cheapest price."""
        result = {
            "slug": "jazz-night",
            "name": "Jazz Night",
            "starts_on": "2025-11-08T23:30:00Z",
            "ends_on": "2025-11-09T02:00:00Z",
            "venue": {"name": "The Ship"},
            "location": {"city": "St. John's", "province": "NL"},
            "description": "<p>Live <b>jazz</b></p>",
            "image": "https://img.example.com/jazz.jpg",
            "ticket_types": [{"price": "20.00"}, {"price": "0"}],
            "categories": [{"name": "Music"}, "live_music"],
        }
        partial = extract_discovery(
            doc(ExtractionStrategy.DISCOVERY_API, result, context={"base_url": "https://www.showpass.com"})
        )
        assert partial.source_id == "jazz-night"
        assert partial.title == "Jazz Night"
        assert partial.venue == "The Ship"
        assert partial.city == "St. John's, NL"
        assert partial.url == "https://www.showpass.com/jazz-night/"
        assert partial.description == "Live jazz"
        assert partial.price == "Free"
        assert partial.tags == ["Music", "live music"]

    def test_numeric_identity_is_string(self):
        """Should stringify a numeric item id."""
        partial = extract_discovery(doc(ExtractionStrategy.DISCOVERY_API, {"item_id": 991, "name": "X"}))
        assert partial.source_id == "991"

    def test_slug_from_public_url(self):
        """Should derive the slug from the public url path."""
        assert discovery_slug({"public_url": "https://www.showpass.com/gala-night/"}) == "gala-night"
        assert discovery_slug({}) is None


class TestHelpers:
    """Tests for small extraction helpers."""

    def test_format_price(self):
        """Should format free, whole and fractional prices."""
        assert format_price(0) == "Free"
        assert format_price(12.0) == "$12"
        assert format_price(12.5) == "$12.50"
        assert format_price(-1) is None

    def test_decode_redirect(self):
        """Should unwrap facebook outbound redirects only."""
        wrapped = "https://l.facebook.com/l.php?u=https%3A%2F%2Ftickets.example.com%2Fx&h=abc"
        assert decode_redirect(wrapped) == "https://tickets.example.com/x"
        assert decode_redirect("https://example.com/a") == "https://example.com/a"


class TestFieldExtractor:
    """Tests for FieldExtractor dispatch."""

    def test_dispatches_and_fills_source_id(self):
        """Should dispatch by strategy and default the source id from the document."""
        extractor = FieldExtractor()
        partial = extractor.extract(
            doc(ExtractionStrategy.METADATA, '<meta property="og:title" content="Gala">', source_id="gala-1")
        )
        assert partial.strategy == ExtractionStrategy.METADATA
        assert partial.title == "Gala"
        assert partial.source_id == "gala-1"

    def test_malformed_payload_is_a_miss(self):
        """Should turn a strategy failure into an empty field set."""
        extractor = FieldExtractor()
        partial = extractor.extract(doc(ExtractionStrategy.CALENDAR, object(), source_id="x"))
        assert partial.is_empty()
        assert partial.source_id == "x"

    def test_extract_all_keeps_order(self):
        """Should return one partial per document in order."""
        extractor = FieldExtractor()
        docs = [
            doc(ExtractionStrategy.DISCOVERY_API, {"name": "A"}),
            doc(ExtractionStrategy.METADATA, "<html></html>"),
        ]
        partials = extractor.extract_all(docs)
        assert [p.strategy for p in partials] == [
            ExtractionStrategy.DISCOVERY_API,
            ExtractionStrategy.METADATA,
        ]
