"""
Field extraction strategies.

`FieldExtractor.extract()` turns one `RawDocument` into one `PartialFieldSet`
by dispatching on the document's declared strategy:

- STRUCTURED_DATA: JSON-LD `Event` nodes
- METADATA: OpenGraph / event / place meta tags
- DOM_HEURISTIC: heading and text-line heuristics (listing cards or full pages)
- CALENDAR: one iCalendar VEVENT
- DISCOVERY_API: one discovery API result or detail object

Strategies never raise on malformed input; a miss is an empty field set.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import parse_qs, unquote, urljoin, urlparse

from bs4 import BeautifulSoup

from eventsync.extraction.dates import (
    MONTH_NAMES,
    parse_date_from_text,
    parse_iso,
    to_iso,
)
from eventsync.extraction.text import (
    clean_text,
    collapse_ws,
    is_noise,
    strip_login_noise,
)
from eventsync.schemas.event import (
    ExtractionStrategy,
    PartialFieldSet,
    RawDocument,
    parse_tags,
)

logger = logging.getLogger(__name__)

_WEEKDAY = r"(?:Sunday|Monday|Tuesday|Wednesday|Thursday|Friday|Saturday)"
_DATE_LINE = re.compile(r",\s+\d{4}$")
_TIME_LINE = re.compile(r"\b(?:am|pm)\b|\d(?:am|pm)\b|all\s*day", re.IGNORECASE)
_CLOCK_DATE_LINE = re.compile(r"\d{1,2}:\d{2}\s*[ap]m\s+[A-Za-z]+\s+\d{1,2},\s*\d{4}", re.IGNORECASE)
_LINK_EXCLUDE = re.compile(r"more info|image|submit an event|details|buy tickets", re.IGNORECASE)
_DETAIL_LINK = re.compile(r"more info|details|buy tickets", re.IGNORECASE)
_TITLE_DENY = (
    re.compile(r"^See\b", re.IGNORECASE),
    re.compile(r"^Log\b", re.IGNORECASE),
    re.compile(r"^(?:Home|Event|Events)$", re.IGNORECASE),
    re.compile(rf"^{_WEEKDAY}\b.*\bat\s+\d{{1,2}}:\d{{2}}", re.IGNORECASE),
)
_VENUE_WORDS = re.compile(r"centre|center|hall|pub|theatre|st\.\s*john", re.IGNORECASE)
_CITY_WORDS = re.compile(r"Newfoundland|Labrador|St\.\s*John", re.IGNORECASE)


def soup_of(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


# =============================================================================
# JSON-LD helpers
# =============================================================================


def _is_event_type(value: Any) -> bool:
    types = value if isinstance(value, list) else [value]
    for t in types:
        name = str(t).rsplit("/", 1)[-1]
        if name.lower() == "event" or (name.endswith("Event") and name[:1].isupper()):
            return True
    return False


def find_event_node(node: Any) -> Optional[Dict[str, Any]]:
    """Depth-first search for the first JSON-LD node typed as an Event."""
    if isinstance(node, list):
        for item in node:
            found = find_event_node(item)
            if found:
                return found
        return None
    if isinstance(node, dict):
        node_type = node.get("@type") or node.get("type")
        if node_type and _is_event_type(node_type):
            return node
        for value in node.values():
            found = find_event_node(value)
            if found:
                return found
    return None


def json_ld_blocks(soup: BeautifulSoup) -> List[Any]:
    """Parse every JSON-LD block on the page, skipping invalid ones."""
    blocks = []
    for tag in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = tag.string or tag.get_text() or ""
        try:
            blocks.append(json.loads(raw.strip()))
        except ValueError:
            continue
    return blocks


def normalize_image(image: Any) -> Optional[str]:
    if not image:
        return None
    if isinstance(image, str):
        return image
    if isinstance(image, list):
        for item in image:
            found = normalize_image(item)
            if found:
                return found
        return None
    if isinstance(image, dict):
        return image.get("url") or image.get("contentUrl") or image.get("primaryImageOfPage")
    return None


def _name_of(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        for item in value:
            found = _name_of(item)
            if found:
                return found
        return None
    if isinstance(value, dict):
        return value.get("name")
    return None


def _offer_price(offers: Any) -> Optional[str]:
    items = offers if isinstance(offers, list) else [offers]
    prices = []
    for offer in items:
        if not isinstance(offer, dict):
            continue
        for key in ("price", "lowPrice"):
            if offer.get(key) is None:
                continue
            try:
                prices.append(float(offer[key]))
            except (TypeError, ValueError):
                continue
    if not prices:
        return None
    return format_price(min(prices))


def format_price(value: float) -> Optional[str]:
    """`0` -> `Free`, `12.0` -> `$12`, `12.5` -> `$12.50`."""
    if value < 0:
        return None
    if value == 0:
        return "Free"
    if abs(value - round(value)) < 0.001:
        return f"${int(round(value))}"
    return f"${value:.2f}"


def decode_redirect(url: Optional[str]) -> Optional[str]:
    """Unwrap `facebook.com/l.php?u=...` outbound redirects."""
    if not url:
        return url
    parsed = urlparse(url)
    if (parsed.hostname or "").endswith("facebook.com") and parsed.path.startswith("/l.php"):
        target = parse_qs(parsed.query).get("u")
        if target:
            return unquote(target[0])
    return url


# =============================================================================
# Strategies
# =============================================================================


def extract_structured_data(doc: RawDocument) -> PartialFieldSet:
    """Map the first JSON-LD Event node on the page."""
    soup = soup_of(doc.payload)
    node = None
    for block in json_ld_blocks(soup):
        node = find_event_node(block)
        if node:
            break
    if not node:
        return PartialFieldSet(strategy=ExtractionStrategy.STRUCTURED_DATA)

    location = node.get("location") or {}
    if isinstance(location, list):
        location = location[0] if location else {}
    venue = location if isinstance(location, str) else location.get("name")
    address = location.get("address") if isinstance(location, dict) else None
    city = None
    if isinstance(address, dict):
        city = address.get("addressLocality") or address.get("addressRegion")
    elif isinstance(address, str) and not venue:
        venue = address

    return PartialFieldSet(
        strategy=ExtractionStrategy.STRUCTURED_DATA,
        title=clean_text(node.get("name"), 300),
        description=clean_text(node.get("description"), 2000),
        starts_at=node.get("startDate") or node.get("start_time"),
        ends_at=node.get("endDate") or node.get("end_time"),
        venue=clean_text(venue, 200),
        city=clean_text(city, 120),
        image_url=normalize_image(node.get("image")),
        organizer=clean_text(_name_of(node.get("organizer")), 200),
        price=_offer_price(node.get("offers")) if node.get("offers") else None,
        url=node.get("url") if isinstance(node.get("url"), str) else None,
    )


def _meta(soup: BeautifulSoup, *names: str) -> Optional[str]:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content"):
            value = collapse_ws(tag.get("content"))
            if value:
                return value
    return None


def extract_metadata(doc: RawDocument) -> PartialFieldSet:
    """Read OpenGraph, `event:*` and `place:*` meta tags."""
    soup = soup_of(doc.payload)
    image = _meta(soup, "og:image", "og:image:url", "twitter:image")
    if not image:
        for block in json_ld_blocks(soup):
            node = find_event_node(block)
            image = normalize_image(node.get("image")) if node else None
            if image:
                break

    return PartialFieldSet(
        strategy=ExtractionStrategy.METADATA,
        title=clean_text(_meta(soup, "og:title", "twitter:title")),
        description=clean_text(_meta(soup, "og:description", "twitter:description", "description")),
        image_url=image,
        starts_at=_meta(soup, "event:start_time", "og:start_time"),
        ends_at=_meta(soup, "event:end_time", "og:end_time"),
        venue=clean_text(_meta(soup, "event:location", "event:venue", "place:name"), 200),
        city=clean_text(_meta(soup, "event:location:city", "place:location:city"), 120),
        url=_meta(soup, "og:url"),
    )


def _lines(node) -> List[str]:
    text = node.get_text("\n")
    return [line for line in (collapse_ws(s) for s in text.split("\n")) if line]


def _extract_listing_card(doc: RawDocument) -> PartialFieldSet:
    """One listing card: a heading plus its surrounding block."""
    ctx = doc.context
    soup = soup_of(doc.payload)
    heading = soup.select_one(ctx.get("title_selector") or "h1, h2, h3, h4")
    title = collapse_ws(ctx.get("title")) or (collapse_ws(heading.get_text(" ")) if heading else None)
    lines = _lines(soup)

    date_text = next((s for s in lines if _CLOCK_DATE_LINE.search(s)), None)
    time_text = None
    if date_text is None:
        date_text = next((s for s in lines if _DATE_LINE.search(s)), None)
        time_text = next(
            (s for s in lines if _TIME_LINE.search(s) and s != date_text and s != title),
            None,
        )

    venue = None
    venue_pattern = ctx.get("venue_pattern")
    if venue_pattern:
        venue = next((s for s in lines if re.search(venue_pattern, s, re.IGNORECASE) and s != title), None)
    if venue is None:
        for a in soup.find_all("a"):
            text = collapse_ws(a.get_text(" "))
            if not text or _LINK_EXCLUDE.search(text) or text == title:
                continue
            venue = text
            break

    base_url = ctx.get("base_url")
    href = None
    for a in soup.find_all("a"):
        if _DETAIL_LINK.search(a.get_text(" ") or "") and a.get("href"):
            href = a["href"]
            break
    if href is None and heading is not None:
        link = heading.find("a") or heading.find_parent("a")
        href = link.get("href") if link else None
    url = urljoin(base_url, href) if href and base_url else href

    return PartialFieldSet(
        strategy=ExtractionStrategy.DOM_HEURISTIC,
        title=title,
        venue=venue,
        city=ctx.get("default_city"),
        url=url,
        date_text=date_text,
        time_text=time_text,
    )


def _page_candidates(soup: BeautifulSoup) -> List[str]:
    body = soup.body or soup
    candidates: List[str] = []
    seen = set()
    for el in body.find_all(True):
        if el.name in ("script", "style", "noscript"):
            continue
        text = clean_text(el.get_text(" "))
        if text and text not in seen:
            seen.add(text)
            candidates.append(text)
    return candidates


def _title_candidate(candidates: Iterable[str]) -> Optional[str]:
    for text in candidates:
        text = strip_login_noise(text)
        text = re.sub(rf"^(?:\d+\s*)?({_WEEKDAY}.*)$", r"\1", text, flags=re.IGNORECASE)
        text = re.sub(rf"{_WEEKDAY}.*$", "", text, flags=re.IGNORECASE).strip() or text
        text = re.sub(r"^\d{1,2}\s*", "", text).strip()
        if len(text) <= 3 or not re.search(r"[A-Za-z]", text):
            continue
        if any(p.search(text) for p in _TITLE_DENY):
            continue
        if len(text.split(" ")) >= 2:
            return text
    return None


def _page_title(value: Optional[str]) -> Optional[str]:
    """Browser tab title without the site suffix; None when it is chrome."""
    title = collapse_ws(re.sub(r"\s*\|\s*Facebook\s*$", "", value or "", flags=re.IGNORECASE))
    if not title or is_noise(title):
        return None
    return clean_text(title, 200)


def _extract_page(doc: RawDocument) -> PartialFieldSet:
    """Full page fallback: scan text nodes for a date, venue, city and title."""
    soup = soup_of(doc.payload)
    for el in soup(["script", "style", "noscript"]):
        el.extract()
    candidates = _page_candidates(soup)

    date_text = next(
        (
            t
            for t in candidates
            if any(m in t.lower() for m in MONTH_NAMES)
            and re.search(r"at\s+\d{1,2}:\d{2}", t, re.IGNORECASE)
            and re.search(r"\d{4}", t)
        ),
        None,
    )
    venue_el = soup.select_one("[data-testid='event_permalink_event_location']")
    venue = collapse_ws(venue_el.get_text(" ")) if venue_el else None
    if not venue:
        raw = next((t for t in candidates if " - " in t and _VENUE_WORDS.search(t)), None)
        venue = strip_login_noise(raw) or None
    city_raw = next((t for t in candidates if _CITY_WORDS.search(t)), None)

    description = None
    paragraphs = soup.select(doc.context.get("description_selector") or "article p, .entry-content p")
    if paragraphs:
        description = clean_text(" ".join(p.get_text(" ") for p in paragraphs), 600)

    starts_at = None if date_text is None else parse_date_from_text(date_text, doc.context.get("default_tz"))

    return PartialFieldSet(
        strategy=ExtractionStrategy.DOM_HEURISTIC,
        title=_page_title(doc.context.get("page_title")) or clean_text(_title_candidate(candidates), 200),
        venue=clean_text(venue, 200),
        city=clean_text(strip_login_noise(city_raw), 120) if city_raw else None,
        description=description,
        starts_at=starts_at,
        date_text=date_text,
        url=doc.url,
    )


def extract_dom_heuristic(doc: RawDocument) -> PartialFieldSet:
    if doc.context.get("mode") == "listing":
        return _extract_listing_card(doc)
    return _extract_page(doc)


def _ical_value(component, key: str) -> Any:
    value = component.get(key)
    if value is None:
        return None
    if hasattr(value, "dt"):
        return value.dt
    return value


def _ical_instant(value: Any, default_tz=None) -> Optional[datetime]:
    if isinstance(value, datetime):
        return parse_iso(value, default_tz)
    if isinstance(value, date):
        return datetime.combine(value, time(0, 0), tzinfo=timezone.utc)
    return None


def _ical_categories(component) -> List[str]:
    raw = component.get("CATEGORIES")
    if raw is None:
        return []
    items = raw if isinstance(raw, list) else [raw]
    tags: List[str] = []
    for item in items:
        cats = getattr(item, "cats", None)
        if cats is not None:
            tags.extend(str(c) for c in cats)
        else:
            tags.append(str(item))
    return tags


def calendar_entry_identity(component, feed_url: Optional[str]) -> Optional[str]:
    """UID, else `"{feed_url}::{summary}::{start_iso}"`; None when neither exists."""
    uid = collapse_ws(component.get("UID"))
    if uid:
        return uid
    summary = collapse_ws(component.get("SUMMARY"))
    start = _ical_instant(_ical_value(component, "DTSTART"))
    if not summary and start is None:
        return None
    return f"{feed_url}::{summary or ''}::{to_iso(start) or ''}"


def extract_calendar(doc: RawDocument) -> PartialFieldSet:
    """Map one VEVENT component."""
    component = doc.payload
    ctx = doc.context
    default_city = ctx.get("default_city")

    location = collapse_ws(component.get("LOCATION"))
    venue, city = None, default_city
    if location:
        head, _, rest = location.partition(",")
        venue = head.strip() or None
        city = rest.strip() or default_city

    url = collapse_ws(component.get("URL")) or collapse_ws(component.get("X-TRIBE-EVENT-URL"))
    description = collapse_ws(component.get("DESCRIPTION")) or collapse_ws(
        component.get("X-TRIBE-EVENT-DESCRIPTION")
    )
    tags = list(ctx.get("label_tags") or []) + _ical_categories(component)

    organizer = component.get("ORGANIZER")
    organizer_name = None
    if organizer is not None:
        params = getattr(organizer, "params", {}) or {}
        organizer_name = collapse_ws(params.get("CN"))

    return PartialFieldSet(
        strategy=ExtractionStrategy.CALENDAR,
        source_id=calendar_entry_identity(component, ctx.get("feed_url")),
        title=collapse_ws(component.get("SUMMARY")),
        starts_at=_ical_instant(_ical_value(component, "DTSTART"), ctx.get("default_tz")),
        ends_at=_ical_instant(_ical_value(component, "DTEND"), ctx.get("default_tz")),
        venue=venue,
        city=city,
        url=url or ctx.get("fallback_url"),
        description=description,
        organizer=organizer_name,
        tags=tags,
    )


def html_to_text(html: Optional[str]) -> Optional[str]:
    if not html:
        return None
    return collapse_ws(soup_of(html).get_text(" "))


def format_city(location: Any, default_city: Optional[str]) -> Optional[str]:
    """`"City, Province"`, else the city alone, else the default."""
    if not isinstance(location, dict):
        return default_city
    city = collapse_ws(location.get("city"))
    province = collapse_ws(location.get("province") or location.get("state"))
    if city and province:
        return f"{city}, {province}"
    return city or default_city


def discovery_tags(*values: Any) -> List[str]:
    flat: List[str] = []

    def add(value: Any) -> None:
        if not value:
            return
        if isinstance(value, list):
            for item in value:
                add(item)
            return
        if isinstance(value, dict):
            add(value.get("name"))
            return
        text = collapse_ws(str(value).replace("_", " "))
        if text:
            flat.append(text)

    for value in values:
        add(value)
    return parse_tags(flat)


def ticket_price(ticket_types: Any) -> Optional[str]:
    if not isinstance(ticket_types, list):
        return None
    values = []
    for tt in ticket_types:
        if not isinstance(tt, dict):
            continue
        try:
            value = float(tt.get("price"))
        except (TypeError, ValueError):
            continue
        if value >= 0:
            values.append(value)
    return format_price(min(values)) if values else None


def discovery_slug(result: Dict[str, Any]) -> Optional[str]:
    """The result slug, else the path of its public URL."""
    if result.get("slug"):
        return str(result["slug"])
    url = result.get("frontend_details_url") or result.get("public_url") or result.get("url")
    if not url:
        return None
    path = urlparse(str(url)).path.strip("/")
    return path or None


def extract_discovery(doc: RawDocument) -> PartialFieldSet:
    """Map a discovery API list result or detail object."""
    result = doc.payload if isinstance(doc.payload, dict) else {}
    ctx = doc.context
    base_url = ctx.get("base_url") or ""

    slug = discovery_slug(result)
    identity = slug or result.get("uuid") or result.get("item_id")
    location = result.get("location") or result.get("venue") or {}
    venue = result.get("venue")
    venue_name = (venue.get("name") if isinstance(venue, dict) else None) or (
        location.get("name") if isinstance(location, dict) else None
    )
    url = result.get("frontend_details_url") or result.get("public_url")
    if not url and slug:
        url = f"{base_url}/{slug}/"
    if url and base_url:
        url = urljoin(base_url + "/", url)

    description = html_to_text(result.get("description")) or collapse_ws(
        result.get("description_without_html")
    )

    return PartialFieldSet(
        strategy=ExtractionStrategy.DISCOVERY_API,
        source_id=str(identity) if identity else None,
        title=collapse_ws(result.get("name") or result.get("title")),
        starts_at=result.get("starts_on"),
        ends_at=result.get("ends_on"),
        venue=collapse_ws(venue_name),
        city=format_city(result.get("location"), ctx.get("default_city")),
        url=url,
        image_url=result.get("image") or result.get("image_banner") or result.get("thumbnail"),
        description=description,
        price=ticket_price(result.get("ticket_types")),
        tags=discovery_tags(result.get("tags"), result.get("categories")),
    )


# =============================================================================
# Dispatcher
# =============================================================================


class FieldExtractor:
    """Dispatch a raw document to the strategy it declares."""

    def __init__(self) -> None:
        self._strategies: Dict[ExtractionStrategy, Callable[[RawDocument], PartialFieldSet]] = {
            ExtractionStrategy.STRUCTURED_DATA: extract_structured_data,
            ExtractionStrategy.METADATA: extract_metadata,
            ExtractionStrategy.DOM_HEURISTIC: extract_dom_heuristic,
            ExtractionStrategy.CALENDAR: extract_calendar,
            ExtractionStrategy.DISCOVERY_API: extract_discovery,
        }

    def extract(self, document: RawDocument) -> PartialFieldSet:
        strategy = ExtractionStrategy(document.strategy)
        handler = self._strategies[strategy]
        try:
            partial = handler(document)
        except Exception as e:
            # malformed payloads are an extraction miss, not a failure
            logger.debug(f"{strategy.value} extraction failed for {document.url}: {e}")
            partial = PartialFieldSet(strategy=strategy)
        if partial.source_id is None and document.source_id:
            partial.source_id = document.source_id
        return partial

    def extract_all(self, documents: Iterable[RawDocument]) -> List[PartialFieldSet]:
        return [self.extract(doc) for doc in documents]
