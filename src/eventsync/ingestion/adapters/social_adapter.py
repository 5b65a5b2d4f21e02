"""
Social Event Adapter.

Reads individual social-network event pages submitted by operators. Every
link yields up to five documents: the calendar export, the server-rendered
page (JSON-LD, meta tags) and the browser-rendered page. The pipeline ranks
them by strategy confidence, so the calendar export wins whenever it loads
and login-wall chrome never beats real data.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

from icalendar import Calendar

from eventsync.ingestion.adapters.base_adapter import (
    BaseSourceAdapter,
    DocumentGroup,
)
from eventsync.runtime.browser import BrowserRenderer, to_mobile_url
from eventsync.runtime.http import FetchError
from eventsync.schemas.event import ExtractionStrategy

EVENT_ID_RE = re.compile(r"/events/(\d+)")

EVENT_SELECTORS = [
    "[data-pagelet='Event']",
    "[data-testid='event_permalink_document']",
    "[data-testid='event-permalink-container']",
    "article[data-pagelet]",
]

ICS_EXPORT_URL = "https://www.facebook.com/events/{event_id}/export"


def extract_event_id(url: Optional[str]) -> Optional[str]:
    match = EVENT_ID_RE.search(url or "")
    return match.group(1) if match else None


def to_basic_url(url: str) -> str:
    parsed = urlparse(url)
    host = parsed.hostname or ""
    if not host.endswith("facebook.com"):
        return url
    return urlunparse(parsed._replace(netloc="mbasic.facebook.com"))


class SocialEventAdapter(BaseSourceAdapter):
    """
    Adapter for social-network event pages.

    Options:
        links: list of event URLs (the link table supplies them when
            `use_link_table` is set)
        render: also render the page in a headless browser (default True)
    """

    orders_partials = False

    def __init__(self, config, http_client=None, renderer: Optional[BrowserRenderer] = None):
        super().__init__(config, http_client)
        self._renderer = renderer
        self._owns_renderer = renderer is None

    def _validate_config(self) -> None:
        links = self.option("links")
        if links is not None and not isinstance(links, list):
            raise ValueError(f"{self.source_id}: 'links' must be a list")

    @property
    def renderer(self) -> BrowserRenderer:
        if self._renderer is None:
            self._renderer = BrowserRenderer()
        return self._renderer

    def collect(self, *, metadata: Dict[str, Any], errors: List[str], links=None, **kwargs) -> List[DocumentGroup]:
        links = list(links) if links is not None else list(self.option("links") or [])
        link_status: Dict[str, str] = {}
        metadata["link_status"] = link_status

        groups: List[DocumentGroup] = []
        seen = set()
        for url in links:
            if not url or url in seen:
                continue
            seen.add(url)
            source_id = extract_event_id(url) or url
            group = self.collect_link(url, source_id)
            if group:
                groups.append(group)
                link_status[url] = f"ok: {len(group)} documents"
            else:
                self.logger.error(f"No readable content for {url}")
                errors.append(f"{url}: no readable content")
                link_status[url] = "error: no readable content"
        return groups

    def collect_link(self, url: str, source_id: str) -> DocumentGroup:
        group: DocumentGroup = []

        calendar_doc = self._calendar_export(url, source_id)
        if calendar_doc is not None:
            group.append(calendar_doc)

        html = self._server_html(url)
        if html:
            for strategy in (
                ExtractionStrategy.STRUCTURED_DATA,
                ExtractionStrategy.METADATA,
                ExtractionStrategy.DOM_HEURISTIC,
            ):
                group.append(self.document(strategy, html, source_id=source_id, url=url))

        if self.option("render", True):
            rendered = self._rendered_page(url)
            if rendered is not None:
                group.append(
                    self.document(
                        ExtractionStrategy.DOM_HEURISTIC,
                        rendered.html,
                        source_id=source_id,
                        url=url,
                        page_title=rendered.title,
                    )
                )
        return group

    def _calendar_export(self, url: str, source_id: str):
        event_id = extract_event_id(url)
        if not event_id:
            return None
        export_url = ICS_EXPORT_URL.format(event_id=event_id)
        try:
            calendar = Calendar.from_ical(self.http.get_text(export_url))
        except (FetchError, ValueError) as e:
            self.logger.debug(f"Calendar export failed for {url}: {e}")
            return None
        component = next(iter(calendar.walk("VEVENT")), None)
        if component is None:
            return None
        return self.document(
            ExtractionStrategy.CALENDAR,
            component,
            source_id=source_id,
            url=url,
            feed_url=export_url,
            fallback_url=url,
        )

    def _server_html(self, url: str) -> Optional[str]:
        """The page as served without JS, trying the lighter hosts on failure."""
        candidates = []
        for candidate in (url, to_mobile_url(url), to_basic_url(url)):
            if candidate not in candidates:
                candidates.append(candidate)
        for candidate in candidates:
            try:
                return self.http.get_text(candidate)
            except FetchError as e:
                self.logger.warning(f"OpenGraph fetch failed for {candidate}: {e}")
        return None

    def _rendered_page(self, url: str):
        try:
            return self.renderer.render(url, wait_selectors=EVENT_SELECTORS)
        except Exception as e:
            self.logger.warning(f"Browser render failed for {url}: {e}")
            return None

    def release_fetch_resources(self) -> None:
        if self._renderer is not None and self._owns_renderer:
            self._renderer.close()
            self._renderer = None

    def close(self) -> None:
        self.release_fetch_resources()
        super().close()
