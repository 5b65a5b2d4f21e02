"""
ICS Feed Adapter.

Pulls one or more iCalendar feeds and yields one CALENDAR document per VEVENT.
Feeds come from the source config (`feed_url` / `feeds`) or, for the operator
managed `ics` source, from the `ics_sources` table passed in as `feeds=`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from icalendar import Calendar

from eventsync.extraction.strategies import calendar_entry_identity
from eventsync.ingestion.adapters.base_adapter import (
    BaseSourceAdapter,
    DocumentGroup,
)
from eventsync.runtime.http import FetchError
from eventsync.schemas.event import ExtractionStrategy

ICS_HEADERS = {"Accept": "text/calendar, text/plain;q=0.9, */*;q=0.5"}


class IcsFeedAdapter(BaseSourceAdapter):
    """
    Adapter for iCalendar feeds.

    Options:
        feed_url: single feed URL
        feeds: list of {"url": ..., "label": ...}
        label_tags: tags added to every event (the feed label is appended)
        link_to_feed: use the feed URL when a VEVENT has no URL
    """

    orders_partials = True

    def _validate_config(self) -> None:
        feeds = self.option("feeds")
        if feeds is not None and not isinstance(feeds, list):
            raise ValueError(f"{self.source_id}: 'feeds' must be a list")

    def configured_feeds(self) -> List[Dict[str, Any]]:
        feeds = [dict(f) for f in (self.option("feeds") or [])]
        if self.option("feed_url"):
            feeds.insert(0, {"url": self.option("feed_url"), "label": self.option("label")})
        return feeds

    def collect(self, *, metadata: Dict[str, Any], errors: List[str], feeds=None, **kwargs) -> List[DocumentGroup]:
        feeds = list(feeds) if feeds is not None else self.configured_feeds()
        feed_status: Dict[str, str] = {}
        metadata["feed_status"] = feed_status
        metadata["skipped_without_identity"] = 0

        groups: List[DocumentGroup] = []
        seen = set()
        for feed in feeds:
            url = feed.get("url")
            if not url:
                continue
            try:
                text = self.http.get_text(url, timeout_s=self.config.request_timeout, headers=ICS_HEADERS)
                calendar = Calendar.from_ical(text)
            except (FetchError, ValueError) as e:
                self.logger.error(f"Failed to load ICS feed {url}: {e}")
                errors.append(f"{url}: {e}")
                feed_status[url] = f"error: {e}"
                continue

            count = 0
            for component in calendar.walk("VEVENT"):
                identity = calendar_entry_identity(component, url)
                if not identity:
                    metadata["skipped_without_identity"] += 1
                    continue
                if identity in seen:
                    continue
                seen.add(identity)
                groups.append([self._document(component, identity, url, feed.get("label"))])
                count += 1

            feed_status[url] = f"ok: {count} events"
            self.logger.info(f"Parsed {count} events from ICS feed {url}")

        urls = [f["url"] for f in feeds if f.get("url")]
        if urls and all(feed_status[u].startswith("error") for u in urls):
            raise FetchError(urls[0], "every ICS feed failed")
        return groups

    def _document(self, component, identity: str, feed_url: str, label: Optional[str]):
        label_tags = list(self.option("label_tags") or [])
        if label:
            label_tags.append(label)
        return self.document(
            ExtractionStrategy.CALENDAR,
            component,
            source_id=identity,
            url=feed_url,
            feed_url=feed_url,
            label_tags=label_tags,
            fallback_url=feed_url if self.option("link_to_feed", False) else None,
        )
