"""
Fallback merger.

Combines the partial field sets produced by several extraction strategies for
one event into a single `CanonicalEvent`. Partials arrive in confidence order
(most trusted first); for each field the first usable value wins, except that
a value that looks like site chrome (login prompts, navigation labels) yields
to a later candidate that does not.
"""

from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from typing import Any, Iterable, List, Optional, Sequence

from eventsync.extraction.dates import derive_time_range
from eventsync.extraction.text import clean_location, collapse_ws, is_noise, sanitize
from eventsync.schemas.event import (
    STRATEGY_CONFIDENCE,
    CanonicalEvent,
    ExtractionStrategy,
    PartialFieldSet,
)

logger = logging.getLogger(__name__)

FIELD_LIMITS = {
    "title": 200,
    "description": 1200,
    "venue": 160,
    "city": 120,
    "organizer": 160,
    "price": 60,
}

LINK_FIELDS = ("url", "image_url")
LOCATION_FIELDS = ("venue", "city")


class MergeError(ValueError):
    """Raised when partials cannot produce a valid canonical event."""

    def __init__(self, message: str, source: Optional[str] = None, source_id: Optional[str] = None):
        super().__init__(message)
        self.source = source
        self.source_id = source_id


def rank_partials(
    partials: Iterable[PartialFieldSet],
    order: Sequence[ExtractionStrategy] = STRATEGY_CONFIDENCE,
) -> List[PartialFieldSet]:
    """
    Order partials by strategy confidence.

    The sort is stable so partials of the same strategy keep the order the
    adapter produced them in. Partials without a known strategy go last.
    """
    rank = {strategy: i for i, strategy in enumerate(order)}
    return sorted(partials, key=lambda p: rank.get(p.strategy, len(rank)))


def pick_text(candidates: Iterable[Any], limit: int) -> Optional[str]:
    """First sanitized candidate, preferring one that is not noise."""
    present = [v for v in (sanitize(c, limit) for c in candidates) if v]
    if not present:
        return None
    for value in present:
        if not is_noise(value):
            return value
    return present[0]


def _first(values: Iterable[Any]) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _same_day(a: datetime, b: datetime) -> bool:
    """Whether two instants share a calendar day in the zone of `a`."""
    return a.date() == b.astimezone(a.tzinfo).date()


class FallbackMerger:
    """Merge ranked partial field sets into canonical events."""

    def __init__(self, default_tz: Optional[tzinfo] = None):
        self.default_tz = default_tz

    def merge(
        self,
        partials: Sequence[PartialFieldSet],
        *,
        source: str,
        source_id: Optional[str] = None,
    ) -> CanonicalEvent:
        """
        Merge `partials` (most confident first) into one event.

        Raises:
            MergeError: no title survives sanitizing, or no source id exists.
        """
        if source_id is None:
            source_id = _first(collapse_ws(p.source_id) for p in partials)
        if not source_id:
            raise MergeError("no source id in any partial", source=source)

        fields = {
            name: pick_text((getattr(p, name) for p in partials), limit)
            for name, limit in FIELD_LIMITS.items()
        }
        if not fields["title"]:
            raise MergeError("no usable title", source=source, source_id=source_id)
        for name in LOCATION_FIELDS:
            fields[name] = clean_location(fields[name], FIELD_LIMITS[name])

        for name in LINK_FIELDS:
            fields[name] = _first(collapse_ws(getattr(p, name)) for p in partials)

        fields["tags"] = _first(p.tags for p in partials if p.tags) or []

        starts_at, ends_at = self._pick_times(partials)

        return CanonicalEvent(
            source=source,
            source_id=source_id,
            starts_at=starts_at,
            ends_at=ends_at,
            **fields,
        )

    def _pick_times(self, partials: Sequence[PartialFieldSet]):
        """
        Pick a start/end pair that belongs together.

        The end comes from the partial that supplied the start, or from a
        partial that agrees with it. Listing text fills a missing end only
        when its derived start falls on the same day as the chosen start.
        """
        anchor = _first(p for p in partials if p.starts_at is not None)
        if anchor is None:
            derived_start, derived_end = self._derive_times(partials)
            explicit_end = _first(p.ends_at for p in partials)
            if derived_start is None:
                return None, explicit_end
            return derived_start, derived_end if derived_end is not None else explicit_end

        starts_at = anchor.starts_at
        ends_at = anchor.ends_at or _first(
            p.ends_at
            for p in partials
            if p.ends_at is not None and p.starts_at in (None, starts_at)
        )
        if ends_at is None:
            derived_start, derived_end = self._derive_times(partials)
            if (
                derived_start is not None
                and derived_end is not None
                and derived_end > starts_at
                and _same_day(derived_start, starts_at)
            ):
                ends_at = derived_end
        return starts_at, ends_at

    def _derive_times(self, partials: Sequence[PartialFieldSet]):
        for p in partials:
            if not (p.date_text or p.time_text):
                continue
            start, end = derive_time_range(p.date_text, p.time_text, self.default_tz)
            if start is not None:
                return start, end
        return None, None

    def try_merge(
        self,
        partials: Sequence[PartialFieldSet],
        *,
        source: str,
        source_id: Optional[str] = None,
    ) -> Optional[CanonicalEvent]:
        """Like `merge()` but logs and returns None on failure."""
        try:
            return self.merge(partials, source=source, source_id=source_id)
        except MergeError as e:
            logger.warning(f"Dropping record {source}/{e.source_id or '?'}: {e}")
            return None
