# src/eventsync/schemas/event.py
"""
Canonical Event Schema for the event reconciliation engine.

Every source, whatever its shape (listing HTML, ICS feed, discovery API JSON,
social event page), ends up as a `CanonicalEvent`. Extraction strategies
produce `PartialFieldSet` guesses which the fallback merger combines into one
canonical record per logical event.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
)

from eventsync.extraction.dates import parse_iso, to_iso
from eventsync.ingestion.fingerprint import fingerprint

_TAG_SPLIT = re.compile(r"[,/|]")


# ============================================================================
# ENUMS
# ============================================================================


class ExtractionStrategy(str, Enum):
    """How a raw document should be read."""

    STRUCTURED_DATA = "structured_data"
    METADATA = "metadata"
    DOM_HEURISTIC = "dom_heuristic"
    CALENDAR = "calendar"
    DISCOVERY_API = "discovery_api"


# Default confidence order, most trusted first.
STRATEGY_CONFIDENCE: List[ExtractionStrategy] = [
    ExtractionStrategy.CALENDAR,
    ExtractionStrategy.DISCOVERY_API,
    ExtractionStrategy.STRUCTURED_DATA,
    ExtractionStrategy.METADATA,
    ExtractionStrategy.DOM_HEURISTIC,
]


# ============================================================================
# TAG HELPERS
# ============================================================================


def parse_tags(value: Any) -> List[str]:
    """
    Normalize tags to an ordered, case-insensitively unique list.

    Accepts a delimited string (`,` `/` `|`) or any iterable of strings.
    """
    if value is None:
        return []
    if isinstance(value, str):
        raw = _TAG_SPLIT.split(value)
    else:
        raw = []
        for item in value:
            if item is None:
                continue
            raw.extend(_TAG_SPLIT.split(str(item)))

    seen = set()
    tags: List[str] = []
    for item in raw:
        tag = re.sub(r"\s+", " ", item).strip()
        if not tag or tag.lower() in seen:
            continue
        seen.add(tag.lower())
        tags.append(tag)
    return tags


def format_tags(tags: Optional[List[str]]) -> Optional[str]:
    """Serialize tags as `", "`-joined text (None when there are none)."""
    if not tags:
        return None
    return ", ".join(tags)


# ============================================================================
# RAW DOCUMENTS
# ============================================================================


@dataclass
class RawDocument:
    """
    One fetched document for one logical event.

    `payload` is HTML text, a JSON object or an icalendar component depending
    on `strategy`. `context` carries adapter hints such as the default city or
    the feed label.
    """

    source: str
    strategy: ExtractionStrategy
    payload: Any
    source_id: Optional[str] = None
    url: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# PARTIAL FIELD SET
# ============================================================================


class PartialFieldSet(BaseModel):
    """
    One strategy's best guess for one event. Never persisted.

    Absent fields mean the strategy found nothing. `date_text` and `time_text`
    are unparsed hints that the merger turns into a time range when no
    strategy supplied `starts_at`.
    """

    model_config = ConfigDict(use_enum_values=False)

    strategy: Optional[ExtractionStrategy] = None
    source_id: Optional[str] = None

    title: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    venue: Optional[str] = None
    city: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    organizer: Optional[str] = None
    tags: Optional[List[str]] = None

    date_text: Optional[str] = None
    time_text: Optional[str] = None

    @field_validator("starts_at", "ends_at", mode="before")
    @classmethod
    def coerce_datetime(cls, v):
        """Unparsable timestamps become None instead of failing."""
        return parse_iso(v)

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v):
        tags = parse_tags(v)
        return tags or None

    def is_empty(self) -> bool:
        """True when no event field was found."""
        data = self.model_dump(exclude={"strategy", "source_id"}, exclude_none=True)
        return not data


# ============================================================================
# CANONICAL EVENT
# ============================================================================

# Fields that make up the content fingerprint.
SEMANTIC_FIELDS = (
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
)


class CanonicalEvent(BaseModel):
    """
    The normalized representation of one event from one source.

    Identity is `(source, source_id)`. `content_hash` is derived from the
    semantic fields and cannot be assigned.
    """

    model_config = ConfigDict(
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "source": "stjohnsliving",
                "source_id": "10001-1761951600-1761962400@stjohnsliving.ca",
                "title": "Halloween Howl",
                "starts_at": "2025-10-31T21:30:00Z",
                "ends_at": None,
                "venue": "The Rock House",
                "city": "St. John's, NL",
                "tags": ["Music", "Halloween"],
            }
        },
    )

    # ---- IDENTITY ----
    source: str = Field(min_length=1)
    source_id: str = Field(min_length=1)

    # ---- CONTENT ----
    title: str
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    venue: Optional[str] = None
    city: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    organizer: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("source", "source_id", mode="before")
    @classmethod
    def strip_identity(cls, v):
        return str(v).strip() if v is not None else v

    @field_validator("title")
    @classmethod
    def validate_title_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip()

    @field_validator("starts_at", "ends_at", mode="before")
    @classmethod
    def coerce_datetime(cls, v):
        return parse_iso(v)

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v):
        return parse_tags(v)

    @field_serializer("starts_at", "ends_at")
    def serialize_datetime(self, v: Optional[datetime]) -> Optional[str]:
        """Serialize instants as `YYYY-MM-DDTHH:MM:SSZ`."""
        return to_iso(v)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def content_hash(self) -> str:
        """Fingerprint over the semantic fields."""
        return fingerprint(self)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.source_id)

    # ---- ROW MAPPING ----

    def to_row(self) -> Dict[str, Any]:
        """Flat row for the primary `events` table."""
        return {
            "source": self.source,
            "source_id": self.source_id,
            "title": self.title,
            "starts_at": to_iso(self.starts_at),
            "ends_at": to_iso(self.ends_at),
            "venue": self.venue,
            "city": self.city,
            "url": self.url,
            "image_url": self.image_url,
            "description": self.description,
            "price": self.price,
            "organizer": self.organizer,
            "tags": format_tags(self.tags),
            "content_hash": self.content_hash,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CanonicalEvent":
        """Rebuild an event from a primary store row, ignoring bookkeeping."""
        data = {k: row.get(k) for k in ("source", "source_id", *SEMANTIC_FIELDS)}
        data["tags"] = data.get("tags") or []
        return cls(**data)
