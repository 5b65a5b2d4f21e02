"""
Content fingerprinting for change detection.

The fingerprint is a SHA-1 hex digest over the canonical JSON (sorted keys) of
an event's semantic fields. Bookkeeping such as ids and `updated_at` never
enters the digest, so re-crawling unchanged content yields the same value and
the primary store can skip the write.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict

if TYPE_CHECKING:
    from eventsync.schemas.event import CanonicalEvent


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return value


def _trim(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


def semantic_payload(event: "CanonicalEvent") -> Dict[str, Any]:
    """The exact mapping that is hashed."""
    tags = event.tags or []
    return {
        "title": _trim(event.title),
        "starts_at": _iso(event.starts_at),
        "ends_at": _iso(event.ends_at),
        "venue": _trim(event.venue),
        "city": _trim(event.city),
        "url": event.url,
        "image_url": event.image_url,
        "description": event.description,
        "price": event.price,
        "organizer": _trim(event.organizer),
        "tags": ", ".join(tags) if tags else None,
    }


def hash_payload(payload: Dict[str, Any]) -> str:
    encoded = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


def fingerprint(event: "CanonicalEvent") -> str:
    """Return the content fingerprint of `event`."""
    return hash_payload(semantic_payload(event))
