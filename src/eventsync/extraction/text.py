"""
Text sanitizing helpers shared by the extractors and the fallback merger.

Scraped text arrives with site chrome mixed in (login prompts, navigation
labels, "Get directions" links). These helpers collapse whitespace, strip the
known chrome phrases, bound lengths and classify leftover noise.
"""

from __future__ import annotations

import re
from typing import Any, Optional

_WS = re.compile(r"\s+")

# Text that is site chrome rather than event data. A value matching this is
# still kept when nothing better exists.
NOISE_PATTERN = re.compile(
    r"log\s*in|sign\s*up|see posts|facebook|login or sign up to view|"
    r"you must log in|forgot account\?|^(?:home|events?|menu|details|more info|"
    r"buy tickets|get directions|view map)$",
    re.IGNORECASE,
)

# Phrases removed from every text field.
NOISE_PHRASES = (
    re.compile(r"\s*\|\s*Facebook\s*$", re.IGNORECASE),
    re.compile(r"Facebook\s+Log\s+In.*$", re.IGNORECASE),
    re.compile(r"Log\s+In\s+Forgot\s+Account\?", re.IGNORECASE),
    re.compile(r"\b(?:Get directions|View map)\b", re.IGNORECASE),
)

# Additional chrome around location blocks.
_LOCATION_PREFIX = re.compile(r"^(?:Events|Home)\b\s*", re.IGNORECASE)

# Broad login-wall cleanup applied to DOM heuristic candidates.
LOGIN_NOISE = re.compile(
    r"(facebook\s*log\s*in|facebook|log\s*in|sign\s*up|see posts|forgot account\?|\bhome\b|\bevents\b)",
    re.IGNORECASE,
)


def collapse_ws(value: Any) -> Optional[str]:
    """Collapse runs of whitespace; return None for empty text."""
    if value is None:
        return None
    text = _WS.sub(" ", str(value)).strip()
    return text or None


def bound_text(text: Optional[str], limit: int) -> Optional[str]:
    """
    Bound `text` to `limit` characters, cutting on a word boundary when one
    exists in the last 40% of the window.
    """
    if text is None or len(text) <= limit:
        return text
    cut = text[:limit]
    idx = cut.rfind(" ")
    if idx >= int(limit * 0.6):
        cut = cut[:idx]
    return cut.rstrip(" ,;:-") or None


def clean_text(value: Any, limit: int = 800) -> Optional[str]:
    """Collapse whitespace and bound the length."""
    return bound_text(collapse_ws(value), limit)


def strip_noise_phrases(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    for pattern in NOISE_PHRASES:
        text = pattern.sub(" ", text)
    return collapse_ws(text)


def sanitize(value: Any, limit: int) -> Optional[str]:
    """Full sanitizing pass applied by the merger to every text field."""
    return bound_text(strip_noise_phrases(collapse_ws(value)), limit)


def clean_location(value: Any, limit: int = 160) -> Optional[str]:
    """Sanitize a venue or city string, dropping leading nav labels."""
    text = strip_noise_phrases(collapse_ws(value))
    if not text:
        return None
    text = collapse_ws(_LOCATION_PREFIX.sub("", text))
    return bound_text(text, limit)


def strip_login_noise(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WS.sub(" ", LOGIN_NOISE.sub(" ", value)).strip()


def is_noise(value: Optional[str]) -> bool:
    """True when `value` looks like site chrome instead of event data."""
    if not value:
        return False
    return bool(NOISE_PATTERN.search(value))


def slugify(value: str, limit: int = 120) -> str:
    """Lower-case ASCII slug with hyphens, e.g. `live-music-arts`."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:limit]
