"""
eventsync.runtime.blocks

Detects pages that are not the event: captchas, block pages and the login
walls social networks put in front of public events.
"""

from __future__ import annotations

import re
from enum import Enum


class BlockSignal(str, Enum):
    CAPTCHA_PRESENT = "captcha_present"
    LIKELY_BLOCKED = "likely_blocked"
    LOGIN_REQUIRED = "login_required"


_SIGNAL_RES: tuple[tuple[BlockSignal, re.Pattern[str]], ...] = (
    (BlockSignal.CAPTCHA_PRESENT, re.compile(r"\b(?:captcha|verify you are human)\b", re.I)),
    (BlockSignal.LIKELY_BLOCKED, re.compile(r"\b(?:access denied|unusual traffic)\b", re.I)),
    (
        BlockSignal.LOGIN_REQUIRED,
        re.compile(
            r"\b(?:you must log ?in|please log ?in|login required|log in or sign up to view)\b",
            re.I,
        ),
    ),
)

# A login prompt only counts as a wall on these hosts.
SOCIAL_HOST_MARKERS = ("facebook",)


def classify_blocks(text: str | None) -> list[BlockSignal]:
    """Return the block signals found in `text`, in declaration order."""
    if not text:
        return []
    return [signal for signal, rx in _SIGNAL_RES if rx.search(text)]


def is_login_wall(html: str | None) -> bool:
    if not html:
        return False
    lowered = html.lower()
    if not any(marker in lowered for marker in SOCIAL_HOST_MARKERS):
        return False
    return BlockSignal.LOGIN_REQUIRED in classify_blocks(html)
