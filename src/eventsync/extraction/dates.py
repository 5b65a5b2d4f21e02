"""
Date and time parsing for scraped event text.

Supported inputs:
- "Friday, October 31, 2025 at 7:00 PM NDT" (single timestamp)
- "Friday, October 31, 2025 at 7:00 PM – 10:00 PM NDT" (range)
- listing pairs such as ("Friday, October 31, 2025", "12:00 pm - 10:00 pm"),
  ("October 31 - November 2, 2025", "7:00 pm") or ("...", "All Day")
- ISO-8601 strings, datetimes and dates from structured sources

Regional timezone abbreviations resolve through a static offset table; there
is no DST lookup. Text that does not parse yields None, never a guess.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Optional, Tuple

MONTH_NAMES = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]

# Minutes east of UTC.
TZ_OFFSETS = {
    "NST": -210,
    "NDT": -150,
    "AST": -240,
    "ADT": -180,
    "EST": -300,
    "EDT": -240,
    "CST": -360,
    "CDT": -300,
    "MST": -420,
    "MDT": -360,
    "PST": -480,
    "PDT": -420,
    "UTC": 0,
    "GMT": 0,
}

_WEEKDAYS = r"(?:Sunday|Monday|Tuesday|Wednesday|Thursday|Friday|Saturday)"
_CLOCK = r"\d{1,2}:\d{2}\s*[AP]M"
_TZ = r"(?-i:[A-Z]{2,4})"

_SINGLE_RE = re.compile(
    rf"{_WEEKDAYS},\s+([A-Za-z]+)\s+(\d{{1,2}}),\s+(\d{{4}})\s+at\s+(\d{{1,2}}):(\d{{2}})\s*([AP]M)(?:\s+({_TZ})\b)?",
    re.IGNORECASE,
)
_RANGE_RE = re.compile(
    rf"({_WEEKDAYS}),\s+([A-Za-z]+)\s+(\d{{1,2}}),\s+(\d{{4}})\s+at\s+({_CLOCK})"
    rf"(?:\s*[–-]\s*({_CLOCK}))?(?:\s*({_TZ})\b)?",
    re.IGNORECASE,
)
_CLOCK_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*([ap]\.?m\.?)?", re.IGNORECASE)
_CLOCK_IN_TEXT_RE = re.compile(r"\b\d{1,2}:\d{2}\s*[ap]\.?m\.?", re.IGNORECASE)
_DASH_SPLIT = re.compile(r"\s+[–—-]\s+")
_TIME_DASH_SPLIT = re.compile(r"\s*[–—-]\s*")
_SLUG_DATE_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})(?:[-_T]?(\d{3,4}))?(?:[-_]?([ap]m))?", re.IGNORECASE
)

_DATE_FORMATS = (
    "%A, %B %d, %Y",
    "%B %d, %Y",
    "%A, %b %d, %Y",
    "%b %d, %Y",
    "%A %B %d %Y",
    "%B %d %Y",
    "%Y-%m-%d",
)


@dataclass
class DateRange:
    start: Optional[datetime]
    end: Optional[datetime]
    remainder: str = ""


def normalize_time_text(text: str) -> str:
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\bNoon\b", "12:00 PM", text, flags=re.IGNORECASE)
    return text.strip()


def _resolve_tz(abbrev: Optional[str], default_tz: Optional[tzinfo]) -> tzinfo:
    if abbrev:
        offset = TZ_OFFSETS.get(abbrev.upper())
        if offset is not None:
            return timezone(timedelta(minutes=offset))
    return default_tz or timezone.utc


def _to_hour(hour: int, meridiem: Optional[str]) -> int:
    mer = (meridiem or "").replace(".", "").upper()
    if mer == "PM" and hour < 12:
        return hour + 12
    if mer == "AM" and hour == 12:
        return 0
    return hour


def _localize(d: date, clock: time, tz: tzinfo) -> datetime:
    local = datetime.combine(d, clock)
    if hasattr(tz, "localize"):
        local = tz.localize(local)
    else:
        local = local.replace(tzinfo=tz)
    return local.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize an instant as `YYYY-MM-DDTHH:MM:SSZ`."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_date_from_text(
    text: Optional[str], default_tz: Optional[tzinfo] = None
) -> Optional[datetime]:
    """Parse `<weekday>, <month> <day>, <year> at <h:mm AM/PM> [<TZ>]`."""
    if not text:
        return None
    match = _SINGLE_RE.search(normalize_time_text(text))
    if not match:
        return None
    month_name, day_str, year_str, hour_str, minute_str, meridiem, tz_abbr = match.groups()
    if month_name.lower() not in MONTH_NAMES:
        return None
    try:
        d = date(int(year_str), MONTH_NAMES.index(month_name.lower()) + 1, int(day_str))
        clock = time(_to_hour(int(hour_str), meridiem), int(minute_str))
    except ValueError:
        return None
    return _localize(d, clock, _resolve_tz(tz_abbr, default_tz))


def parse_date_range_string(
    text: Optional[str], default_tz: Optional[tzinfo] = None
) -> Optional[DateRange]:
    """
    Parse the range form `<date> at <start> – <end> [<TZ>]`.

    An end time earlier than the start rolls over to the next day. The part of
    `text` not consumed by the date is returned as `remainder`.
    """
    if not text:
        return None
    cleaned = normalize_time_text(text)
    match = _RANGE_RE.search(cleaned)
    if not match:
        return None
    weekday, month, day_str, year_str, start_time, end_time, tz = match.groups()
    tz_part = f" {tz}" if tz else ""
    start = parse_date_from_text(
        f"{weekday}, {month} {day_str}, {year_str} at {start_time}{tz_part}", default_tz
    )
    end = None
    if end_time:
        end = parse_date_from_text(
            f"{weekday}, {month} {day_str}, {year_str} at {end_time}{tz_part}", default_tz
        )
        if start and end and end < start:
            end = end + timedelta(days=1)
    remainder = cleaned.replace(match.group(0), "").strip()
    return DateRange(start=start, end=end, remainder=remainder)


def parse_iso(value: Any, default_tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Parse an ISO-8601 string, datetime or date into a UTC instant."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time(0, 0))
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        return _localize(dt.date(), dt.time(), default_tz or timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_loose_date(text: Optional[str]) -> Optional[date]:
    """Parse a calendar date such as `Friday, October 31, 2025`."""
    if not text:
        return None
    cleaned = normalize_time_text(text).strip(" ,")
    cleaned = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", cleaned)
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def parse_clock(text: Optional[str]) -> Optional[time]:
    """Parse `7:00 pm`, `7pm`, `19:00` or `Noon`."""
    if not text:
        return None
    cleaned = normalize_time_text(text)
    match = _CLOCK_RE.fullmatch(cleaned.strip())
    if not match:
        return None
    hour_str, minute_str, meridiem = match.groups()
    if not meridiem and minute_str is None:
        return None
    hour = _to_hour(int(hour_str), meridiem)
    try:
        return time(hour, int(minute_str or 0))
    except ValueError:
        return None


def _split_date_range(date_text: str) -> Tuple[Optional[date], Optional[date]]:
    parts = [p.strip() for p in _DASH_SPLIT.split(date_text) if p.strip()]
    if not parts:
        return None, None
    last = parse_loose_date(parts[-1])
    first = parse_loose_date(parts[0])
    if first is None and last is not None:
        # "October 31 - November 2, 2025": the first part borrows the year
        first = parse_loose_date(f"{parts[0]}, {last.year}")
    if first is None:
        return None, None
    return first, (last or first)


def derive_time_range(
    date_text: Optional[str],
    time_text: Optional[str],
    default_tz: Optional[tzinfo] = None,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Derive a (start, end) pair from listing text.

    - the range form "<date> at <start> – <end>" in either argument wins;
    - "All Day" (or no time at all) spans start-of-day to end-of-day;
    - a start time with a multi-day date range ends at end-of-day on the
      range's last date;
    - a single-day start time without an end time leaves the end null.
    """
    for candidate in (time_text, date_text):
        parsed = parse_date_range_string(candidate, default_tz)
        if parsed and parsed.start:
            return parsed.start, parsed.end

    if not date_text:
        return None, None

    date_text = normalize_time_text(date_text)
    if not time_text:
        clock_match = _CLOCK_IN_TEXT_RE.search(date_text)
        if clock_match:
            time_text = clock_match.group(0)
            date_text = (date_text[: clock_match.start()] + date_text[clock_match.end():]).strip(" ,")

    first, last = _split_date_range(date_text)
    if first is None:
        return None, None
    tz = default_tz or timezone.utc
    end_of_day = time(23, 59)

    if not time_text or re.search(r"all\s*day", time_text, re.IGNORECASE):
        return _localize(first, time(0, 0), tz), _localize(last, end_of_day, tz)

    parts = [p for p in _TIME_DASH_SPLIT.split(normalize_time_text(time_text)) if p]
    start_clock = parse_clock(parts[0]) if parts else None
    if start_clock is None:
        return None, None
    start = _localize(first, start_clock, tz)

    end_clock = parse_clock(parts[1]) if len(parts) > 1 else None
    if end_clock is not None:
        end = _localize(last, end_clock, tz)
        if end < start:
            end = end + timedelta(days=1)
        return start, end
    if last != first:
        return start, _localize(last, end_of_day, tz)
    return start, None


def infer_date_from_slug(value: Optional[str]) -> Optional[str]:
    """Pull `YYYY-MM-DD[-HHMM][am|pm]` out of a slug or URL."""
    if not value:
        return None
    match = _SLUG_DATE_RE.search(str(value))
    if not match:
        return None
    year, month, day, digits, meridiem = match.groups()
    hours = minutes = 0
    if digits:
        padded = digits.zfill(4)[-4:]
        hours, minutes = int(padded[:2]), int(padded[2:])
    hours = _to_hour(hours, meridiem)
    return f"{year}-{month}-{day}T{hours:02d}:{minutes:02d}:00"
