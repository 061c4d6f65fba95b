"""
Phrase parser for converting date and time phrases into calendar values.
Handles relative dates ("tomorrow", "next friday"), a fixed list of absolute
date formats, and 24-hour / 12-hour clock times.
"""

import re
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Tuple

from appointment_intake.event_models import ParsedDate, ParsedTime
from appointment_intake.timezone_composer import local_midnight, resolve_timezone, to_local

# Checked in this order; "day after tomorrow" must win over "tomorrow"
_RELATIVE_DAYS: Tuple[Tuple[re.Pattern, int], ...] = (
    (re.compile(r"\bday after tomorrow\b"), 2),
    (re.compile(r"\btoday\b"), 0),
    (re.compile(r"\btomorrow\b"), 1),
)

_NEXT_WORD = re.compile(r"\bnext\b")
_WORD = re.compile(r"[a-z]+")

# Whole-word weekday tokens, Monday == 0 as in date.weekday()
WEEKDAY_TOKENS = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1, "tues": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3, "thur": 3, "thurs": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}

_TIME_24H = re.compile(r"(?<!\d)(\d{1,2}):(\d{2})(?!\d)(?!\s*[ap]\.?m(?![a-z]))")
_TIME_12H = re.compile(r"(?<!\d)(\d{1,2})(?::(\d{2}))?\s*([ap])\.?m\.?(?![a-z])")


def _strptime_date(fmt: str) -> Callable[[str], Optional[date]]:
    """Build a parser for one absolute date format that returns None instead of raising."""
    def attempt(text: str) -> Optional[date]:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            return None
    return attempt


# YYYY-MM-DD, DD/MM/YYYY, MM/DD/YYYY, "Mon DD, YYYY"
ABSOLUTE_DATE_PARSERS: Tuple[Callable[[str], Optional[date]], ...] = (
    _strptime_date("%Y-%m-%d"),
    _strptime_date("%d/%m/%Y"),
    _strptime_date("%m/%d/%Y"),
    _strptime_date("%b %d, %Y"),
)


def _find_weekday(phrase: str) -> Optional[int]:
    for word in _WORD.findall(phrase):
        if word in WEEKDAY_TOKENS:
            return WEEKDAY_TOKENS[word]
    return None


def _relative_date(phrase: str, today: date) -> Optional[date]:
    for pattern, offset in _RELATIVE_DAYS:
        if pattern.search(phrase):
            return today + timedelta(days=offset)

    if _NEXT_WORD.search(phrase):
        weekday = _find_weekday(phrase)
        if weekday is not None:
            days_ahead = (weekday - today.weekday()) % 7
            if days_ahead <= 0:
                days_ahead += 7
            return today + timedelta(days=days_ahead)

    return None


def _absolute_date(text: str) -> Optional[date]:
    for parser in ABSOLUTE_DATE_PARSERS:
        parsed = parser(text)
        if parsed is not None:
            return parsed
    return None


def parse_date_phrase(
    phrase: Optional[str],
    timezone: str,
    reference_instant: datetime
) -> Optional[ParsedDate]:
    """
    Parse a date phrase relative to "now" in the target timezone.

    Args:
        phrase: Free text date phrase, e.g. "tomorrow", "next Friday", "2026-01-25"
        timezone: IANA timezone used to decide what "today" is
        reference_instant: The current instant (naive values are taken as UTC)

    Returns:
        ParsedDate anchored at local midnight, or None if the phrase is not recognized
    """
    if phrase is None or not phrase.strip():
        return None

    zone = resolve_timezone(timezone)
    today = to_local(reference_instant, zone).date()
    text = phrase.strip()

    target = _relative_date(text.lower(), today)
    if target is None:
        target = _absolute_date(text)
    if target is None:
        return None

    try:
        anchor = local_midnight(target, zone)
    except (OverflowError, ValueError):
        # Years at the edge of the datetime range cannot be placed in a zone
        return None
    return ParsedDate(calendar_date=target, anchor=anchor)


def parse_time_phrase(phrase: Optional[str]) -> Optional[ParsedTime]:
    """
    Parse a time phrase such as "15:30", "3pm" or "10:15 a.m.".

    Returns:
        ParsedTime, or None if nothing matches or the result is out of range
    """
    if phrase is None or not phrase.strip():
        return None

    text = phrase.strip().lower()

    match = _TIME_24H.search(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
    else:
        match = _TIME_12H.search(text)
        if not match:
            return None
        hour = int(match.group(1))
        minute = int(match.group(2)) if match.group(2) else 0
        if match.group(3) == "p" and hour != 12:
            hour += 12
        elif match.group(3) == "a" and hour == 12:
            hour = 0

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return ParsedTime(hour=hour, minute=minute)
