"""Find calendar dates mentioned in digest text."""

from __future__ import annotations

import html
import logging
import re
from datetime import date, datetime, timedelta

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_MONTHS = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
)
_DAY_NAMES = (
    r"(?:mon(?:day)?|tue(?:s(?:day)?)?|wed(?:nesday)?|thu(?:rs(?:day)?)?|"
    r"fri(?:day)?|sat(?:urday)?|sun(?:day)?)\.?"
)

# "Tuesday, Nov 4", "Nov 4th", "November 4, 2025"
_DATE_RE = re.compile(
    rf"\b(?:{_DAY_NAMES},?\s+)?({_MONTHS}\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+20\d{{2}})?)\b",
    re.IGNORECASE,
)
_ORDINAL_RE = re.compile(r"(\d)(st|nd|rd|th)\b", re.IGNORECASE)
_TITLE_YEAR_RE = re.compile(r"\b(20\d{2})\b")
_TAG_RE = re.compile(r"<[^>]+>")


def strip_html(text: str | None) -> str:
    """Drop tags, decode entities, collapse whitespace."""
    if not text:
        return ""
    without_tags = _TAG_RE.sub(" ", text)
    return " ".join(html.unescape(without_tags).split())


def resolve_digest_year(title: str | None, reference_date: date) -> int:
    """Year named in the digest title, else the reference date's year."""
    if title:
        match = _TITLE_YEAR_RE.search(title)
        if match:
            return int(match.group(1))
    return reference_date.year


def extract_dates(text: str, year: int) -> list[date]:
    """Return distinct dates mentioned in ``text`` in order of appearance.

    Fragments without an explicit year are placed in ``year``.
    """
    found: list[date] = []
    default = datetime(year, 1, 1)
    for match in _DATE_RE.finditer(text or ""):
        fragment = _ORDINAL_RE.sub(r"\1", match.group(1))
        try:
            parsed = date_parser.parse(fragment, default=default, fuzzy=True).date()
        except (ValueError, OverflowError):
            logger.debug(f"Could not parse date fragment {fragment!r}")
            continue
        if parsed not in found:
            found.append(parsed)
    return found


def week_range(today: date, boundary_weekday: str = "sunday") -> tuple[date, date]:
    """Week containing ``today`` that starts on ``boundary_weekday``.

    The end is seven days after the start and both ends are inclusive, so the
    range spans eight calendar days.
    """
    try:
        boundary = WEEKDAYS.index(boundary_weekday.strip().lower())
    except ValueError:
        logger.warning(f"Unknown week boundary {boundary_weekday!r} - using sunday")
        boundary = WEEKDAYS.index("sunday")
    offset = (today.weekday() - boundary) % 7
    start = today - timedelta(days=offset)
    return start, start + timedelta(days=7)
