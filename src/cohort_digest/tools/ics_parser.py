"""ICS (iCalendar) text normalization into Event records."""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError

from cohort_digest.models.schemas import Event, EventStatus, Group
from cohort_digest.tools.source_catalog import SanitizeRules

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_DATETIME_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})?(Z)?$")
_ESCAPES = {"n": "\n", "N": "\n", ",": ",", ";": ";", "\\": "\\"}


@dataclass
class PropertyValue:
    """A property value that carried parameters (``DTSTART;TZID=...:value``)."""

    value: str
    params: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.value


@dataclass
class Component:
    """One VEVENT block: property name -> list of values in file order."""

    properties: dict[str, list[PropertyValue]] = field(default_factory=dict)

    def first(self, name: str) -> Optional[PropertyValue]:
        values = self.properties.get(name)
        return values[0] if values else None

    def all(self, name: str) -> list[PropertyValue]:
        return self.properties.get(name, [])


# =============================================================================
# LINE / COMPONENT LEVEL
# =============================================================================

def unfold_lines(text: str) -> list[str]:
    """Normalize line endings, join folded continuation lines, drop blanks."""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    unfolded = re.sub(r"\n[ \t]", "", normalized)
    return [line.strip() for line in unfolded.split("\n") if line.strip()]


def split_property(line: str) -> tuple[str, PropertyValue] | None:
    """Split ``NAME;PARAM=X:value`` into its name and value.

    The first colon outside a quoted parameter value separates the name part
    from the value.
    """
    in_quotes = False
    split_at = -1
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ":" and not in_quotes:
            split_at = index
            break
    if split_at <= 0:
        return None

    head, value = line[:split_at], line[split_at + 1:]
    parts = head.split(";")
    name = parts[0].strip().upper()
    params: dict[str, str] = {}
    for part in parts[1:]:
        if "=" not in part:
            continue
        key, _, param_value = part.partition("=")
        params[key.strip().upper()] = param_value.strip().strip('"')
    return name, PropertyValue(value=value, params=params)


def parse_components(text: str) -> list[Component]:
    """Return the top-level VEVENT blocks of an ICS document.

    Components nested inside an event (VALARM and friends) are skipped, and
    an unterminated trailing VEVENT is discarded.
    """
    components: list[Component] = []
    current: Component | None = None
    nested_depth = 0

    for line in unfold_lines(text):
        upper = line.upper()
        if upper.startswith("BEGIN:"):
            kind = upper[6:].strip()
            if current is None:
                if kind == "VEVENT":
                    current = Component()
            else:
                nested_depth += 1
            continue
        if upper.startswith("END:"):
            kind = upper[4:].strip()
            if current is None:
                continue
            if nested_depth:
                nested_depth -= 1
            elif kind == "VEVENT":
                components.append(current)
                current = None
            continue
        if current is None or nested_depth:
            continue

        parsed = split_property(line)
        if parsed is None:
            continue
        name, value = parsed
        current.properties.setdefault(name, []).append(value)

    return components


# =============================================================================
# VALUE COERCION
# =============================================================================

def unescape_text(value: str) -> str:
    """Decode ICS TEXT escapes (``\\n``, ``\\,``, ``\\;``, ``\\\\``)."""
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), value)


def coerce_text(value: Any) -> Optional[str]:
    """Turn any property value shape into plain text.

    Accepts plain strings, ``PropertyValue`` wrappers, lists of either (the
    first usable element wins), and arbitrary objects (their ``str``).
    """
    if value is None:
        return None
    if isinstance(value, PropertyValue):
        return coerce_text(value.value)
    if isinstance(value, str):
        text = unescape_text(value).strip()
        return text or None
    if isinstance(value, (list, tuple)):
        for element in value:
            text = coerce_text(element)
            if text:
                return text
        return None
    text = str(value).strip()
    return text or None


def resolve_timezone(name: Optional[str], default_tz: tzinfo) -> tzinfo:
    if not name:
        return default_tz
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown TZID {name!r} - using default timezone")
        return default_tz


def parse_ics_datetime(prop: PropertyValue, default_tz: tzinfo) -> tuple[datetime, bool] | None:
    """Parse a DTSTART/DTEND value into an aware datetime.

    Returns ``(value, is_date)`` where ``is_date`` marks a DATE value, or
    None when the value cannot be parsed. DATE values and floating times are
    placed in ``default_tz``; ``Z`` suffixes are UTC; TZID parameters are
    honored.
    """
    raw = prop.value.strip()
    value_type = prop.params.get("VALUE", "").upper()

    date_match = _DATE_RE.match(raw)
    if date_match:
        try:
            day = date(int(date_match[1]), int(date_match[2]), int(date_match[3]))
        except ValueError:
            return None
        return datetime.combine(day, time.min, tzinfo=default_tz), True
    if value_type == "DATE":
        return None

    match = _DATETIME_RE.match(raw)
    if not match:
        return None
    year, month, day_, hour, minute = (int(match[i]) for i in range(1, 6))
    second = int(match[6]) if match[6] else 0
    if match[7]:
        tz: tzinfo = timezone.utc
    else:
        tz = resolve_timezone(prop.params.get("TZID"), default_tz)
    try:
        return datetime(year, month, day_, hour, minute, second, tzinfo=tz), False
    except ValueError:
        return None


def _is_midnight(value: datetime) -> bool:
    return value.hour == 0 and value.minute == 0 and value.second == 0


def _parse_status(value: Optional[str]) -> Optional[EventStatus]:
    if not value:
        return None
    try:
        return EventStatus(value.lower())
    except ValueError:
        return None


def _organizer(prop: Optional[PropertyValue]) -> Optional[str]:
    if prop is None:
        return None
    common_name = prop.params.get("CN")
    if common_name:
        return common_name
    text = coerce_text(prop)
    if text and text.lower().startswith("mailto:"):
        text = text[7:]
    return text


def fallback_uid(source: str, start: datetime, title: str) -> str:
    digest = hashlib.sha256(f"{source}|{start.isoformat()}|{title}".encode()).hexdigest()
    return digest[:16]


# =============================================================================
# FEED LEVEL
# =============================================================================

def parse_feed(
    text: str,
    group: Group | None,
    source: str,
    rules: SanitizeRules | None = None,
    tz: tzinfo = timezone.utc,
) -> list[Event]:
    """Parse ICS text into Events tagged with ``group`` and ``source``.

    Records with a missing or unparseable start are skipped. Source-specific
    sanitization rules drop or scrub records before they become Events.
    """
    rules = rules or SanitizeRules()
    exclusion = rules.exclusion_regex() if rules.drops(source) else None
    scrub = rules.scrub_regex() if rules.scrubs(source) else None

    events: list[Event] = []
    skipped = 0
    excluded = 0

    for component in parse_components(text):
        start_prop = component.first("DTSTART")
        start_parsed = parse_ics_datetime(start_prop, tz) if start_prop else None
        if start_parsed is None:
            skipped += 1
            logger.warning(f"Skipping event without valid DTSTART in {source}")
            continue
        start, start_is_date = start_parsed

        end: Optional[datetime] = None
        end_prop = component.first("DTEND")
        if end_prop is not None:
            end_parsed = parse_ics_datetime(end_prop, tz)
            end = end_parsed[0] if end_parsed else None

        title = coerce_text(component.all("SUMMARY")) or "Untitled Event"
        description = coerce_text(component.all("DESCRIPTION"))
        organizer = _organizer(component.first("ORGANIZER"))

        if exclusion is not None and (
            exclusion.search(title) or (description and exclusion.search(description))
        ):
            excluded += 1
            continue

        if scrub is not None:
            if description:
                description = scrub.sub("", description).strip() or None
            if organizer and scrub.search(organizer):
                organizer = None

        all_day = start_is_date or (
            _is_midnight(start) and (end is None or _is_midnight(end))
        )

        categories: list[str] = []
        for prop in component.all("CATEGORIES"):
            categories.extend(
                part.strip() for part in re.split(r"(?<!\\),", prop.value)
                if part.strip()
            )
        categories = [unescape_text(c) for c in categories]

        try:
            events.append(Event(
                uid=coerce_text(component.all("UID")) or fallback_uid(source, start, title),
                title=title,
                start=start,
                end=end,
                all_day=all_day,
                location=coerce_text(component.all("LOCATION")),
                url=coerce_text(component.all("URL")),
                description=description,
                group=group,
                source=source,
                organizer=organizer,
                status=_parse_status(coerce_text(component.all("STATUS"))),
                categories=categories,
            ))
        except ValidationError as e:
            skipped += 1
            logger.warning(f"Skipping malformed event in {source}: {e}")

    if skipped or excluded:
        logger.info(
            f"Parsed {len(events)} events from {source} "
            f"(skipped {skipped} malformed, excluded {excluded})"
        )
    else:
        logger.debug(f"Parsed {len(events)} events from {source}")
    return events
