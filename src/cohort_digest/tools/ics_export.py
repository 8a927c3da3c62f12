"""ICS export of merged cohort events as a subscribable calendar feed."""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, fields
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Mapping
from urllib.parse import urlencode

from cohort_digest.models.schemas import Event, Group, GroupEventSets, OrganizedDigest
from cohort_digest.tools.date_extraction import extract_dates, resolve_digest_year, strip_html

logger = logging.getLogger(__name__)

PRODID = "-//Cohort Digest//Cohort Calendar//EN"
DEFAULT_CALENDAR_NAME = "Cohort Calendar"
NEWSLETTER_SOURCE = "newsletter"
MAX_LINE_LENGTH = 75
DIGEST_DESCRIPTION_CHARS = 500

_TAG_RE = re.compile(r"<[^>]*>")
_UID_STRIP_RE = re.compile(r"[^a-zA-Z0-9]")

# (source marker, filter flag, category label); first match wins
SOURCE_KINDS = [
    ("newsletter", "newsletter", "Newsletter"),
    ("uc_launch", "launch", "UC Launch"),
    ("cal_bears", "cal_bears", "Cal Bears"),
    ("campus_groups", "campus_groups", "Campus Groups"),
]
TEAMS_MARKER = "teams@haas"

# Supplementary feed name for each filter flag
SUPPLEMENTARY_FLAGS = {
    "launch": "launch",
    "cal_bears": "cal_bears",
    "campus_groups": "campus_groups",
}


@dataclass
class ExportFilter:
    """Which event families go into an exported feed.

    Attribute names map to query parameters through ``PARAMS``.
    """

    blue: bool = False
    gold: bool = False
    launch: bool = False
    cal_bears: bool = False
    campus_groups: bool = False
    newsletter: bool = False
    teams: bool = False

    PARAMS = {
        "blue": "blue",
        "gold": "gold",
        "launch": "uclaunch",
        "cal_bears": "calbears",
        "campus_groups": "campusgroups",
        "newsletter": "newsletter",
        "teams": "teamsathaas",
    }

    @classmethod
    def everything(cls) -> ExportFilter:
        return cls(**{f.name: True for f in fields(cls)})

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> ExportFilter:
        """Read flags from query parameters; ``"true"`` and ``"1"`` enable.

        ``all`` turns on every flag. With nothing selected the feed falls
        back to blue cohort classes.
        """
        if _truthy(params.get("all")):
            return cls.everything()
        selected = cls(**{name: _truthy(params.get(key)) for name, key in cls.PARAMS.items()})
        if not selected.any_selected():
            logger.info("No export filters given, defaulting to blue classes")
            selected.blue = True
        return selected

    def any_selected(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))

    def to_params(self) -> dict[str, str]:
        return {key: "1" for name, key in self.PARAMS.items() if getattr(self, name)}

    def calendar_name(self) -> str:
        parts = []
        if self.blue and not self.gold:
            parts.append("Blue")
        if self.gold and not self.blue:
            parts.append("Gold")
        if self.cal_bears:
            parts.append("Cal Bears")
        if self.newsletter:
            parts.append("Newsletter")
        if self.launch:
            parts.append("UC Launch")
        if not parts:
            return DEFAULT_CALENDAR_NAME
        return " - ".join([DEFAULT_CALENDAR_NAME, *parts])


def _truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() in ("true", "1")


def subscription_url(base_url: str, filters: ExportFilter) -> str:
    """Feed URL carrying ``filters`` as query parameters."""
    query = urlencode(filters.to_params())
    return f"{base_url}?{query}" if query else base_url


def is_teams_event(event: Event) -> bool:
    return "Teams@Haas" in event.title or TEAMS_MARKER in event.source.lower()


def event_matches_filter(event: Event, filters: ExportFilter) -> bool:
    """Whether ``event`` belongs to a family enabled in ``filters``."""
    source = event.source.lower()
    for marker, flag, _ in SOURCE_KINDS:
        if marker in source:
            return getattr(filters, flag)
    # Teams@Haas events sit in class feeds too; match them before groups
    if is_teams_event(event):
        return filters.teams
    if event.group == Group.BLUE:
        return filters.blue
    if event.group == Group.GOLD:
        return filters.gold
    return filters.blue or filters.gold


def export_categories(event: Event) -> list[str]:
    """CATEGORIES values derived from the event's source and group."""
    if not event.source:
        return ["General"]
    source = event.source.lower()
    categories = next(
        ([label] for marker, _, label in SOURCE_KINDS if marker in source),
        None,
    )
    if categories is None:
        categories = ["Teams@Haas"] if TEAMS_MARKER in source else ["Class"]
    if event.group is not None:
        categories.append(f"Cohort {event.group.value.capitalize()}")
    return categories


# =============================================================================
# FORMATTING
# =============================================================================

def escape_text(text: str | None) -> str:
    """Escape a TEXT value: backslash, semicolon, comma and newline."""
    if not text:
        return ""
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r", "")
        .replace("\n", "\\n")
    )


def fold_line(line: str, limit: int = MAX_LINE_LENGTH) -> str:
    """Split ``line`` into ``limit``-wide chunks joined by CRLF + space."""
    if len(line) <= limit:
        return line
    chunks = [line[:limit]]
    rest = line[limit:]
    step = limit - 1
    chunks.extend(rest[i:i + step] for i in range(0, len(rest), step))
    return "\r\n ".join(chunks)


def format_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _plain_description(text: str | None) -> str:
    """Tags removed and entities decoded; line breaks survive."""
    if not text:
        return ""
    return html.unescape(_TAG_RE.sub("", text)).strip()


def _all_day_span(event: Event, tz: tzinfo) -> tuple[date, date]:
    """Start day and exclusive end day of an all-day event."""
    start_day = event.day(tz)
    end_day = start_day + timedelta(days=1)
    if event.end is not None:
        local_end = event.end.astimezone(tz)
        last = local_end.date()
        # An end at midnight is already exclusive
        if local_end.time() != time(0, 0):
            last += timedelta(days=1)
        end_day = max(end_day, last)
    return start_day, end_day


def event_to_vevent(event: Event, tz: tzinfo, stamp: datetime) -> list[str]:
    lines = [
        "BEGIN:VEVENT",
        f"UID:{event.uid}",
        f"DTSTAMP:{format_datetime(stamp)}",
    ]
    if event.all_day:
        start_day, end_day = _all_day_span(event, tz)
        lines.append(f"DTSTART;VALUE=DATE:{format_date(start_day)}")
        lines.append(f"DTEND;VALUE=DATE:{format_date(end_day)}")
    else:
        lines.append(f"DTSTART:{format_datetime(event.start)}")
        if event.end is not None:
            lines.append(f"DTEND:{format_datetime(event.end)}")

    lines.append(f"SUMMARY:{escape_text(event.title)}")
    description = _plain_description(event.description)
    if description:
        lines.append(f"DESCRIPTION:{escape_text(description)}")
    if event.location:
        lines.append(f"LOCATION:{escape_text(event.location)}")
    if event.url:
        lines.append(f"URL:{event.url}")
    categories = event.categories or export_categories(event)
    lines.append(f"CATEGORIES:{','.join(escape_text(c) for c in categories)}")
    status = event.status.value.upper() if event.status else "CONFIRMED"
    lines.append(f"STATUS:{status}")
    if event.source:
        lines.append(f"X-COHORT-SOURCE:{escape_text(event.source)}")
    lines.append("END:VEVENT")
    return lines


def generate_ics(
    events: Iterable[Event],
    filters: ExportFilter | None = None,
    tz: tzinfo = timezone.utc,
    calendar_name: str = DEFAULT_CALENDAR_NAME,
    now: datetime | None = None,
) -> str:
    """Render ``events`` as a VCALENDAR document with CRLF line endings.

    With ``filters`` only matching events are written. All-day events use
    DATE values in ``tz``; timed events are written in UTC.
    """
    stamp = now or datetime.now(timezone.utc)
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_text(calendar_name)}",
    ]
    tz_name = getattr(tz, "key", None)
    if tz_name:
        lines.append(f"X-WR-TIMEZONE:{tz_name}")

    written = 0
    for event in events:
        if filters is not None and not event_matches_filter(event, filters):
            continue
        lines.extend(event_to_vevent(event, tz, stamp))
        written += 1
    lines.append("END:VCALENDAR")

    logger.info(f"Generated ICS feed {calendar_name!r} with {written} events")
    return "\r\n".join(fold_line(line) for line in lines) + "\r\n"


# =============================================================================
# EVENT SELECTION
# =============================================================================

def digest_events(
    digest: OrganizedDigest | None,
    tz: tzinfo,
    reference_date: date | None = None,
) -> list[Event]:
    """All-day events for every dated digest item.

    Annotated items use their annotation dates; other items use dates found
    in their text.
    """
    if digest is None:
        return []
    reference_date = reference_date or datetime.now(tz).date()
    year = resolve_digest_year(digest.title, reference_date)
    events: list[Event] = []

    for section, _, item in digest.iter_items():
        text = strip_html(item.html)
        if item.time_sensitive is not None:
            dates = list(dict.fromkeys(item.time_sensitive.dates))
        else:
            dates = extract_dates(f"{item.title} {text}", year)
        for day in dates:
            start = datetime.combine(day, time(0, 0), tzinfo=tz)
            events.append(Event(
                uid=f"newsletter-{_UID_STRIP_RE.sub('', item.title[:20])}-{day.isoformat()}",
                title=item.title,
                start=start,
                end=start,
                all_day=True,
                description=text[:DIGEST_DESCRIPTION_CHARS] or None,
                source=NEWSLETTER_SOURCE,
                categories=["Newsletter", section.section_title or "Announcement"],
            ))
    logger.info(f"Built {len(events)} export events from the digest")
    return events


def collect_export_events(
    event_sets: GroupEventSets,
    filters: ExportFilter,
    newsletter_events: Iterable[Event] = (),
) -> list[Event]:
    """Events selected by ``filters``, each uid once, sorted by start."""
    selected: list[Event] = []
    if filters.blue:
        selected.extend(event_sets.groups.get(Group.BLUE, []))
    if filters.gold:
        selected.extend(event_sets.groups.get(Group.GOLD, []))
    if filters.teams:
        for events in event_sets.groups.values():
            selected.extend(event for event in events if is_teams_event(event))
    for flag, name in SUPPLEMENTARY_FLAGS.items():
        if getattr(filters, flag):
            selected.extend(event_sets.supplementary.get(name, []))
    if filters.newsletter:
        selected.extend(newsletter_events)

    unique: dict[str, Event] = {}
    for event in selected:
        unique.setdefault(event.uid, event)
    return sorted(unique.values(), key=lambda event: event.start)
