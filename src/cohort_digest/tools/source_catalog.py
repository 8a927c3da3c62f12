"""Load the feed source catalog.

The catalog is the single place that knows which feeds make up each group,
which feed is authoritative for the cross-cutting event series, how legacy
feed names map to current ones, and which per-course start dates drive
synthetic "Week N" content.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from cohort_digest.models.schemas import Group

logger = logging.getLogger(__name__)


@dataclass
class LegacyAlias:
    """Rename rule for sources that used to be published under another name."""

    match: str
    replacements: list[tuple[str, str]]

    def applies_to(self, source: str) -> bool:
        return self.match.lower() in source.lower()

    def rename(self, source: str) -> str:
        legacy = source
        for old, new in self.replacements:
            legacy = legacy.replace(old, new)
        return legacy


@dataclass
class SanitizeRules:
    """Per-source content rules applied while normalizing feeds.

    Records from ``drop_sources`` whose title or description match
    ``exclusion_pattern`` are dropped: the authoritative feed owns them.
    Records from ``scrub_sources`` get ``scrub_pattern`` removed from their
    description and lose a matching organizer.
    """

    exclusion_pattern: str = ""
    drop_sources: list[str] = field(default_factory=list)
    scrub_pattern: str = ""
    scrub_sources: list[str] = field(default_factory=list)

    def drops(self, source: str) -> bool:
        return bool(self.exclusion_pattern) and _matches_any(source, self.drop_sources)

    def scrubs(self, source: str) -> bool:
        return bool(self.scrub_pattern) and _matches_any(source, self.scrub_sources)

    def exclusion_regex(self) -> re.Pattern[str] | None:
        return re.compile(self.exclusion_pattern, re.IGNORECASE) if self.exclusion_pattern else None

    def scrub_regex(self) -> re.Pattern[str] | None:
        return re.compile(self.scrub_pattern, re.IGNORECASE) if self.scrub_pattern else None


@dataclass
class CourseSchedule:
    """Synthetic-content settings for one course."""

    key: str
    title: str
    source_markers: list[str]
    url_template: str                # "{week}" is replaced with the week number
    start_dates: dict[Group, date]
    default_location: str = ""

    def matches(self, source: str) -> bool:
        return _matches_any(source, self.source_markers)


@dataclass
class SourceCatalog:
    group_feeds: dict[Group, list[str]]
    reference_feed: str
    authoritative_source: str
    sanitize: SanitizeRules
    legacy_aliases: list[LegacyAlias]
    feed_urls: dict[str, str]
    supplementary_feeds: dict[str, str]
    verbatim_sources: list[str]
    social_sources: list[str]
    courses: list[CourseSchedule]
    notes: list[str]

    def legacy_name(self, source: str) -> str | None:
        """Legacy identifier for ``source`` or None if it has no alias."""
        for alias in self.legacy_aliases:
            if alias.applies_to(source):
                legacy = alias.rename(source)
                return legacy if legacy != source else None
        return None

    def is_authoritative(self, source: str | None) -> bool:
        if not source or not self.authoritative_source:
            return False
        return self.authoritative_source.lower() in source.lower()

    def is_verbatim(self, source: str | None) -> bool:
        return bool(source) and _matches_any(source, self.verbatim_sources)

    def is_social(self, source: str | None) -> bool:
        return bool(source) and _matches_any(source, self.social_sources)

    def course_for(self, source: str | None) -> CourseSchedule | None:
        if not source:
            return None
        for course in self.courses:
            if course.matches(source):
                return course
        return None


def empty_catalog() -> SourceCatalog:
    return SourceCatalog(
        group_feeds={},
        reference_feed="",
        authoritative_source="",
        sanitize=SanitizeRules(),
        legacy_aliases=[],
        feed_urls={},
        supplementary_feeds={},
        verbatim_sources=[],
        social_sources=[],
        courses=[],
        notes=[],
    )


def load_source_catalog(path: str | Path) -> SourceCatalog:
    catalog_path = Path(path)
    if not catalog_path.exists():
        logger.warning(f"Source catalog not found at {catalog_path} - using empty catalog")
        return empty_catalog()

    data = json.loads(catalog_path.read_text(encoding="utf-8"))
    return parse_source_catalog(data)


def parse_source_catalog(data: dict) -> SourceCatalog:
    group_feeds: dict[Group, list[str]] = {}
    for name, feeds in (data.get("groups", {}) or {}).items():
        try:
            group_feeds[Group(name.lower())] = list(feeds or [])
        except ValueError:
            logger.warning(f"Ignoring unknown group in source catalog: {name}")

    sanitize_data = data.get("sanitize", {}) or {}
    sanitize = SanitizeRules(
        exclusion_pattern=sanitize_data.get("exclusion_pattern", "") or "",
        drop_sources=sanitize_data.get("drop_sources", []) or [],
        scrub_pattern=sanitize_data.get("scrub_pattern", "") or "",
        scrub_sources=sanitize_data.get("scrub_sources", []) or [],
    )

    legacy_aliases = [
        LegacyAlias(
            match=entry["match"],
            replacements=[(pair[0], pair[1]) for pair in entry.get("replacements", [])],
        )
        for entry in data.get("legacy_aliases", []) or []
        if entry.get("match")
    ]

    courses: list[CourseSchedule] = []
    for entry in data.get("courses", []) or []:
        start_dates: dict[Group, date] = {}
        for name, value in (entry.get("start_dates", {}) or {}).items():
            try:
                start_dates[Group(name.lower())] = date.fromisoformat(value)
            except ValueError:
                logger.warning(f"Ignoring bad course start date {name}={value!r} for {entry.get('key')}")
        courses.append(CourseSchedule(
            key=entry.get("key", ""),
            title=entry.get("title", ""),
            source_markers=entry.get("source_markers", []) or [],
            url_template=entry.get("url_template", ""),
            start_dates=start_dates,
            default_location=entry.get("default_location", "") or "",
        ))

    return SourceCatalog(
        group_feeds=group_feeds,
        reference_feed=data.get("reference_feed", "") or "",
        authoritative_source=data.get("authoritative_source", "") or "",
        sanitize=sanitize,
        legacy_aliases=legacy_aliases,
        feed_urls=data.get("feed_urls", {}) or {},
        supplementary_feeds=data.get("supplementary_feeds", {}) or {},
        verbatim_sources=data.get("verbatim_sources", []) or [],
        social_sources=data.get("social_sources", []) or [],
        courses=courses,
        notes=data.get("notes", []) or [],
    )


def _matches_any(source: str, markers: list[str]) -> bool:
    lowered = source.lower()
    return any(marker.lower() in lowered for marker in markers if marker)
