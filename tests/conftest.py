"""Shared fixtures for the cohort digest tests."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from cohort_digest.models.schemas import Event, Group
from cohort_digest.services.ai_client import AIClient, AIClientError, GenerationOptions
from cohort_digest.tools.source_catalog import parse_source_catalog

PACIFIC = ZoneInfo("America/Los_Angeles")


CATALOG_DATA = {
    "groups": {
        "blue": ["ewmba201a_micro_blue_fall2025.ics", "ewmba_leadingpeople_blue_fall2025.ics", "teams@Haas.ics"],
        "gold": ["ewmba201a_micro_gold_fall2025.ics", "teams@Haas.ics"],
    },
    "reference_feed": "calendar.ics",
    "authoritative_source": "teams@Haas.ics",
    "sanitize": {
        "exclusion_pattern": "teams@haas",
        "drop_sources": ["calendar.ics", "leadingpeople", "205_"],
        "scrub_pattern": "team@haas",
        "scrub_sources": ["leadingpeople", "205_"],
    },
    "legacy_aliases": [
        {
            "match": "leadingpeople",
            "replacements": [
                ["ewmba_leadingpeople", "ewmba205"],
                ["leadingpeople_", "205_"],
                ["fall2025", "fallA2025_v2"],
            ],
        }
    ],
    "feed_urls": {"campus_groups.ics": "https://example.test/campus.ics"},
    "supplementary_feeds": {"launch": "uc_launch_events_fall2025.ics", "campus_groups": "campus_groups.ics"},
    "verbatim_sources": ["teams@haas"],
    "social_sources": ["campus_groups", "uc_launch", "cal_bears"],
    "courses": [
        {
            "key": "micro",
            "title": "MicroEconomics",
            "source_markers": ["201", "micro"],
            "url_template": "https://bcourses.berkeley.edu/courses/1544880/pages/week-{week}",
            "start_dates": {"blue": "2025-07-28", "gold": "2025-07-29"},
            "default_location": "Online (bCourses)",
        },
        {
            "key": "leading_people",
            "title": "Leading People",
            "source_markers": ["205", "leadingpeople"],
            "url_template": "https://bcourses.berkeley.edu/courses/1545386/pages/week-{week}",
            "start_dates": {"blue": "2025-08-06", "gold": "2025-08-07"},
            "default_location": "Online (bCourses)",
        },
    ],
}


SAMPLE_ICS = """BEGIN:VCALENDAR\r
VERSION:2.0\r
PRODID:-//Test//EN\r
BEGIN:VEVENT\r
UID:micro-1@test\r
DTSTART;TZID=America/Los_Angeles:20250917T183000\r
DTEND;TZID=America/Los_Angeles:20250917T213000\r
SUMMARY:Microeconomics Class\\, Session 8\r
LOCATION:Chou Hall N270\r
DESCRIPTION:Bring the case\\nand your notes\r
STATUS:CONFIRMED\r
CATEGORIES:Class,Core\r
BEGIN:VALARM\r
TRIGGER:-PT15M\r
DESCRIPTION:Reminder\r
END:VALARM\r
END:VEVENT\r
BEGIN:VEVENT\r
UID:allday-1@test\r
DTSTART;VALUE=DATE:20250920\r
SUMMARY:Problem Set 3 due\r
END:VEVENT\r
BEGIN:VEVENT\r
UID:utc-1@test\r
DTSTART:20250918T020000Z\r
SUMMARY:Office Hours with a very long title that continues\r
  on the next line\r
URL:https://example.test/office-hours\r
END:VEVENT\r
BEGIN:VEVENT\r
UID:broken-1@test\r
DTSTART:not-a-date\r
SUMMARY:Broken entry\r
END:VEVENT\r
END:VCALENDAR\r
"""


@pytest.fixture
def tz():
    return PACIFIC


@pytest.fixture
def catalog():
    return parse_source_catalog(CATALOG_DATA)


@pytest.fixture
def sample_ics() -> str:
    return SAMPLE_ICS


@pytest.fixture
def make_event():
    """Factory for Events starting at a local Pacific time."""

    def _make(
        title: str,
        start: datetime,
        source: str = "ewmba201a_micro_blue_fall2025.ics",
        group: Group | None = Group.BLUE,
        **kwargs,
    ) -> Event:
        if start.tzinfo is None:
            start = start.replace(tzinfo=PACIFIC)
        return Event(
            uid=kwargs.pop("uid", f"{source}-{title}-{start.isoformat()}"),
            title=title,
            start=start,
            source=source,
            group=group,
            **kwargs,
        )

    return _make


class FakeBackend:
    """ModelBackend double that replays scripted responses.

    Each response is either a string (returned) or an AIClientError (raised).
    Calls are recorded as (model, include_optional) tuples.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[tuple[str, bool]] = []
        self.prompts: list[str] = []

    def generate(self, model: str, prompt: str, options: GenerationOptions, include_optional: bool) -> str:
        self.calls.append((model, include_optional))
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("FakeBackend ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, AIClientError):
            raise response
        return response


@pytest.fixture
def fake_backend_factory():
    return FakeBackend


@pytest.fixture
def make_ai_client():
    def _make(responses, models=("model-a", "model-b")) -> tuple[AIClient, FakeBackend]:
        backend = FakeBackend(responses)
        return AIClient(backend=backend, models=list(models)), backend

    return _make
