"""Test the AI content organizer."""

import json
from datetime import date, timedelta

from cohort_digest.agents.content_organizer import ContentOrganizer, parse_organizer_response
from cohort_digest.models.schemas import (
    Priority,
    RawDigest,
    RawDigestItem,
    RawDigestSection,
    TimeSensitiveType,
)
from cohort_digest.services.ai_client import AIClientError, AIErrorKind
from cohort_digest.services.cache import TTLCache

RAW_DIGEST = RawDigest(
    source_url="https://example.test/digest/2025-11-01",
    title="EWMBA Weekly Digest - November 1, 2025",
    sections=[
        RawDigestSection(
            section_title="Announcements",
            items=[
                RawDigestItem(title="Flu Shot Clinic", html="<p>Tuesday, Nov 4, 12-4PM</p>"),
                RawDigestItem(title="Library hours", html="<p>See <a href='https://lib.test'>hours</a></p>"),
            ],
        ),
        RawDigestSection(
            section_title="Career Corner",
            items=[RawDigestItem(title="Resume review", html="<p>Drop in any time.</p>")],
        ),
    ],
)

ORGANIZED_JSON = {
    "sections": [
        {
            "sectionTitle": "This Week",
            "items": [
                {
                    "title": "Flu Shot Clinic",
                    "html": "<h4>Flu Shot Clinic</h4><p>Tuesday, Nov 4, 12-4PM</p>",
                    "timeSensitive": {
                        "dates": ["2025-11-04"],
                        "deadline": None,
                        "eventType": "event",
                        "priority": "HIGH",
                    },
                },
            ],
        },
        {
            "sectionTitle": "Announcements",
            "items": [
                {"title": "Library hours", "html": "<p>See <a href='https://lib.test'>hours</a></p>"},
                {"title": "Resume review", "html": "<p>Drop in any time.</p>", "timeSensitive": {"dates": []}},
                "stray text",
            ],
        },
    ],
    "debugInfo": {"reasoning": "Grouped by urgency", "sectionDecisions": ["moved clinic"], "edgeCasesHandled": []},
}


def test_parse_valid_response_keeps_every_item():
    text = "```json\n" + json.dumps(ORGANIZED_JSON) + "\n```"
    organized = parse_organizer_response(text, RAW_DIGEST)

    flattened = list(organized.iter_items())
    assert len(flattened) == sum(len(s["items"]) for s in ORGANIZED_JSON["sections"])
    assert not organized.debug_info.fallback
    assert organized.debug_info.total_sections == 2
    assert organized.debug_info.reasoning == "Grouped by urgency"

    clinic = organized.sections[0].items[0]
    assert clinic.time_sensitive.dates == [date(2025, 11, 4)]
    assert clinic.time_sensitive.event_type == TimeSensitiveType.EVENT
    assert clinic.time_sensitive.priority == Priority.HIGH

    library, resume, stray = organized.sections[1].items
    assert "href='https://lib.test'" in library.html
    assert resume.time_sensitive is None
    assert stray.title == "Untitled"
    assert stray.html == "stray text"


def test_malformed_responses_fall_back():
    for text in [None, "", "Sure! Here is the JSON: {}", '{"sections": [', '["not", "an", "object"]',
                 '{"sections": "nope"}', '{"sections": [1, 2]}']:
        organized = parse_organizer_response(text, RAW_DIGEST)
        assert organized.debug_info.fallback
        assert organized.debug_info.reasoning.startswith("AI processing failed: ")
        assert organized.debug_info.reasoning.endswith("Returning original sections.")
        assert [s.section_title for s in organized.sections] == ["Announcements", "Career Corner"]
        assert all(item.time_sensitive is None for _, _, item in organized.iter_items())


def test_organize_caches_success_by_source(make_ai_client):
    client, backend = make_ai_client([json.dumps(ORGANIZED_JSON), '{"timeSensitiveItems": []}'])
    cache = TTLCache(ttl=timedelta(hours=24))
    organizer = ContentOrganizer(ai_client=client, cache=cache)

    first = organizer.organize(RAW_DIGEST)
    second = organizer.organize(RAW_DIGEST)

    assert second is first
    assert len(backend.calls) == 2  # organize + time-sensitive pass, once
    assert "Flu Shot Clinic: <p>Tuesday, Nov 4, 12-4PM</p>" in backend.prompts[0]
    assert "[Announcements]" in backend.prompts[0]


def test_time_sensitive_pass_annotates_missing_items(make_ai_client):
    extraction = {"timeSensitiveItems": [
        {"index": 1, "dates": ["2025-11-07"], "deadline": "2025-11-07", "eventType": "deadline", "priority": "high"},
        {"index": 9, "dates": ["2025-11-08"]},
    ]}
    client, backend = make_ai_client([json.dumps(ORGANIZED_JSON), json.dumps(extraction)])
    organized = ContentOrganizer(ai_client=client).organize(RAW_DIGEST)

    library, resume, stray = organized.sections[1].items
    # Pending items are library (0), resume (1), stray (2)
    assert library.time_sensitive is None
    assert resume.time_sensitive.deadline == date(2025, 11, 7)
    assert resume.time_sensitive.event_type == TimeSensitiveType.DEADLINE
    assert stray.time_sensitive is None
    assert "[1] Resume review" in backend.prompts[1]


def test_time_sensitive_failure_keeps_organized_digest(make_ai_client):
    client, _ = make_ai_client([json.dumps(ORGANIZED_JSON), AIClientError(AIErrorKind.OTHER, "model-a", "timeout")])
    organized = ContentOrganizer(ai_client=client).organize(RAW_DIGEST)
    assert not organized.debug_info.fallback
    assert organized.sections[0].items[0].time_sensitive is not None


def test_chain_failure_falls_back_and_is_not_cached(make_ai_client):
    client, backend = make_ai_client([
        AIClientError(AIErrorKind.RATE_LIMITED, "model-a", "quota"),
        json.dumps(ORGANIZED_JSON),
        '{"timeSensitiveItems": []}',
    ])
    cache = TTLCache(ttl=timedelta(hours=24))
    organizer = ContentOrganizer(ai_client=client, cache=cache)

    failed = organizer.organize(RAW_DIGEST)
    assert failed.debug_info.fallback
    assert "quota" in failed.debug_info.reasoning
    assert RAW_DIGEST.source_url not in cache

    retried = organizer.organize(RAW_DIGEST)
    assert not retried.debug_info.fallback
    assert len(backend.calls) == 3


def test_missing_client_returns_fallback():
    organized = ContentOrganizer(ai_client=None).organize(RAW_DIGEST)
    assert organized.debug_info.fallback
    assert "not configured" in organized.debug_info.reasoning
