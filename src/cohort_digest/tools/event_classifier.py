"""Keyword rules for categorizing weekly events."""

from __future__ import annotations

import re

from cohort_digest.models.schemas import EventCategory, Priority

# Evaluated in order; first match wins.
KEYWORD_RULES: list[tuple[re.Pattern[str], EventCategory, Priority]] = [
    (re.compile(r"\b(due|deadline)\b", re.IGNORECASE), EventCategory.ASSIGNMENT, Priority.HIGH),
    (re.compile(r"\b(exam|quiz|midterm|final exam)\b", re.IGNORECASE), EventCategory.EXAM, Priority.HIGH),
    (re.compile(r"\b(class|lecture)\b", re.IGNORECASE), EventCategory.CLASS, Priority.MEDIUM),
    (
        re.compile(r"\b(registration|register|form|enroll|enrollment)\b", re.IGNORECASE),
        EventCategory.ADMINISTRATIVE,
        Priority.MEDIUM,
    ),
]


def classify_by_keywords(
    title: str,
    text: str | None = None,
    source: str | None = None,
    social_markers: list[str] | None = None,
) -> tuple[EventCategory, Priority]:
    """Deterministic category and priority for an event."""
    haystack = f"{title or ''} {text or ''}"
    for pattern, category, priority in KEYWORD_RULES:
        if pattern.search(haystack):
            return category, priority

    lowered_source = (source or "").lower()
    if lowered_source and any(marker.lower() in lowered_source for marker in social_markers or []):
        return EventCategory.SOCIAL, Priority.LOW
    return EventCategory.OTHER, Priority.MEDIUM
