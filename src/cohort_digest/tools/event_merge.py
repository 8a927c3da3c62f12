"""Merge per-source event lists into one deduplicated list."""

from __future__ import annotations

import logging
import re
from datetime import date, tzinfo
from typing import Iterable

from cohort_digest.models.schemas import Event

logger = logging.getLogger(__name__)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def normalize_title(title: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    cleaned = _PUNCTUATION_RE.sub(" ", (title or "").lower())
    return " ".join(cleaned.split())


def dedup_key(event: Event, tz: tzinfo) -> tuple[date, str]:
    return event.day(tz), normalize_title(event.title)


def _is_authoritative(event: Event, authoritative_source: str | None) -> bool:
    if not authoritative_source:
        return False
    return authoritative_source.lower() in (event.source or "").lower()


def merge_events(
    source_lists: Iterable[list[Event]],
    authoritative_source: str | None,
    tz: tzinfo,
) -> tuple[list[Event], dict]:
    """Return merged events sorted by start, and merge stats.

    Per key: an authoritative entry replaces a non-authoritative one, a
    non-authoritative entry never replaces an authoritative one, and
    otherwise the first entry seen is kept.
    """
    merged: dict[tuple[date, str], Event] = {}
    original = 0
    replaced = 0

    for events in source_lists:
        for event in events:
            original += 1
            key = dedup_key(event, tz)
            existing = merged.get(key)
            if existing is None:
                merged[key] = event
                continue
            if _is_authoritative(event, authoritative_source) and not _is_authoritative(
                existing, authoritative_source
            ):
                merged[key] = event
                replaced += 1

    kept = sorted(merged.values(), key=lambda e: e.start)
    removed = original - len(kept)
    if removed:
        logger.info(
            f"Merge removed {removed} duplicate events "
            f"({replaced} replaced by {authoritative_source})"
        )
    return kept, {
        "original": original,
        "merged": len(kept),
        "removed": removed,
        "authoritative_replacements": replaced,
    }
