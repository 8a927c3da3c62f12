"""Match a per-group event to its richer entry in the reference feed."""

from __future__ import annotations

import logging
import re
from datetime import tzinfo

from cohort_digest.models.schemas import Event, Group
from cohort_digest.tools.source_catalog import CourseSchedule, SourceCatalog

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.3

_NON_WORD_RE = re.compile(r"[^\w\s]")


def _keywords(title: str) -> list[str]:
    return _NON_WORD_RE.sub("", (title or "").lower()).split()


def title_similarity(a: str, b: str) -> float:
    """Share of tokens of ``a`` (longer than 2 chars) found in ``b``.

    A token matches when it equals, contains, or is contained in any token of
    the other title. The count is divided by the larger token count.
    """
    words_a = _keywords(a)
    words_b = _keywords(b)
    longest = max(len(words_a), len(words_b))
    if longest == 0:
        return 0.0

    matches = 0
    for word_a in words_a:
        if len(word_a) <= 2:
            continue
        if any(word_a == word_b or word_b in word_a or word_a in word_b for word_b in words_b):
            matches += 1
    return matches / longest


def _event_group(event: Event) -> Group:
    if event.group is not None:
        return event.group
    return Group.GOLD if "gold" in (event.source or "").lower() else Group.BLUE


def generate_course_content(
    event: Event,
    catalog: SourceCatalog,
    tz: tzinfo,
) -> Event | None:
    """Synthesize a "<Course> Week N" entry for course-feed events.

    Returns None when the event's source is not a known course feed or the
    course has no start date for the event's group.
    """
    course: CourseSchedule | None = catalog.course_for(event.source)
    if course is None:
        return None
    course_start = course.start_dates.get(_event_group(event))
    if course_start is None:
        return None

    days = (event.day(tz) - course_start).days
    week = max(1, days // 7 + 1)
    title = f"{course.title} Week {week}"
    url = course.url_template.replace("{week}", str(week))
    logger.debug(f"Generated course content for {event.title!r}: {title} -> {url}")

    return event.model_copy(update={
        "title": title,
        "url": url,
        "description": f"For course content for {course.title}, Week {week}, please click Event Link. ",
        "location": event.location or course.default_location or None,
    })


def find_matching_event(
    event: Event,
    pool: list[Event],
    catalog: SourceCatalog,
    tz: tzinfo,
) -> Event | None:
    """Return the best reference entry for ``event``, a synthetic entry, or None."""
    if catalog.is_verbatim(event.source):
        return None

    day = event.day(tz)
    candidates = [candidate for candidate in pool if candidate.day(tz) == day]
    if not candidates:
        return generate_course_content(event, catalog, tz)
    if len(candidates) == 1:
        return candidates[0]

    best: Event | None = None
    best_score = 0.0
    for candidate in candidates:
        score = title_similarity(event.title, candidate.title)
        if score > best_score and score > SIMILARITY_THRESHOLD:
            best = candidate
            best_score = score
    if best is not None:
        return best

    synthetic = generate_course_content(event, catalog, tz)
    if synthetic is not None:
        return synthetic
    return candidates[0]
