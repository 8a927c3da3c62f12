"""Weekly analyzer: one classified event list and summary per group."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo

from cohort_digest.models.schemas import (
    ClassifiedEvent,
    DigestSourceRef,
    Event,
    EventCategory,
    EventOrigin,
    Group,
    GroupWeek,
    OrganizedDigest,
    Priority,
    WeeklyAnalysis,
)
from cohort_digest.services.ai_client import AIClient, AIClientError, AIResult
from cohort_digest.services.cache import ResultCache
from cohort_digest.tools.date_extraction import (
    extract_dates,
    resolve_digest_year,
    strip_html,
    week_range,
)
from cohort_digest.tools.event_classifier import classify_by_keywords
from cohort_digest.tools.response_parsing import (
    coerce_date,
    coerce_enum,
    coerce_text,
    parse_json_object,
)

logger = logging.getLogger(__name__)

MAX_ITEM_DATES = 3
NOISE_TITLE_RE = re.compile(r"weekly\s+digest|newsletter|advisory", re.IGNORECASE)

WEEK_ANALYSIS_PROMPT = """You are helping an MBA student in the {group} cohort plan the week of {week_start} to {week_end}.

Below are the calendar events and newsletter items for that week. Classify every one of them.

For each event return:
- "title": the event title, copied from the input
- "date": YYYY-MM-DD
- "time": start time such as "6:00 PM", or null
- "type": one of "assignment", "class", "exam", "administrative", "social", "newsletter", "other"
- "priority": one of "high", "medium", "low"
- "description": one short sentence, or null
- "location": location if known, or null
- "url": link if known, or null

Also write a "summary" of the week for this cohort in at most {summary_chars} characters.

Respond with JSON only:
{{"events": [{{"title": "...", "date": "YYYY-MM-DD", "time": null, "type": "class", "priority": "medium", "description": null, "location": null, "url": null}}], "summary": "..."}}

CALENDAR EVENTS:
{calendar}

NEWSLETTER ITEMS:
{digest}
"""


class WeekAnalysisError(ValueError):
    """The model response could not be used for the weekly analysis."""


@dataclass
class DigestCandidate:
    """A digest item with dates inside the analyzed week."""

    section_title: str
    item_title: str
    item_index: int
    text: str
    dates: list[date]

    def source_ref(self) -> DigestSourceRef:
        return DigestSourceRef(
            section_title=self.section_title,
            item_title=self.item_title,
            item_index=self.item_index,
        )


def collect_digest_candidates(
    digest: OrganizedDigest | None,
    week_start: date,
    week_end: date,
    reference_date: date,
) -> list[DigestCandidate]:
    """Digest items whose dates fall inside ``[week_start, week_end]``.

    Annotated items use their annotation dates; other items fall back to
    dates found in their text. Newsletter-style titles and items naming more
    than three dates are treated as noise.
    """
    if digest is None:
        return []
    year = resolve_digest_year(digest.title, reference_date)
    candidates: list[DigestCandidate] = []

    for section, index, item in digest.iter_items():
        if NOISE_TITLE_RE.search(item.title):
            continue
        text = strip_html(item.html)
        if item.time_sensitive is not None:
            dates = list(item.time_sensitive.dates)
            if item.time_sensitive.deadline and item.time_sensitive.deadline not in dates:
                dates.append(item.time_sensitive.deadline)
        else:
            dates = extract_dates(f"{item.title} {text}", year)

        if len(set(dates)) > MAX_ITEM_DATES:
            logger.debug(f"Skipping digest item {item.title!r}: {len(set(dates))} dates")
            continue
        in_range = sorted({d for d in dates if week_start <= d <= week_end})
        if not in_range:
            continue
        candidates.append(DigestCandidate(
            section_title=section.section_title,
            item_title=item.title,
            item_index=index,
            text=text,
            dates=in_range,
        ))
    return candidates


@dataclass
class WeeklyAnalyzer:
    ai_client: AIClient | None
    tz: tzinfo
    cache: ResultCache[WeeklyAnalysis] | None = None
    boundary_day: str = "sunday"
    summary_max_chars: int = 230
    social_markers: list[str] = field(default_factory=list)

    def analyze(
        self,
        group_events: dict[Group, list[Event]],
        digest: OrganizedDigest | None,
        today: date | None = None,
    ) -> WeeklyAnalysis:
        """Classify this week's events and digest items for every group."""
        started = time.monotonic()
        today = today or datetime.now(self.tz).date()
        cache_key = self._cache_key(today, group_events, digest)

        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached.model_copy(update={"processing_time_ms": 0, "from_cache": True})

        week_start, week_end = week_range(today, self.boundary_day)
        candidates = collect_digest_candidates(digest, week_start, week_end, today)
        logger.info(
            f"Analyzing week {week_start} to {week_end}: "
            f"{len(candidates)} digest items in range"
        )

        groups: dict[Group, GroupWeek] = {}
        last_result: AIResult | None = None
        for group, events in group_events.items():
            week_events = [
                event for event in events
                if week_start <= event.day(self.tz) <= week_end
            ]
            group_week, result = self._analyze_group(group, week_events, candidates, week_start, week_end)
            groups[group] = group_week
            if result is not None:
                last_result = result

        analysis = WeeklyAnalysis(
            week_start=week_start,
            week_end=week_end,
            groups=groups,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            model=last_result.model if last_result else None,
            models_tried=list(last_result.models_tried) if last_result else [],
        )
        if self.cache is not None:
            self.cache.set(cache_key, analysis)
        return analysis

    def _cache_key(
        self,
        today: date,
        group_events: dict[Group, list[Event]],
        digest: OrganizedDigest | None,
    ) -> str:
        group_names = ",".join(sorted(group.value for group in group_events))
        source = digest.source_url if digest else "no-digest"
        return f"{today.isoformat()}|{source}|{group_names}"

    def _analyze_group(
        self,
        group: Group,
        events: list[Event],
        candidates: list[DigestCandidate],
        week_start: date,
        week_end: date,
    ) -> tuple[GroupWeek, AIResult | None]:
        if self.ai_client is None:
            return self._fallback_group(events, candidates, "AI client not configured"), None

        prompt = self._build_prompt(group, events, candidates, week_start, week_end)
        try:
            result = self.ai_client.run(prompt)
            data = parse_json_object(result.text, WeekAnalysisError, allow_embedded=True)
        except (AIClientError, WeekAnalysisError) as e:
            reason = e.message if isinstance(e, AIClientError) else str(e)
            logger.warning(f"Week analysis for {group.value} failed: {reason}")
            return self._fallback_group(events, candidates, reason), None

        classified = self._merge_ai_events(data, events, candidates, week_start, week_end)
        summary = coerce_text(data.get("summary")) or self._basic_summary(classified)
        return GroupWeek(
            events=classified,
            summary=trim_summary(summary, self.summary_max_chars),
        ), result

    def _build_prompt(
        self,
        group: Group,
        events: list[Event],
        candidates: list[DigestCandidate],
        week_start: date,
        week_end: date,
    ) -> str:
        calendar_lines = [
            f"- {event.day(self.tz).isoformat()} {self._event_time(event) or 'all day'} | "
            f"{event.title} | {event.location or ''} | {event.source}"
            for event in events
        ]
        digest_lines = [
            f"- [{candidate.section_title}] {candidate.item_title} "
            f"({', '.join(d.isoformat() for d in candidate.dates)}): {candidate.text[:200]}"
            for candidate in candidates
        ]
        return WEEK_ANALYSIS_PROMPT.format(
            group=group.value,
            week_start=week_start.isoformat(),
            week_end=week_end.isoformat(),
            summary_chars=self.summary_max_chars,
            calendar="\n".join(calendar_lines) or "(none)",
            digest="\n".join(digest_lines) or "(none)",
        )

    def _merge_ai_events(
        self,
        data: dict,
        events: list[Event],
        candidates: list[DigestCandidate],
        week_start: date,
        week_end: date,
    ) -> list[ClassifiedEvent]:
        classified: list[ClassifiedEvent] = []
        matched_events: set[int] = set()
        matched_candidates: set[int] = set()

        entries = data.get("events", [])
        if not isinstance(entries, list):
            entries = []

        for entry in entries:
            if not isinstance(entry, dict):
                continue
            title = coerce_text(entry.get("title"))
            if not title:
                continue

            # Each calendar event and digest item backs at most one entry
            candidate_index = _find_by_title(
                title, [c.item_title for c in candidates], exclude=matched_candidates,
            )
            event_index = _find_by_title(title, [e.title for e in events], exclude=matched_events)

            candidate = candidates[candidate_index] if candidate_index is not None else None
            calendar_event = events[event_index] if event_index is not None else None

            day = coerce_date(entry.get("date"))
            if day is None or not week_start <= day <= week_end:
                if calendar_event is not None:
                    day = calendar_event.day(self.tz)
                elif candidate is not None:
                    day = candidate.dates[0]
                else:
                    continue

            description = coerce_text(entry.get("description"))
            source = calendar_event.source if calendar_event else None
            category, priority = self._resolve_category(entry, title, description, candidate, source)

            if candidate_index is not None:
                matched_candidates.add(candidate_index)
            if event_index is not None:
                matched_events.add(event_index)

            classified.append(ClassifiedEvent(
                date=day,
                time=coerce_text(entry.get("time")) or (
                    self._event_time(calendar_event) if calendar_event else None
                ),
                title=title,
                category=category,
                priority=priority,
                description=description,
                location=coerce_text(entry.get("location")) or (calendar_event.location if calendar_event else None),
                url=coerce_text(entry.get("url")) or (calendar_event.url if calendar_event else None),
                origin=EventOrigin.DIGEST if candidate and not calendar_event else EventOrigin.CALENDAR,
                source=source,
                source_ref=candidate.source_ref() if candidate else None,
            ))

        for index, event in enumerate(events):
            if index not in matched_events:
                classified.append(self._classify_calendar_event(event))
        for index, candidate in enumerate(candidates):
            if index not in matched_candidates:
                classified.append(self._classify_candidate(candidate))

        return sorted(classified, key=lambda e: e.date)

    def _resolve_category(
        self,
        entry: dict,
        title: str,
        description: str | None,
        candidate: DigestCandidate | None,
        source: str | None,
    ) -> tuple[EventCategory, Priority]:
        text = " ".join(filter(None, [description, candidate.text if candidate else None]))
        keyword_category, keyword_priority = classify_by_keywords(
            title, text, source, self.social_markers,
        )
        category = coerce_enum(EventCategory, entry.get("type"), None)
        if category is None or (
            category == EventCategory.OTHER and keyword_category != EventCategory.OTHER
        ):
            return keyword_category, keyword_priority
        priority = coerce_enum(Priority, entry.get("priority"), keyword_priority)
        return category, priority

    def _fallback_group(
        self,
        events: list[Event],
        candidates: list[DigestCandidate],
        reason: str,
    ) -> GroupWeek:
        classified = [self._classify_calendar_event(event) for event in events]
        classified.extend(self._classify_candidate(candidate) for candidate in candidates)
        return GroupWeek(
            events=sorted(classified, key=lambda e: e.date),
            summary=f"AI analysis failed: {reason}. Showing basic calendar events.",
            degraded=True,
        )

    def _classify_calendar_event(self, event: Event) -> ClassifiedEvent:
        category, priority = classify_by_keywords(
            event.title, event.description, event.source, self.social_markers,
        )
        return ClassifiedEvent(
            date=event.day(self.tz),
            time=self._event_time(event),
            title=event.title,
            category=category,
            priority=priority,
            description=_first_sentence(event.description),
            location=event.location,
            url=event.url,
            origin=EventOrigin.CALENDAR,
            source=event.source,
        )

    def _classify_candidate(self, candidate: DigestCandidate) -> ClassifiedEvent:
        category, priority = classify_by_keywords(candidate.item_title, candidate.text)
        return ClassifiedEvent(
            date=candidate.dates[0],
            title=candidate.item_title,
            category=category,
            priority=priority,
            description=_first_sentence(candidate.text),
            origin=EventOrigin.DIGEST,
            source_ref=candidate.source_ref(),
        )

    def _event_time(self, event: Event) -> str | None:
        if event.all_day:
            return None
        local = event.start.astimezone(self.tz)
        hour = local.hour % 12 or 12
        return f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"

    def _basic_summary(self, events: list[ClassifiedEvent]) -> str:
        if not events:
            return "No events scheduled this week."
        high = sum(1 for event in events if event.priority == Priority.HIGH)
        summary = f"{len(events)} items this week"
        if high:
            summary += f", including {high} high-priority"
        return summary + "."


def trim_summary(summary: str, max_chars: int) -> str:
    """Cut ``summary`` at a word boundary so it fits in ``max_chars``."""
    summary = " ".join(summary.split())
    if len(summary) <= max_chars:
        return summary
    cut = summary[:max_chars - 3]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(",;:. ") + "..."


def _find_by_title(title: str, titles: list[str], exclude: set[int] | None = None) -> int | None:
    """Index of the first title containing, or contained in, ``title``.

    Indices in ``exclude`` are already claimed and never returned.
    """
    needle = title.lower().strip()
    for index, other in enumerate(titles):
        if exclude and index in exclude:
            continue
        other = other.lower().strip()
        if other and (needle in other or other in needle):
            return index
    return None


def _first_sentence(text: str | None, limit: int = 200) -> str | None:
    if not text:
        return None
    plain = " ".join(text.split())
    sentence = re.split(r"(?<=[.!?])\s", plain, maxsplit=1)[0]
    return sentence[:limit] or None
