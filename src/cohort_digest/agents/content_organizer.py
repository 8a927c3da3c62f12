"""AI content organizer for weekly digest issues."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any

from cohort_digest.models.schemas import (
    DigestItem,
    DigestSection,
    OrganizedDigest,
    OrganizerDebugInfo,
    Priority,
    RawDigest,
    TimeSensitiveInfo,
    TimeSensitiveType,
)
from cohort_digest.services.ai_client import AIClient, AIClientError, AIResult
from cohort_digest.services.cache import ResultCache
from cohort_digest.tools.date_extraction import resolve_digest_year, strip_html
from cohort_digest.tools.response_parsing import (
    coerce_date,
    coerce_enum,
    coerce_list,
    coerce_text,
    parse_json_object,
)

logger = logging.getLogger(__name__)

SECTION_NAMES = [
    "This Week",
    "Announcements",
    "Saturday Scoop",
    "Events",
    "Career Corner",
    "PO Tips and Tidbits",
]

ORGANIZER_PROMPT = """You are a newsletter content organizer for an evening & weekend MBA program.
Reorganize the newsletter content below into clean, structured sections.

RULES:
1. CONTENT PRESERVATION: Preserve ALL content. Do not truncate, summarize, or drop anything.
2. HYPERLINKS: Preserve every <a href="..."> tag exactly as given, including link text, URL and target attributes.
3. SECTIONS: Use these section names when the content fits them: {section_names}.
   Create a new descriptive section only when content fits none of them. Never drop a section.
4. FORMATTING: <h4> for item titles, <h5> for subheadings, <p> for paragraphs, <ul>/<ol> with <li> for lists.
   Do not use <strong> or bold for headers.
5. TIME-SENSITIVE ITEMS: When an item names dates, deadlines or scheduled events, add a "timeSensitive" object:
   - "dates": every date mentioned, as YYYY-MM-DD (use {year} when the year is not stated)
   - "deadline": the due date as YYYY-MM-DD, or null
   - "eventType": one of "deadline", "event", "announcement", "reminder"
   - "priority": one of "high", "medium", "low"
   Omit "timeSensitive" for items with no dates.

Respond with JSON only, in exactly this shape:
{{
  "sections": [
    {{
      "sectionTitle": "Section Name",
      "items": [
        {{
          "title": "Item title",
          "html": "<h4>Item title</h4><p>Content with <a href='exact-url' target='_blank'>preserved links</a></p>",
          "timeSensitive": {{"dates": ["YYYY-MM-DD"], "deadline": null, "eventType": "event", "priority": "medium"}}
        }}
      ]
    }}
  ],
  "debugInfo": {{
    "reasoning": "how the content was organized",
    "sectionDecisions": ["decision per section"],
    "edgeCasesHandled": ["anything unusual"]
  }}
}}

NEWSLETTER TITLE: {title}

NEWSLETTER CONTENT:
{content}
"""

TIME_SENSITIVE_PROMPT = """Extract dates from newsletter items for an MBA student calendar.
For each item below that mentions a specific date, deadline or scheduled event, return its index
with the dates as YYYY-MM-DD (use {year} when the year is not stated).

Respond with JSON only:
{{
  "timeSensitiveItems": [
    {{"index": 0, "dates": ["YYYY-MM-DD"], "deadline": null, "eventType": "event", "priority": "medium"}}
  ]
}}
Use eventType from "deadline", "event", "announcement", "reminder" and priority from "high", "medium", "low".
Leave out items without dates.

ITEMS:
{items}
"""


class OrganizerResponseError(ValueError):
    """The model response could not be turned into an organized digest."""


@dataclass
class ContentOrganizer:
    """Reorganizes a raw digest into annotated sections via the model chain."""

    ai_client: AIClient | None
    cache: ResultCache[OrganizedDigest] | None = None
    extract_time_sensitive: bool = True

    def organize(self, raw_digest: RawDigest) -> OrganizedDigest:
        """Return the organized digest, never raising for AI or parse problems."""
        started = time.monotonic()
        if self.cache is not None:
            cached = self.cache.get(raw_digest.source_url)
            if cached is not None:
                logger.info(f"Using cached organized digest for {raw_digest.source_url}")
                return cached

        if self.ai_client is None:
            return build_fallback(raw_digest, "AI client not configured", started)

        prompt = self._build_prompt(raw_digest)
        try:
            result = self.ai_client.run(prompt)
        except AIClientError as e:
            logger.warning(f"Organizer model chain failed: {e.message}")
            return build_fallback(raw_digest, e.message, started)

        organized = parse_organizer_response(result.text, raw_digest, result, started)
        if organized.debug_info.fallback:
            return organized

        if self.extract_time_sensitive:
            organized = self._annotate_time_sensitive(organized)

        if self.cache is not None:
            self.cache.set(raw_digest.source_url, organized)
        logger.info(
            f"Organized digest into {organized.debug_info.total_sections} sections "
            f"with {result.model} in {organized.debug_info.processing_time_ms}ms"
        )
        return organized

    def _build_prompt(self, raw_digest: RawDigest) -> str:
        blocks = []
        for section in raw_digest.sections:
            lines = [f"[{section.section_title}]"]
            lines.extend(f"{item.title}: {item.html}" for item in section.items)
            blocks.append("\n".join(lines))
        return ORGANIZER_PROMPT.format(
            section_names=", ".join(f'"{name}"' for name in SECTION_NAMES),
            year=resolve_digest_year(raw_digest.title, date.today()),
            title=raw_digest.title or "",
            content="\n\n".join(blocks),
        )

    def _annotate_time_sensitive(self, organized: OrganizedDigest) -> OrganizedDigest:
        """Fill in annotations the main pass left out; failures change nothing."""
        pending = [
            (section_index, item_index, item)
            for section_index, section in enumerate(organized.sections)
            for item_index, item in enumerate(section.items)
            if item.time_sensitive is None
        ]
        if not pending or self.ai_client is None:
            return organized

        listing = "\n\n".join(
            f"[{index}] {item.title}\n{strip_html(item.html)[:300]}"
            for index, (_, _, item) in enumerate(pending)
        )
        year = resolve_digest_year(organized.title, date.today())
        prompt = TIME_SENSITIVE_PROMPT.format(year=year, items=listing)
        try:
            result = self.ai_client.run(prompt)
            data = parse_json_object(result.text, OrganizerResponseError)
        except (AIClientError, OrganizerResponseError) as e:
            logger.warning(f"Time-sensitive extraction failed, keeping digest as is: {e}")
            return organized

        updates: dict[tuple[int, int], TimeSensitiveInfo] = {}
        for entry in data.get("timeSensitiveItems", []) or []:
            if not isinstance(entry, dict):
                continue
            try:
                index = int(entry.get("index"))
            except (TypeError, ValueError):
                continue
            if not 0 <= index < len(pending):
                continue
            info = coerce_time_sensitive(entry)
            if info is not None:
                section_index, item_index, _ = pending[index]
                updates[(section_index, item_index)] = info

        if not updates:
            return organized

        sections = []
        for section_index, section in enumerate(organized.sections):
            items = [
                item.model_copy(update={"time_sensitive": updates[(section_index, item_index)]})
                if (section_index, item_index) in updates else item
                for item_index, item in enumerate(section.items)
            ]
            sections.append(section.model_copy(update={"items": items}))
        logger.info(f"Attached {len(updates)} time-sensitive annotations")
        return organized.model_copy(update={"sections": sections})


# =============================================================================
# RESPONSE PARSING
# =============================================================================

def parse_organizer_response(
    text: str | None,
    raw_digest: RawDigest,
    result: AIResult | None = None,
    started: float | None = None,
) -> OrganizedDigest:
    """Turn model output into an OrganizedDigest, or the fallback on any problem."""
    started = started if started is not None else time.monotonic()
    try:
        data = parse_json_object(text, OrganizerResponseError)
        sections_data = data.get("sections")
        if not isinstance(sections_data, list):
            raise OrganizerResponseError("Response has no sections list")
        sections = [_build_section(entry) for entry in sections_data]
    except OrganizerResponseError as e:
        logger.warning(f"Organizer response rejected: {e}")
        return build_fallback(raw_digest, str(e), started, result)

    debug = data.get("debugInfo") if isinstance(data.get("debugInfo"), dict) else {}
    return OrganizedDigest(
        source_url=raw_digest.source_url,
        title=raw_digest.title,
        sections=sections,
        debug_info=OrganizerDebugInfo(
            reasoning=coerce_text(debug.get("reasoning")),
            section_decisions=coerce_list(debug.get("sectionDecisions")),
            edge_cases_handled=coerce_list(debug.get("edgeCasesHandled")),
            total_sections=len(sections),
            processing_time_ms=_elapsed_ms(started),
            model=result.model if result else None,
            models_tried=list(result.models_tried) if result else [],
        ),
    )


def build_fallback(
    raw_digest: RawDigest,
    reason: str,
    started: float | None = None,
    result: AIResult | None = None,
) -> OrganizedDigest:
    """Original sections, unannotated, with the failure reason attached."""
    sections = [
        DigestSection(
            section_title=section.section_title,
            items=[DigestItem(title=item.title, html=item.html) for item in section.items],
        )
        for section in raw_digest.sections
    ]
    return OrganizedDigest(
        source_url=raw_digest.source_url,
        title=raw_digest.title,
        sections=sections,
        debug_info=OrganizerDebugInfo(
            reasoning=f"AI processing failed: {reason}. Returning original sections.",
            total_sections=len(sections),
            processing_time_ms=_elapsed_ms(started) if started is not None else 0,
            model=result.model if result else None,
            models_tried=list(result.models_tried) if result else [],
            fallback=True,
        ),
    )


def _build_section(entry: Any) -> DigestSection:
    if not isinstance(entry, dict):
        raise OrganizerResponseError("Section entry is not an object")
    items_data = entry.get("items", [])
    if not isinstance(items_data, list):
        raise OrganizerResponseError("Section items is not a list")
    return DigestSection(
        section_title=coerce_text(entry.get("sectionTitle")) or "Untitled Section",
        items=[_build_item(item) for item in items_data],
    )


def _build_item(entry: Any) -> DigestItem:
    if not isinstance(entry, dict):
        return DigestItem(title="Untitled", html=str(entry))
    time_sensitive = entry.get("timeSensitive")
    html_value = entry.get("html")
    return DigestItem(
        title=coerce_text(entry.get("title")) or "Untitled",
        html=html_value if isinstance(html_value, str) else coerce_text(html_value) or "",
        time_sensitive=coerce_time_sensitive(time_sensitive) if isinstance(time_sensitive, dict) else None,
    )


def coerce_time_sensitive(data: dict) -> TimeSensitiveInfo | None:
    """Annotation from model JSON; None when it names no usable date."""
    dates = [d for d in (coerce_date(v) for v in coerce_list(data.get("dates"))) if d]
    deadline = coerce_date(data.get("deadline"))
    if not dates and deadline:
        dates = [deadline]
    if not dates:
        return None
    return TimeSensitiveInfo(
        dates=dates,
        deadline=deadline,
        event_type=coerce_enum(TimeSensitiveType, data.get("eventType"), TimeSensitiveType.ANNOUNCEMENT),
        priority=coerce_enum(Priority, data.get("priority"), Priority.MEDIUM),
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
