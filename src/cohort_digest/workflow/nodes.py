"""LangGraph node functions for the digest pipeline.

Each node function:
- Takes the current state and the run config
- Performs its operation with the services found in the run config
- Returns updated state fields
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo

import httpx
from langchain_core.runnables import RunnableConfig

from cohort_digest.agents.content_organizer import ContentOrganizer
from cohort_digest.agents.week_analyzer import WeeklyAnalyzer
from cohort_digest.config import Settings, settings
from cohort_digest.models.schemas import Event, GroupEventSets, OrganizedDigest, WeeklyAnalysis
from cohort_digest.services.ai_client import AIClient, GenerationOptions, build_ai_client
from cohort_digest.services.cache import TTLCache
from cohort_digest.services.feed_collector import FeedCollector
from cohort_digest.services.feed_loader import FeedLoader, FeedUnavailableError
from cohort_digest.tools.date_filter import filter_window, inject_authoritative
from cohort_digest.tools.event_matcher import find_matching_event
from cohort_digest.tools.event_merge import merge_events
from cohort_digest.tools.source_catalog import SourceCatalog, load_source_catalog
from cohort_digest.workflow.state import DigestPipelineState

logger = logging.getLogger(__name__)

_REPO_ROOT = Path(__file__).parent.parent.parent.parent


# =============================================================================
# SERVICES
# =============================================================================

@dataclass
class PipelineServices:
    """Long-lived collaborators shared by every pipeline run in a process."""

    settings: Settings
    catalog: SourceCatalog
    tz: tzinfo
    collector: FeedCollector
    organizer: ContentOrganizer
    analyzer: WeeklyAnalyzer


def _resolve_path(path: str) -> Path:
    resolved = Path(path)
    if not resolved.exists() and not resolved.is_absolute():
        candidate = _REPO_ROOT / path
        if candidate.exists():
            return candidate
    return resolved


def build_services(
    app_settings: Settings | None = None,
    ai_client: AIClient | None = None,
    catalog: SourceCatalog | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PipelineServices:
    """Wire loaders, agents and caches from settings."""
    app_settings = app_settings or settings
    tz = ZoneInfo(app_settings.timezone)
    catalog = catalog or load_source_catalog(_resolve_path(app_settings.sources_catalog_path))

    if ai_client is None:
        ai_client = build_ai_client(
            app_settings.gemini_api_key,
            app_settings.model_chain(),
            GenerationOptions(
                temperature=app_settings.ai_temperature,
                max_output_tokens=app_settings.ai_max_output_tokens,
                thinking_budget=app_settings.ai_thinking_budget,
            ),
        )

    loader = FeedLoader(
        feeds_dir=_resolve_path(app_settings.feeds_dir),
        reference_feed=catalog.reference_feed,
        reference_feed_url=app_settings.reference_feed_url,
        feed_urls=catalog.feed_urls,
        timeout_seconds=app_settings.request_timeout_seconds,
        transport=transport,
    )
    organizer = ContentOrganizer(
        ai_client=ai_client,
        cache=TTLCache(
            ttl=timedelta(hours=app_settings.organizer_cache_ttl_hours),
            tz=tz,
            name="organizer",
        ),
        extract_time_sensitive=app_settings.extract_time_sensitive,
    )
    analyzer = WeeklyAnalyzer(
        ai_client=ai_client,
        tz=tz,
        cache=TTLCache(
            ttl=timedelta(hours=app_settings.week_cache_ttl_hours),
            tz=tz,
            require_same_day=True,
            name="week",
        ),
        boundary_day=app_settings.week_boundary_day,
        summary_max_chars=app_settings.summary_max_chars,
        social_markers=catalog.social_sources,
    )
    return PipelineServices(
        settings=app_settings,
        catalog=catalog,
        tz=tz,
        collector=FeedCollector(loader=loader, catalog=catalog, tz=tz),
        organizer=organizer,
        analyzer=analyzer,
    )


_default_services: PipelineServices | None = None


def get_default_services() -> PipelineServices:
    global _default_services
    if _default_services is None:
        _default_services = build_services()
    return _default_services


def get_services(config: RunnableConfig | None) -> PipelineServices:
    configurable = (config or {}).get("configurable", {}) or {}
    services = configurable.get("services")
    return services if services is not None else get_default_services()


# =============================================================================
# NODE: INITIALIZE
# =============================================================================

def initialize_node(state: DigestPipelineState, config: RunnableConfig) -> dict:
    """Fill in run parameters from settings."""
    services = get_services(config)
    app_settings = services.settings
    logger.info("Initializing digest pipeline...")

    days_ahead = state.get("days_ahead")
    event_limit = state.get("event_limit")

    return {
        "days_ahead": app_settings.days_ahead if days_ahead is None else days_ahead,
        "event_limit": app_settings.event_limit if event_limit is None else event_limit,
        "now": state.get("now") or datetime.now(timezone.utc),
        "today": state.get("today"),
        "started_at": datetime.now(timezone.utc),
        "collection_errors": [],
        "errors": [],
        "metrics": {},
    }


# =============================================================================
# NODE: COLLECT
# =============================================================================

async def collect_groups_node(state: DigestPipelineState, config: RunnableConfig) -> dict:
    """Load every group's feeds concurrently."""
    services = get_services(config)
    logger.info("Collecting group feeds...")

    group_sources = await services.collector.collect_groups()
    empty_sources = [
        f"{group.value}: {source}"
        for group, source_lists in group_sources.items()
        for source, events in zip(services.catalog.group_feeds.get(group, []), source_lists)
        if not events
    ]

    return {
        "group_sources": group_sources,
        "collection_errors": [f"No events from {entry}" for entry in empty_sources],
        "metrics": {
            f"{group.value}_raw_events": sum(len(events) for events in source_lists)
            for group, source_lists in group_sources.items()
        },
    }


async def collect_reference_node(state: DigestPipelineState, config: RunnableConfig) -> dict:
    """Load the canonical reference feed, continuing with an empty pool on failure."""
    services = get_services(config)
    logger.info("Collecting reference feed...")

    errors: list[str] = []
    try:
        events = await services.collector.collect_reference()
    except FeedUnavailableError as e:
        logger.warning(f"Reference feed unavailable, continuing without it: {e}")
        events = []
        errors.append(str(e))

    return {
        "reference_events": events,
        "collection_errors": errors,
        "metrics": {"reference_raw_events": len(events)},
    }


async def collect_supplementary_node(state: DigestPipelineState, config: RunnableConfig) -> dict:
    """Load launch, athletics and campus group feeds."""
    services = get_services(config)
    logger.info("Collecting supplementary feeds...")

    supplementary = await services.collector.collect_supplementary()
    return {
        "supplementary_events": supplementary,
        "metrics": {
            f"{name}_raw_events": len(events) for name, events in supplementary.items()
        },
    }


# =============================================================================
# NODE: FILTER
# =============================================================================

def filter_window_node(state: DigestPipelineState, config: RunnableConfig) -> dict:
    """Merge each group's sources and apply the display windows."""
    services = get_services(config)
    app_settings = services.settings
    catalog = services.catalog
    now = state["now"]
    days_ahead = state["days_ahead"]
    limit = state["event_limit"]

    groups: dict = {}
    merge_stats: dict = {}
    for group, source_lists in state.get("group_sources", {}).items():
        merged, stats = merge_events(source_lists, catalog.authoritative_source, services.tz)
        windowed = filter_window(merged, days_ahead, limit, app_settings.lookback_days, now)
        groups[group] = inject_authoritative(
            windowed,
            merged,
            catalog.authoritative_source,
            app_settings.authoritative_horizon_days,
            now,
        )
        merge_stats[group.value] = stats
        logger.info(f"{group.value}: {len(groups[group])} events after window filter")

    reference = filter_window(
        state.get("reference_events", []),
        days_ahead * app_settings.reference_window_multiplier,
        limit * 2,
        app_settings.lookback_days,
        now,
    )
    supplementary = {
        name: filter_window(
            events,
            days_ahead * app_settings.supplementary_window_multiplier,
            limit,
            app_settings.lookback_days,
            now,
        )
        for name, events in state.get("supplementary_events", {}).items()
    }

    return {
        "event_sets": GroupEventSets(groups=groups, reference=reference, supplementary=supplementary),
        "merge_stats": merge_stats,
        "metrics": {
            "reference_pool": len(reference),
            **{f"{group.value}_events": len(events) for group, events in groups.items()},
        },
    }


# =============================================================================
# NODE: ORGANIZE DIGEST
# =============================================================================

def organize_digest_node(state: DigestPipelineState, config: RunnableConfig) -> dict:
    services = get_services(config)
    raw_digest = state.get("raw_digest")
    if raw_digest is None:
        logger.info("No digest supplied - skipping organizer")
        return {"organized_digest": None}

    organized: OrganizedDigest = services.organizer.organize(raw_digest)
    errors = []
    if organized.debug_info.fallback:
        errors.append(organized.debug_info.reasoning or "Digest organization fell back")
    return {
        "organized_digest": organized,
        "errors": [*state.get("errors", []), *errors],
        "metrics": {
            "digest_sections": organized.debug_info.total_sections,
            "digest_fallback": organized.debug_info.fallback,
        },
    }


# =============================================================================
# NODE: ANALYZE WEEK
# =============================================================================

def analyze_week_node(state: DigestPipelineState, config: RunnableConfig) -> dict:
    services = get_services(config)
    event_sets = state.get("event_sets") or GroupEventSets()

    analysis: WeeklyAnalysis = services.analyzer.analyze(
        event_sets.groups,
        state.get("organized_digest"),
        today=state.get("today"),
    )
    degraded = [group.value for group, week in analysis.groups.items() if week.degraded]
    if degraded:
        logger.warning(f"Weekly analysis degraded for: {', '.join(degraded)}")

    return {
        "weekly_analysis": analysis,
        "completed_at": datetime.now(timezone.utc),
        "metrics": {
            "week_from_cache": analysis.from_cache,
            "week_processing_ms": analysis.processing_time_ms,
        },
    }


# =============================================================================
# ON-DEMAND ENRICHMENT
# =============================================================================

def enrich_event(
    event: Event,
    state: DigestPipelineState,
    services: PipelineServices | None = None,
) -> Event | None:
    """Best reference match for ``event`` from a finished pipeline run."""
    services = services or get_default_services()
    event_sets = state.get("event_sets") or GroupEventSets()
    return find_matching_event(event, event_sets.reference, services.catalog, services.tz)
