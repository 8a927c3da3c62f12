"""LangGraph workflow definition for the digest pipeline.

Pipeline:
    Initialize → Collect (groups + reference + supplementary) → Filter Window → Organize Digest → Analyze Week

Uses LangGraph for:
- State management between nodes
- Parallel collection of group, reference and supplementary feeds
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from langgraph.graph import StateGraph, END

from cohort_digest.models.schemas import RawDigest
from cohort_digest.workflow.nodes import (
    PipelineServices,
    analyze_week_node,
    collect_groups_node,
    collect_reference_node,
    collect_supplementary_node,
    filter_window_node,
    get_default_services,
    initialize_node,
    organize_digest_node,
)
from cohort_digest.workflow.state import DigestPipelineState

logger = logging.getLogger(__name__)


def create_digest_graph() -> StateGraph:
    """Create the digest pipeline graph.

    Flow:
        START
          ↓
        initialize
          ↓
        collect_groups ‖ collect_reference ‖ collect_supplementary
          ↓
        filter_window
          ↓
        organize_digest
          ↓
        analyze_week
          ↓
         END
    """
    graph = StateGraph(DigestPipelineState)

    graph.add_node("initialize", initialize_node)
    graph.add_node("collect_groups", collect_groups_node)
    graph.add_node("collect_reference", collect_reference_node)
    graph.add_node("collect_supplementary", collect_supplementary_node)
    graph.add_node("filter_window", filter_window_node)
    graph.add_node("organize_digest", organize_digest_node)
    graph.add_node("analyze_week", analyze_week_node)

    graph.set_entry_point("initialize")

    # After initialize, run the three collectors in parallel
    for collector in ("collect_groups", "collect_reference", "collect_supplementary"):
        graph.add_edge("initialize", collector)
        graph.add_edge(collector, "filter_window")

    graph.add_edge("filter_window", "organize_digest")
    graph.add_edge("organize_digest", "analyze_week")
    graph.add_edge("analyze_week", END)

    return graph


def compile_digest_workflow():
    """Compile the digest pipeline for execution."""
    return create_digest_graph().compile()


async def run_pipeline(
    raw_digest: RawDigest | None = None,
    *,
    days_ahead: int | None = None,
    limit: int | None = None,
    now: datetime | None = None,
    today: date | None = None,
    services: PipelineServices | None = None,
) -> DigestPipelineState:
    """Run the complete pipeline and return the final state.

    Args:
        raw_digest: Digest issue to organize and analyze (optional)
        days_ahead: Display window in days (defaults to settings)
        limit: Maximum events per group (defaults to settings)
        now: Reference instant for window filtering
        today: Reference day for the weekly analysis
        services: Shared services; the process-wide default keeps caches across runs
    """
    services = services or get_default_services()
    logger.info("Starting digest pipeline...")

    initial_state: DigestPipelineState = {
        "raw_digest": raw_digest,
        "days_ahead": days_ahead,
        "event_limit": limit,
        "today": today,
        "group_sources": {},
        "reference_events": [],
        "supplementary_events": {},
        "collection_errors": [],
        "organized_digest": None,
        "weekly_analysis": None,
        "completed_at": None,
        "errors": [],
        "metrics": {},
    }
    if now is not None:
        initial_state["now"] = now

    workflow = compile_digest_workflow()
    final_state = await workflow.ainvoke(initial_state, {"configurable": {"services": services}})

    logger.info("Digest pipeline complete!")
    logger.info(f"Metrics: {final_state.get('metrics', {})}")
    return final_state
