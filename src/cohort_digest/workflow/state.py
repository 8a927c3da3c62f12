"""LangGraph state definitions for the digest pipeline.

This defines the data that flows through the pipeline:
Initialize → Collect (groups + reference + supplementary) → Filter → Organize Digest → Analyze Week
"""

from __future__ import annotations

import operator
from datetime import date, datetime
from typing import Annotated, TypedDict

from cohort_digest.models.schemas import (
    Event,
    Group,
    GroupEventSets,
    OrganizedDigest,
    RawDigest,
    WeeklyAnalysis,
)


class DigestPipelineState(TypedDict, total=False):
    """Main state that flows through the LangGraph workflow.

    Each stage reads from and writes to this state.
    """
    # === INPUT ===
    raw_digest: RawDigest | None
    days_ahead: int | None
    event_limit: int | None
    now: datetime                     # Reference instant for window filtering
    today: date | None                # Reference day for the weekly analysis

    # === COLLECTION STAGE ===
    group_sources: Annotated[dict[Group, list[list[Event]]], operator.or_]
    reference_events: list[Event]
    supplementary_events: dict[str, list[Event]]
    collection_errors: Annotated[list[str], operator.add]

    # === FILTER STAGE ===
    event_sets: GroupEventSets
    merge_stats: dict

    # === DIGEST STAGE ===
    organized_digest: OrganizedDigest | None
    weekly_analysis: WeeklyAnalysis | None

    # === METADATA ===
    started_at: datetime
    completed_at: datetime | None
    errors: list[str]
    metrics: Annotated[dict, operator.or_]
