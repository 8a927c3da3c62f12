"""Date-window filtering for merged calendar events."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from cohort_digest.models.schemas import Event

logger = logging.getLogger(__name__)


def filter_window(
    events: list[Event],
    days_ahead: int,
    limit: int,
    lookback_days: int = 30,
    now: datetime | None = None,
) -> list[Event]:
    """Keep events starting within ``[now - lookback, now + days_ahead)``.

    Args:
        events: Merged events to filter
        days_ahead: Lookahead window in days
        limit: Maximum number of events returned
        lookback_days: How far back events are still shown
        now: Reference time for filtering (defaults to current UTC time)
    """
    if now is None:
        now = datetime.now(timezone.utc)
    window_start = now - timedelta(days=lookback_days)
    window_end = now + timedelta(days=days_ahead)

    in_window = sorted(
        (event for event in events if window_start <= event.start < window_end),
        key=lambda e: e.start,
    )
    truncated = max(0, len(in_window) - limit)
    if truncated:
        logger.info(f"Date filter: truncated {truncated} events beyond limit {limit}")
    return in_window[:max(limit, 0)]


def inject_authoritative(
    filtered: list[Event],
    all_events: list[Event],
    authoritative_source: str | None,
    horizon_days: int = 365,
    now: datetime | None = None,
) -> list[Event]:
    """Union future authoritative events up to ``horizon_days`` into ``filtered``.

    Events already present by exact ``(start, title)`` are not added twice.
    """
    if not authoritative_source:
        return filtered
    if now is None:
        now = datetime.now(timezone.utc)
    horizon = now + timedelta(days=horizon_days)
    marker = authoritative_source.lower()

    present = {(event.start, event.title) for event in filtered}
    injected: list[Event] = []
    for event in all_events:
        if marker not in (event.source or "").lower():
            continue
        if not (now <= event.start <= horizon):
            continue
        key = (event.start, event.title)
        if key in present:
            continue
        present.add(key)
        injected.append(event)

    if not injected:
        return filtered
    logger.info(f"Injected {len(injected)} events from {authoritative_source} beyond the window")
    return sorted([*filtered, *injected], key=lambda e: e.start)
