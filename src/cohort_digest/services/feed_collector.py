"""Collects and normalizes the feeds that make up each group."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import tzinfo

from cohort_digest.models.schemas import Event, Group
from cohort_digest.services.feed_loader import FeedLoader, FeedUnavailableError
from cohort_digest.tools.ics_parser import parse_feed
from cohort_digest.tools.source_catalog import SourceCatalog

logger = logging.getLogger(__name__)


@dataclass
class FeedCollector:
    """Fans out over feed sources and turns them into Event lists."""

    loader: FeedLoader
    catalog: SourceCatalog
    tz: tzinfo

    async def load_events(self, source: str, group: Group | None = None) -> list[Event]:
        """Load and parse one source. Raises FeedUnavailableError."""
        text = await self.loader.load(source)
        return parse_feed(text, group, source, self.catalog.sanitize, self.tz)

    async def collect_source(self, source: str, group: Group | None = None) -> list[Event]:
        """Load one source, falling back to its legacy name, never raising."""
        events: list[Event] = []
        error: FeedUnavailableError | None = None
        try:
            events = await self.load_events(source, group)
        except FeedUnavailableError as e:
            error = e

        if events:
            return events

        legacy = self.catalog.legacy_name(source)
        if legacy:
            reason = "unavailable" if error else "returned zero events"
            logger.info(f"{source} {reason} - retrying as legacy feed {legacy}")
            try:
                legacy_events = await self.load_events(legacy, group)
            except FeedUnavailableError as e:
                logger.warning(f"Legacy feed {legacy} also unavailable: {e}")
            else:
                logger.info(f"Loaded {len(legacy_events)} events from legacy feed {legacy}")
                return legacy_events

        if error:
            logger.warning(f"Skipping {source}: {error}")
        return events

    async def collect_group(self, group: Group) -> list[list[Event]]:
        """Per-source event lists for ``group`` in catalog order."""
        sources = self.catalog.group_feeds.get(group, [])
        results = await asyncio.gather(
            *(self.collect_source(source, group) for source in sources)
        )
        total = sum(len(events) for events in results)
        logger.info(f"Collected {total} events for {group.value} from {len(sources)} feeds")
        return list(results)

    async def collect_groups(self, groups: list[Group] | None = None) -> dict[Group, list[list[Event]]]:
        groups = groups if groups is not None else list(self.catalog.group_feeds)
        collected = await asyncio.gather(*(self.collect_group(group) for group in groups))
        return dict(zip(groups, collected))

    async def collect_reference(self) -> list[Event]:
        """Load the canonical reference feed. Raises FeedUnavailableError."""
        if not self.catalog.reference_feed:
            raise FeedUnavailableError("reference", "no reference feed configured")
        events = await self.load_events(self.catalog.reference_feed)
        logger.info(f"Loaded {len(events)} reference events from {self.catalog.reference_feed}")
        return events

    async def collect_supplementary(self) -> dict[str, list[Event]]:
        """Load every supplementary feed; unavailable ones yield empty lists."""
        names = list(self.catalog.supplementary_feeds)
        results = await asyncio.gather(
            *(self.collect_source(self.catalog.supplementary_feeds[name]) for name in names)
        )
        return dict(zip(names, results))
