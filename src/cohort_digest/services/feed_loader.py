"""Feed loader: resolves a feed identifier to raw ICS text."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)


class FeedUnavailableError(Exception):
    """Raised when no resolution path produced content for a feed."""

    def __init__(self, source: str, reason: str = ""):
        self.source = source
        self.reason = reason
        message = f"Feed unavailable: {source}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


@dataclass
class FeedLoader:
    """Loads feeds from an override URL, the feeds directory, or fails.

    Resolution order for a source:
    1. An explicit remote URL (``reference_feed_url`` for the reference feed,
       ``feed_urls`` for catalog-declared remote feeds).
    2. A non-empty file named ``source`` under ``feeds_dir``.
    """

    feeds_dir: Path
    reference_feed: str = ""
    reference_feed_url: str = ""
    feed_urls: dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None

    def __post_init__(self) -> None:
        self.feeds_dir = Path(self.feeds_dir)

    def override_url(self, source: str) -> str | None:
        if self.reference_feed and source == self.reference_feed and self.reference_feed_url:
            return self.reference_feed_url
        return self.feed_urls.get(source)

    async def load(self, source: str) -> str:
        url = self.override_url(source)
        if url:
            try:
                text = await self._fetch(url)
            except httpx.HTTPError as e:
                logger.warning(f"Fetching {source} from {url} failed: {e}")
            else:
                if text.strip():
                    logger.info(f"Loaded {source} from remote URL")
                    return text
                logger.warning(f"Remote URL for {source} returned empty content")

        path = self.feeds_dir / source
        if path.is_file():
            text = path.read_text(encoding="utf-8", errors="replace")
            if text.strip():
                logger.info(f"Loaded {source} from {path}")
                return text
            logger.warning(f"Feed file {path} is empty")

        raise FeedUnavailableError(source, "no override URL or local file")

    async def _fetch(self, url: str) -> str:
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self.transport,
        ) as client:
            response = await client.get(url, follow_redirects=True)
            response.raise_for_status()
            return response.text
