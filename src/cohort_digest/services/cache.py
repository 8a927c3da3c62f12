"""In-process result cache with TTL and optional same-day validity."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Generic, Protocol, TypeVar

import cachetools

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    payload: T
    computed_at: datetime
    computed_on: str                     # ISO date in the cache's timezone


class ResultCache(Protocol[T]):
    def get(self, key: str) -> T | None:
        ...

    def set(self, key: str, payload: T) -> None:
        ...

    def invalidate(self, key: str) -> None:
        ...

    def clear(self) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TTLCache(Generic[T]):
    """Bounded cache whose entries expire after ``ttl``.

    With ``require_same_day`` an entry is also stale once the calendar date
    in ``tz`` moves past the day it was computed on.
    """

    ttl: timedelta
    tz: tzinfo = timezone.utc
    require_same_day: bool = False
    clock: Callable[[], datetime] = _utcnow
    name: str = "cache"
    maxsize: int = 256
    _store: cachetools.TTLCache = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._store = cachetools.TTLCache(
            maxsize=self.maxsize,
            ttl=self.ttl.total_seconds(),
            timer=lambda: self.clock().timestamp(),
        )

    def _today(self, now: datetime) -> str:
        return now.astimezone(self.tz).date().isoformat()

    def get(self, key: str) -> T | None:
        entry: CacheEntry[T] | None = self._store.get(key)
        if entry is None:
            return None
        now = self.clock()
        expired = now - entry.computed_at >= self.ttl
        stale_day = self.require_same_day and entry.computed_on != self._today(now)
        if expired or stale_day:
            self._store.pop(key, None)
            logger.debug(f"{self.name}: evicted {key} ({'expired' if expired else 'new day'})")
            return None
        logger.info(f"{self.name}: cache hit for {key}")
        return entry.payload

    def set(self, key: str, payload: T) -> None:
        now = self.clock()
        self._store[key] = CacheEntry(payload=payload, computed_at=now, computed_on=self._today(now))

    def invalidate(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: Any) -> bool:
        return key in self._store
