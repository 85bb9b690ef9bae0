from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable
from functools import lru_cache
from typing import Any, TypeVar

import structlog

from lendops.domain.analytics.invalidation import ALL_ANALYTICS_TAG

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class AnalyticsCache:
    """
    Thread-safe in-process cache for analytics reads, grouped by tag.

    ``invalidate(tag)`` drops every entry stored under that tag and records
    when it happened; ``analytics:*`` drops everything.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, dict[Hashable, Any]] = {}
        self._invalidated_at: dict[str, float] = {}
        self.hits = 0
        self.misses = 0

    def get(self, tag: str, key: Hashable) -> Any | None:
        with self._lock:
            return self._entries.get(tag, {}).get(key)

    def set(self, tag: str, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries.setdefault(tag, {})[key] = value

    def get_or_compute(self, tag: str, key: Hashable, compute: Callable[[], T]) -> T:
        with self._lock:
            bucket = self._entries.get(tag)
            if bucket is not None and key in bucket:
                self.hits += 1
                return bucket[key]
            self.misses += 1
            started = time.monotonic()

        value = compute()

        with self._lock:
            # Skip the store if the tag was invalidated while computing.
            if self._invalidated_at.get(tag, 0.0) < started and self._invalidated_at.get(ALL_ANALYTICS_TAG, 0.0) < started:
                self._entries.setdefault(tag, {})[key] = value
        return value

    def invalidate(self, tag: str) -> int:
        """Drop entries under ``tag``. Returns how many entries were removed."""
        now = time.monotonic()
        with self._lock:
            if tag == ALL_ANALYTICS_TAG:
                removed = sum(len(b) for b in self._entries.values())
                self._entries.clear()
            else:
                removed = len(self._entries.pop(tag, {}))
            self._invalidated_at[tag] = now
        logger.debug("analytics_cache_invalidated", tag=tag, removed=removed)
        return removed

    def invalidated_at(self, tag: str) -> float | None:
        with self._lock:
            return self._invalidated_at.get(tag)

    def tags(self) -> list[str]:
        with self._lock:
            return sorted(tag for tag, bucket in self._entries.items() if bucket)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._invalidated_at.clear()
            self.hits = self.misses = 0


@lru_cache(maxsize=1)
def get_analytics_cache() -> AnalyticsCache:
    return AnalyticsCache()
