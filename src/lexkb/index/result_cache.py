"""Short-lived cache of search results keyed by normalised query text."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Sequence

from cachetools import FIFOCache

from lexkb.models import SearchHit
from lexkb.utils.text import normalize_query

LOGGER = logging.getLogger(__name__)


def _copy_hits(items: Sequence[SearchHit]) -> list[SearchHit]:
    # Hits are frozen but carry a mutable summary mapping.
    return [replace(hit, summary=dict(hit.summary)) for hit in items]


@dataclass(slots=True)
class SearchCacheEntry:
    query: str
    items: tuple[SearchHit, ...]
    inserted_at: float


class SearchResultCache:
    """Bounded FIFO cache with a fixed time-to-live per entry.

    When full, the oldest inserted entry is evicted regardless of how often
    it was read. Expired entries are dropped on lookup and count as misses.
    """

    def __init__(
        self,
        maxsize: int = 128,
        ttl: float = 60.0,
        *,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.maxsize = maxsize
        self.ttl = ttl
        self._timer = timer
        self._entries: FIFOCache[str, SearchCacheEntry] = FIFOCache(maxsize=maxsize)
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, query: str) -> list[SearchHit] | None:
        key = normalize_query(query)
        entry = self._entries.get(key)
        if entry is not None and self._timer() - entry.inserted_at < self.ttl:
            self.hits += 1
            LOGGER.debug("Search cache hit for %r", key)
            return _copy_hits(entry.items)
        if entry is not None:
            del self._entries[key]
        self.misses += 1
        return None

    def put(self, query: str, items: Sequence[SearchHit]) -> None:
        key = normalize_query(query)
        self._entries[key] = SearchCacheEntry(
            query=key, items=tuple(_copy_hits(items)), inserted_at=self._timer()
        )

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": len(self._entries),
            "maxsize": self.maxsize,
            "ttl": self.ttl,
        }
