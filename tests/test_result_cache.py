"""Tests for the TTL + FIFO search result cache."""

from __future__ import annotations

from dataclasses import FrozenInstanceError

import pytest

from lexkb.index.result_cache import SearchResultCache
from lexkb.models import SearchHit


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _hit(file_id: str) -> SearchHit:
    return SearchHit(
        file_id=file_id,
        title=file_id,
        jurisdiction=None,
        version=None,
        as_of=None,
        summary={"en": "", "ar": ""},
        tags=None,
        score=0.5,
    )


class TestSearchResultCache:
    """Test SearchResultCache."""

    def test_miss_then_hit(self) -> None:
        """A stored result is returned on the next lookup."""
        cache = SearchResultCache(timer=FakeClock())

        assert cache.get("cheque") is None
        cache.put("cheque", [_hit("a")])

        assert [hit.file_id for hit in cache.get("cheque")] == ["a"]
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    def test_keys_are_normalised(self) -> None:
        """Lookups ignore case and extra whitespace."""
        cache = SearchResultCache(timer=FakeClock())
        cache.put("  Bounced   Cheque ", [_hit("a")])

        assert cache.get("bounced cheque") is not None

    def test_entries_expire(self) -> None:
        """Entries stop being served once their TTL has passed."""
        clock = FakeClock()
        cache = SearchResultCache(ttl=60.0, timer=clock)
        cache.put("q", [_hit("a")])

        clock.now += 59.0
        assert cache.get("q") is not None

        clock.now += 1.0
        assert cache.get("q") is None
        assert len(cache) == 0

    def test_fifo_eviction_ignores_reads(self) -> None:
        """The oldest insert is evicted first, even if it was just read."""
        cache = SearchResultCache(maxsize=2, timer=FakeClock())
        cache.put("first", [_hit("a")])
        cache.put("second", [_hit("b")])
        # Reading does not refresh an entry's position.
        cache.get("first")

        cache.put("third", [_hit("c")])

        assert cache.get("first") is None
        assert cache.get("second") is not None
        assert cache.get("third") is not None

    def test_returned_list_is_a_copy(self) -> None:
        """Mutating a returned list does not change the cached entry."""
        cache = SearchResultCache(timer=FakeClock())
        cache.put("q", [_hit("a")])

        cache.get("q").clear()

        assert len(cache.get("q")) == 1

    def test_returned_hits_are_independent(self) -> None:
        """Changing a returned hit does not leak into later lookups."""
        cache = SearchResultCache(timer=FakeClock())
        cache.put("q", [_hit("a")])

        hit = cache.get("q")[0]
        hit.summary["en"] = "changed"
        with pytest.raises(FrozenInstanceError):
            hit.score = 1.0

        assert cache.get("q")[0].summary["en"] == ""

    def test_stored_hits_are_copied(self) -> None:
        """Mutating the caller's hits after put() leaves the entry unchanged."""
        cache = SearchResultCache(timer=FakeClock())
        hits = [_hit("a")]
        cache.put("q", hits)

        hits[0].summary["ar"] = "changed"

        assert cache.get("q")[0].summary["ar"] == ""

    def test_clear(self) -> None:
        """clear() drops every entry but keeps the configuration."""
        cache = SearchResultCache(timer=FakeClock())
        cache.put("q", [])
        cache.clear()

        assert len(cache) == 0
        assert cache.stats()["size"] == 0
        assert cache.stats()["maxsize"] == 128
