"""Tests for the decoded-tile caches."""

from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from deeptile.core.cache import LRUTileCache, TileCache, create_tile_cache
from deeptile.core.types import TileAddress


def _tile(value: int = 0) -> np.ndarray:
    return np.full((4, 4, 3), value, dtype=np.uint8)


class CountingLoader:
    """Loader that counts calls and optionally blocks until released."""

    def __init__(self, result=None, delay: float = 0.0, error: Exception | None = None):
        self.result = result
        self.delay = delay
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, address: TileAddress):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result() if callable(self.result) else self.result


class TestTileCache:
    def test_concurrent_requests_load_once(self) -> None:
        """Many threads asking for the same address trigger a single load."""
        cache = TileCache()
        loader = CountingLoader(result=lambda: _tile(7), delay=0.1)
        address = TileAddress(0, 1, 1)
        results = []
        errors = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            try:
                barrier.wait()
                results.append(cache.get_or_create(address, loader))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert loader.calls == 1
        assert len(results) == 8
        assert all(r is results[0] for r in results)
        assert cache.stats()["loads"] == 1

    def test_hit_after_load(self) -> None:
        cache = TileCache()
        loader = CountingLoader(result=lambda: _tile(1))
        address = TileAddress(0, 0, 0)

        first = cache.get_or_create(address, loader)
        second = cache.get_or_create(address, loader)

        assert first is second
        assert loader.calls == 1
        assert address in cache
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    def test_absent_tile_is_remembered(self) -> None:
        cache = TileCache()
        loader = CountingLoader(result=None)
        address = TileAddress(3, 9, 9)

        assert cache.get_or_create(address, loader) is None
        assert cache.get_or_create(address, loader) is None
        assert loader.calls == 1

    def test_returned_buffers_are_read_only(self) -> None:
        cache = TileCache()
        tile = cache.get_or_create(TileAddress(0, 0, 0), CountingLoader(result=lambda: _tile()))
        assert not tile.flags.writeable
        with pytest.raises(ValueError):
            tile[0, 0, 0] = 1

    def test_failed_load_is_retried(self) -> None:
        cache = TileCache()
        address = TileAddress(0, 0, 0)
        failing = CountingLoader(error=OSError("disk"))

        with pytest.raises(OSError):
            cache.get_or_create(address, failing)
        assert address not in cache

        tile = cache.get_or_create(address, CountingLoader(result=lambda: _tile(3)))
        assert tile[0, 0, 0] == 3

    def test_failure_reaches_every_waiter(self) -> None:
        cache = TileCache()
        loader = CountingLoader(error=ValueError("corrupt"), delay=0.1)
        address = TileAddress(1, 0, 0)
        errors = []
        barrier = threading.Barrier(4)

        def worker() -> None:
            barrier.wait()
            try:
                cache.get_or_create(address, loader)
            except ValueError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 4
        assert len(cache) == 0

    def test_close_releases_entries(self) -> None:
        cache = TileCache()
        for i in range(3):
            cache.get_or_create(TileAddress(0, i, 0), CountingLoader(result=lambda: _tile()))
        assert len(cache) == 3

        cache.close()

        assert len(cache) == 0
        with pytest.raises(RuntimeError):
            cache.get_or_create(TileAddress(0, 0, 0), CountingLoader())

    def test_context_manager_closes(self) -> None:
        with TileCache() as cache:
            cache.get_or_create(TileAddress(0, 0, 0), CountingLoader(result=lambda: _tile()))
        assert len(cache) == 0


class TestLRUTileCache:
    def test_evicts_least_recently_used(self) -> None:
        cache = LRUTileCache(max_tiles=2)
        loader = CountingLoader(result=lambda: _tile())
        a, b, c = TileAddress(0, 0, 0), TileAddress(0, 1, 0), TileAddress(0, 2, 0)

        cache.get_or_create(a, loader)
        cache.get_or_create(b, loader)
        cache.get_or_create(a, loader)  # a is now most recent
        cache.get_or_create(c, loader)

        assert a in cache
        assert b not in cache
        assert c in cache
        assert cache.stats()["evictions"] == 1

    def test_evicted_tile_reloads(self) -> None:
        cache = LRUTileCache(max_tiles=1)
        loader = CountingLoader(result=lambda: _tile())
        a, b = TileAddress(0, 0, 0), TileAddress(0, 1, 0)

        cache.get_or_create(a, loader)
        cache.get_or_create(b, loader)
        cache.get_or_create(a, loader)

        assert loader.calls == 3
        assert len(cache) == 1

    def test_rejects_zero_capacity(self) -> None:
        with pytest.raises(ValueError):
            LRUTileCache(max_tiles=0)


class TestCreateTileCache:
    def test_zero_is_unbounded(self) -> None:
        cache = create_tile_cache(0)
        assert type(cache) is TileCache

    def test_positive_is_lru(self) -> None:
        cache = create_tile_cache(5)
        assert isinstance(cache, LRUTileCache)
        assert cache.stats()["capacity"] == 5

    def test_default_uses_config(self) -> None:
        from deeptile.config import TILE_CACHE_SIZE

        cache = create_tile_cache()
        if TILE_CACHE_SIZE > 0:
            assert cache.stats()["capacity"] == TILE_CACHE_SIZE
        else:
            assert type(cache) is TileCache
