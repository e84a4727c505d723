"""Decoded-tile caches keyed by tile address.

A cache memoizes the result of a loader per address. Concurrent requests for
an address that is still loading wait for that load instead of starting a
second one, so each address is loaded at most once while it stays cached.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from typing import Callable, MutableMapping, Optional

import numpy as np

from deeptile.config import TILE_CACHE_SIZE

from .types import TileAddress

logger = logging.getLogger(__name__)

#: Loads the decoded buffer for an address, or None if the tile does not exist
TileLoader = Callable[[TileAddress], Optional[np.ndarray]]


class TileCache:
    """Unbounded tile cache with per-address load serialization.

    The cache owns the buffers it returns. They are marked read-only and may
    be shared by concurrent renders; callers must not mutate them. Absent
    tiles (loader returned None) are remembered too. A loader that raises
    hands the exception to every waiting caller and leaves nothing cached, so
    a later request loads again.

    Use as a context manager or call ``close()`` to release all buffers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: MutableMapping[str, np.ndarray | None] = self._make_store()
        self._pending: dict[str, Future] = {}
        self._closed = False
        self._hits = 0
        self._misses = 0
        self._loads = 0

    def _make_store(self) -> MutableMapping[str, np.ndarray | None]:
        return {}

    def _touch(self, key: str) -> None:
        """Hook called on every hit."""

    def _evict(self) -> None:
        """Hook called after an insert, with the lock held."""

    def get_or_create(self, address: TileAddress, loader: TileLoader) -> np.ndarray | None:
        """Return the cached buffer for ``address``, loading it at most once.

        Args:
            address: Tile to fetch
            loader: Called with ``address`` on a miss

        Returns:
            The decoded tile, or None if the tile does not exist
        """
        key = address.key
        with self._lock:
            if self._closed:
                raise RuntimeError("TileCache is closed")
            if key in self._entries:
                self._hits += 1
                self._touch(key)
                return self._entries[key]
            future = self._pending.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._pending[key] = future
                self._misses += 1
            else:
                self._hits += 1

        if not owner:
            return future.result()

        try:
            buffer = loader(address)
            if buffer is not None:
                buffer.flags.writeable = False
        except BaseException as e:
            with self._lock:
                self._pending.pop(key, None)
            logger.debug("Loading %s failed: %s", key, e)
            future.set_exception(e)
            raise

        with self._lock:
            self._loads += 1
            self._pending.pop(key, None)
            if not self._closed:
                self._entries[key] = buffer
                self._evict()
        future.set_result(buffer)
        return buffer

    def __contains__(self, address: TileAddress) -> bool:
        with self._lock:
            return address.key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        """Return hit/miss/load counters and current size."""
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "loads": self._loads,
                "size": len(self._entries),
            }

    def close(self) -> None:
        """Release every cached buffer. The cache cannot be used afterwards."""
        with self._lock:
            released = len(self._entries)
            self._entries.clear()
            self._closed = True
        logger.debug("Tile cache closed, released %d entries", released)

    def __enter__(self) -> TileCache:
        return self

    def __exit__(self, *args) -> None:
        self.close()


class LRUTileCache(TileCache):
    """Tile cache that keeps at most ``max_tiles`` entries.

    Least recently used entries are dropped first. An evicted address is
    loaded again on its next request.
    """

    def __init__(self, max_tiles: int) -> None:
        if max_tiles < 1:
            raise ValueError(f"max_tiles must be at least 1, got {max_tiles}")
        self.max_tiles = max_tiles
        self._evictions = 0
        super().__init__()

    def _make_store(self) -> MutableMapping[str, np.ndarray | None]:
        return OrderedDict()

    def _touch(self, key: str) -> None:
        self._entries.move_to_end(key)

    def _evict(self) -> None:
        while len(self._entries) > self.max_tiles:
            self._entries.popitem(last=False)
            self._evictions += 1

    def stats(self) -> dict:
        result = super().stats()
        with self._lock:
            result["capacity"] = self.max_tiles
            result["evictions"] = self._evictions
        return result


def create_tile_cache(max_tiles: int | None = None) -> TileCache:
    """Create a tile cache from a capacity.

    Args:
        max_tiles: Capacity in tiles; 0 means unbounded, None uses
            ``config.TILE_CACHE_SIZE``

    Returns:
        TileCache (unbounded) or LRUTileCache
    """
    if max_tiles is None:
        max_tiles = TILE_CACHE_SIZE
    if max_tiles <= 0:
        return TileCache()
    return LRUTileCache(max_tiles)
