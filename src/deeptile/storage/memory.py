"""In-memory tile store, mainly for tests and short-lived tools."""

from __future__ import annotations

import threading

from deeptile.core.errors import SinkWriteError
from deeptile.core.types import TileAddress

from .base import TileStore


class MemoryTileStore(TileStore):
    """Thread-safe dict-backed tile store.

    Writes to a zoom level whose container was never created are rejected.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tiles: dict[TileAddress, bytes] = {}
        self._containers: list[int] = []
        self._metadata: dict | None = None

    @property
    def containers(self) -> list[int]:
        """Zoom levels in the order their containers were created."""
        with self._lock:
            return list(self._containers)

    def create_container(self, zoom_level: int) -> None:
        with self._lock:
            if zoom_level not in self._containers:
                self._containers.append(zoom_level)

    def write(self, address: TileAddress, data: bytes) -> None:
        address.validate()
        with self._lock:
            if address.zoom_level not in self._containers:
                raise SinkWriteError(
                    f"No container for zoom level {address.zoom_level}", address
                )
            self._tiles[address] = bytes(data)

    def read(self, address: TileAddress) -> bytes | None:
        with self._lock:
            return self._tiles.get(address)

    def write_metadata(self, metadata: dict) -> None:
        with self._lock:
            self._metadata = dict(metadata)

    def read_metadata(self) -> dict | None:
        with self._lock:
            return dict(self._metadata) if self._metadata is not None else None

    def addresses(self) -> list[TileAddress]:
        with self._lock:
            return sorted(self._tiles)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tiles)

    def __contains__(self, address: TileAddress) -> bool:
        with self._lock:
            return address in self._tiles
