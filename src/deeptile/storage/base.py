"""Contracts for persisting and reading encoded tiles."""

from __future__ import annotations

from abc import ABC, abstractmethod

from deeptile.core.types import TileAddress


class TileSink(ABC):
    """Write side of a tile store.

    The pyramid builder calls ``create_container`` once per zoom level before
    the first ``write`` to that level. ``write`` may be called from several
    threads at once.
    """

    @abstractmethod
    def create_container(self, zoom_level: int) -> None:
        """Prepare storage for the tiles of ``zoom_level``."""

    @abstractmethod
    def write(self, address: TileAddress, data: bytes) -> None:
        """Persist the encoded bytes of one tile.

        Raises:
            SinkWriteError: If the tile could not be stored
        """

    def write_metadata(self, metadata: dict) -> None:
        """Persist the pyramid description. Stores without metadata ignore it."""


class TileSource(ABC):
    """Read side of a tile store."""

    @abstractmethod
    def read(self, address: TileAddress) -> bytes | None:
        """Return the encoded bytes of a tile, or None if it does not exist."""

    def read_metadata(self) -> dict | None:
        """Return the pyramid description, or None if the store has none."""
        return None


class TileStore(TileSink, TileSource):
    """A store that can both receive and serve tiles."""
