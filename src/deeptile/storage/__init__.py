"""Tile stores: where encoded tiles are written to and read from."""

from .base import TileSink, TileSource, TileStore
from .filesystem import FileSystemTileStore
from .memory import MemoryTileStore

__all__ = [
    "TileSink",
    "TileSource",
    "TileStore",
    "FileSystemTileStore",
    "MemoryTileStore",
]
