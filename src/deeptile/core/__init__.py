"""Core types, grid math, caching and concurrency primitives."""

from .cache import LRUTileCache, TileCache, create_tile_cache
from .errors import (
    BuildCancelled,
    DecodeError,
    DeepTileError,
    InvalidConfigurationError,
    PyramidBuildError,
    SinkWriteError,
)
from .gate import AdmissionGate
from .types import LevelInfo, Rect, TileAddress, TileRange, Viewport

__all__ = [
    "AdmissionGate",
    "BuildCancelled",
    "DecodeError",
    "DeepTileError",
    "InvalidConfigurationError",
    "LRUTileCache",
    "LevelInfo",
    "PyramidBuildError",
    "Rect",
    "SinkWriteError",
    "TileAddress",
    "TileCache",
    "TileRange",
    "Viewport",
    "create_tile_cache",
]
