"""Shared type definitions for the deeptile core module."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, NamedTuple

from .errors import InvalidConfigurationError


class TileAddress(NamedTuple):
    """Address of a tile in the pyramid.

    Attributes:
        zoom_level: Pyramid level (0 = full resolution)
        tile_x: Column index (0-based)
        tile_y: Row index (0-based)
    """

    zoom_level: int
    tile_x: int
    tile_y: int

    @property
    def folder_name(self) -> str:
        """Container name for the tile's zoom level, e.g. ``z2``."""
        return f"z{self.zoom_level}"

    @property
    def file_stem(self) -> str:
        """Tile name without extension, e.g. ``y3_x5``."""
        return f"y{self.tile_y}_x{self.tile_x}"

    @property
    def key(self) -> str:
        """Stable string key, e.g. ``z2/y3_x5``."""
        return f"{self.folder_name}/{self.file_stem}"

    def filename(self, extension: str) -> str:
        return f"{self.file_stem}.{extension}"

    def validate(self) -> None:
        if self.zoom_level < 0 or self.tile_x < 0 or self.tile_y < 0:
            raise InvalidConfigurationError(f"Tile address must be non-negative: {self}")


@dataclass(frozen=True)
class Rect:
    """Axis-aligned integer rectangle (x, y, width, height)."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def intersects(self, other: Rect) -> bool:
        return (
            self.x < other.right
            and other.x < self.right
            and self.y < other.bottom
            and other.y < self.bottom
        )

    def intersection(self, other: Rect) -> Rect:
        x0 = max(self.x, other.x)
        y0 = max(self.y, other.y)
        x1 = min(self.right, other.right)
        y1 = min(self.bottom, other.bottom)
        return Rect(x0, y0, max(0, x1 - x0), max(0, y1 - y0))


@dataclass
class LevelInfo:
    """Information about a pyramid level.

    Attributes:
        level: Level index (0 = full resolution)
        downsample: Downsample factor relative to full resolution (1 = full res)
        cols: Number of tile columns at this level
        rows: Number of tile rows at this level
        width: Level width in pixels
        height: Level height in pixels
    """

    level: int
    downsample: int
    cols: int
    rows: int
    width: int = 0
    height: int = 0

    @property
    def tile_count(self) -> int:
        return self.cols * self.rows

    def addresses(self) -> Iterator[TileAddress]:
        """Yield every tile address of this level, ascending tile_x then tile_y."""
        for tile_x in range(self.cols):
            for tile_y in range(self.rows):
                yield TileAddress(self.level, tile_x, tile_y)


@dataclass(frozen=True)
class TileRange:
    """Half-open range of tile indices ``[start, end)`` on both axes."""

    zoom_level: int
    start_x: int
    end_x: int
    start_y: int
    end_y: int

    @property
    def count(self) -> int:
        return max(0, self.end_x - self.start_x) * max(0, self.end_y - self.start_y)

    def addresses(self) -> Iterator[TileAddress]:
        for tile_x in range(self.start_x, self.end_x):
            for tile_y in range(self.start_y, self.end_y):
                yield TileAddress(self.zoom_level, tile_x, tile_y)


@dataclass(frozen=True)
class Viewport:
    """A rectangular view onto the full-resolution image.

    Attributes:
        offset_x: Horizontal offset in full-resolution pixels
        offset_y: Vertical offset in full-resolution pixels
        zoom_factor: 1.0 = level 0, 0.5 = level 1, 0.25 = level 2, ...
        width: Output width in pixels
        height: Output height in pixels
    """

    offset_x: float
    offset_y: float
    zoom_factor: float
    width: int
    height: int

    def __post_init__(self) -> None:
        if not 0 < self.zoom_factor <= 1:
            raise InvalidConfigurationError(
                f"zoom_factor must be in (0, 1], got {self.zoom_factor}"
            )
        if self.width <= 0 or self.height <= 0:
            raise InvalidConfigurationError(
                f"Viewport size must be positive, got {self.width}x{self.height}"
            )

    @property
    def bounds(self) -> Rect:
        """Output canvas in output pixels."""
        return Rect(0, 0, self.width, self.height)
