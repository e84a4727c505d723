"""Pyramid, tile-grid and viewport coordinate math.

Two coordinate spaces are in play and never mixed:

- full-resolution pixels (level 0), used for source rectangles and viewport
  offsets;
- zoom-level-local pixels, where every tile of a level is ``tile_size`` wide
  except the last column/row.
"""

from __future__ import annotations

import math

from .errors import InvalidConfigurationError
from .types import LevelInfo, Rect, TileAddress, TileRange, Viewport


def validate_tile_size(tile_size: int) -> int:
    if not isinstance(tile_size, int) or isinstance(tile_size, bool) or tile_size <= 0:
        raise InvalidConfigurationError(f"tile_size must be a positive integer, got {tile_size!r}")
    return tile_size


def _ceil_div(value: int, divisor: int) -> int:
    return -(-value // divisor)


def max_zoom_level(width: int, height: int, tile_size: int) -> int:
    """Return ``ceil(log2(max(width, height) / tile_size))``, at least 0.

    Computed on integers: the smallest level whose longest side fits in one tile.
    """
    validate_tile_size(tile_size)
    if width <= 0 or height <= 0:
        raise InvalidConfigurationError(f"Image size must be positive, got {width}x{height}")
    longest = max(width, height)
    level = 0
    while longest > tile_size << level:
        level += 1
    return level


def level_dimensions(width: int, height: int, zoom_level: int) -> tuple[int, int]:
    """Linear size of a level: ``ceil(source / 2**zoom_level)`` on each axis."""
    factor = 1 << zoom_level
    return _ceil_div(width, factor), _ceil_div(height, factor)


def grid_size(width: int, height: int, tile_size: int) -> tuple[int, int]:
    """Tile grid ``(cols, rows)`` covering a ``width`` x ``height`` level."""
    return _ceil_div(width, tile_size), _ceil_div(height, tile_size)


def calculate_levels(width: int, height: int, tile_size: int) -> list[LevelInfo]:
    """Calculate level info for every level from 0 to the maximum zoom level.

    Args:
        width: Source width in pixels
        height: Source height in pixels
        tile_size: Tile size in pixels

    Returns:
        List of LevelInfo, level 0 (full resolution) first
    """
    levels = []
    for zoom in range(max_zoom_level(width, height, tile_size) + 1):
        level_w, level_h = level_dimensions(width, height, zoom)
        cols, rows = grid_size(level_w, level_h, tile_size)
        levels.append(LevelInfo(
            level=zoom,
            downsample=1 << zoom,
            cols=cols,
            rows=rows,
            width=level_w,
            height=level_h,
        ))
    return levels


def source_rect(address: TileAddress, width: int, height: int, tile_size: int) -> Rect:
    """Full-resolution rectangle sampled for a tile.

    Starts at ``(tile_x, tile_y) * tile_size * 2**zoom`` and is clipped to the
    source bounds, so edge tiles get a smaller rectangle.
    """
    span = tile_size << address.zoom_level
    x = address.tile_x * span
    y = address.tile_y * span
    return Rect(x, y, min(span, width - x), min(span, height - y))


def tile_extent(address: TileAddress, width: int, height: int, tile_size: int) -> tuple[int, int]:
    """Pixel size of an encoded tile; smaller than ``tile_size`` at the edges."""
    level_w, level_h = level_dimensions(width, height, address.zoom_level)
    return (
        min(tile_size, level_w - address.tile_x * tile_size),
        min(tile_size, level_h - address.tile_y * tile_size),
    )


def zoom_level_for_factor(zoom_factor: float) -> int:
    """Map a zoom factor to the nearest pyramid level.

    ``round(log2(1 / zoom_factor))``: factors between powers of two snap to the
    nearest level rather than the next finer or coarser one.
    """
    if zoom_factor <= 0:
        raise InvalidConfigurationError(f"zoom_factor must be positive, got {zoom_factor}")
    return max(0, round(math.log2(1.0 / zoom_factor)))


def tile_size_at_zoom(tile_size: int, zoom_factor: float) -> float:
    """Canvas-space size of one tile."""
    return tile_size * zoom_factor


def visible_tile_range(viewport: Viewport, tile_size: int) -> TileRange:
    """Tiles that may intersect a viewport.

    Per axis: ``start = floor(offset * f / T)`` and
    ``end = ceil((offset * f + size / f) / T)``. The end can overshoot the
    canvas; callers skip tiles whose placement misses the output.
    """
    validate_tile_size(tile_size)
    f = viewport.zoom_factor
    offset_x = viewport.offset_x * f
    offset_y = viewport.offset_y * f
    width_at_zoom = viewport.width / f
    height_at_zoom = viewport.height / f

    start_x = max(0, math.floor(offset_x / tile_size))
    start_y = max(0, math.floor(offset_y / tile_size))
    end_x = max(start_x, math.ceil((offset_x + width_at_zoom) / tile_size))
    end_y = max(start_y, math.ceil((offset_y + height_at_zoom) / tile_size))
    return TileRange(zoom_level_for_factor(f), start_x, end_x, start_y, end_y)


def placement_rect(address: TileAddress, viewport: Viewport, tile_size: int) -> Rect:
    """Output-pixel rectangle a full-size tile occupies in the viewport.

    The tile sits at ``(tile_x, tile_y) * tile_size_at_zoom`` in canvas space;
    the canvas is scaled by ``1 / f`` and translated by ``-offset * f``.
    The translation is rounded once per viewport, so neighbouring tiles
    always share an edge.
    """
    f = viewport.zoom_factor
    size = round(tile_size_at_zoom(tile_size, f) / f)
    origin_x = round(viewport.offset_x * f)
    origin_y = round(viewport.offset_y * f)
    return Rect(address.tile_x * size - origin_x, address.tile_y * size - origin_y, size, size)
