"""Viewport rendering: composite the tiles that cover a view into one buffer."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np

from deeptile.backends import RasterBackend, get_backend
from deeptile.config import DEFAULT_TILE_SIZE, JPEG_QUALITY, OUTPUT_BANDS, RENDER_WORKERS
from deeptile.core.cache import TileCache
from deeptile.core.errors import InvalidConfigurationError
from deeptile.core.grid import placement_rect, validate_tile_size, visible_tile_range
from deeptile.core.types import Rect, TileAddress, Viewport
from deeptile.storage import TileSource

logger = logging.getLogger(__name__)


class ViewportCompositor:
    """Renders viewports from a tile pyramid.

    The zoom factor selects the nearest pyramid level
    (``round(log2(1 / zoom_factor))``). Tiles of that level are drawn at their
    native resolution: level-local pixel ``p`` lands on output pixel
    ``p - offset * zoom_factor``. Only tiles whose placement intersects the
    output are fetched. Missing tiles leave transparent pixels.

    Args:
        tile_size: Tile size the pyramid was generated with
        backend: Raster backend used to decode tiles
        cache: Optional decoded-tile cache shared across renders
    """

    def __init__(
        self,
        tile_size: int = DEFAULT_TILE_SIZE,
        backend: RasterBackend | None = None,
        cache: TileCache | None = None,
    ) -> None:
        self.tile_size = validate_tile_size(tile_size)
        self.backend = backend or get_backend()
        self.cache = cache

    def render(
        self,
        source: TileSource,
        viewport: Viewport,
        parallel: bool = False,
        max_workers: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> np.ndarray:
        """Render ``viewport`` into a new (height, width, 4) RGBA buffer.

        Args:
            source: Tile store to read from
            viewport: Offset, zoom factor and output size
            parallel: Fetch and decode tiles concurrently
            max_workers: Worker threads for parallel rendering
                (default: ``config.RENDER_WORKERS``)
            cancel_event: Set to stop fetching further tiles

        Returns:
            Buffer of exactly ``viewport.height`` x ``viewport.width``

        Raises:
            InvalidConfigurationError: If the source was generated with a
                different tile size
            DecodeError: If a present tile cannot be decoded
        """
        self._check_tile_size(source)
        canvas = self.backend.new_canvas(viewport.width, viewport.height, OUTPUT_BANDS)

        visible = self._visible_tiles(viewport)
        logger.debug(
            "Rendering %dx%d at zoom %.4f (level %d): %d visible tiles",
            viewport.width, viewport.height, viewport.zoom_factor,
            visible[0][0].zoom_level if visible else -1, len(visible),
        )

        if parallel and len(visible) > 1:
            self._render_parallel(source, canvas, visible, max_workers, cancel_event)
        else:
            for address, placement in visible:
                if cancel_event is not None and cancel_event.is_set():
                    break
                self._draw_tile(source, canvas, address, placement, None)
        return canvas

    def _check_tile_size(self, source: TileSource) -> None:
        metadata = source.read_metadata()
        if not metadata:
            return
        stored = metadata.get("tile_size")
        if stored is not None and stored != self.tile_size:
            raise InvalidConfigurationError(
                f"Pyramid was generated with tile size {stored}, compositor uses {self.tile_size}"
            )

    def _visible_tiles(self, viewport: Viewport) -> list[tuple[TileAddress, Rect]]:
        """Addresses in the visible range whose placement intersects the canvas."""
        tile_range = visible_tile_range(viewport, self.tile_size)
        bounds = viewport.bounds
        visible = []
        for address in tile_range.addresses():
            placement = placement_rect(address, viewport, self.tile_size)
            if placement.intersects(bounds):
                visible.append((address, placement))
        return visible

    def _load_tile(self, source: TileSource, address: TileAddress) -> np.ndarray | None:
        data = source.read(address)
        if data is None:
            return None
        return self.backend.decode(data)

    def _fetch(self, source: TileSource, address: TileAddress) -> np.ndarray | None:
        if self.cache is not None:
            return self.cache.get_or_create(address, lambda a: self._load_tile(source, a))
        return self._load_tile(source, address)

    def _draw_tile(
        self,
        source: TileSource,
        canvas: np.ndarray,
        address: TileAddress,
        placement: Rect,
        canvas_lock: threading.Lock | None,
    ) -> bool:
        """Fetch one tile and composite it at its placement.

        Edge tiles are drawn at their decoded size, anchored at the placement's
        top-left corner.

        Returns:
            True if the tile existed and was drawn
        """
        tile = self._fetch(source, address)
        if tile is None:
            logger.debug("Tile %s missing, leaving gap", address.key)
            return False

        height, width = tile.shape[:2]
        width = min(width, placement.width)
        height = min(height, placement.height)
        src_rect = Rect(0, 0, width, height)
        dst_rect = Rect(placement.x, placement.y, width, height)
        if canvas_lock is None:
            self.backend.composite(canvas, tile, src_rect, dst_rect)
        else:
            with canvas_lock:
                self.backend.composite(canvas, tile, src_rect, dst_rect)
        if self.cache is None:
            # Uncached buffers belong to this render
            del tile
        return True

    def _render_parallel(
        self,
        source: TileSource,
        canvas: np.ndarray,
        visible: list[tuple[TileAddress, Rect]],
        max_workers: int | None,
        cancel_event: threading.Event | None,
    ) -> None:
        canvas_lock = threading.Lock()

        def task(address: TileAddress, placement: Rect) -> bool:
            if cancel_event is not None and cancel_event.is_set():
                return False
            return self._draw_tile(source, canvas, address, placement, canvas_lock)

        workers = min(max_workers or RENDER_WORKERS, len(visible))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="deeptile-render") as executor:
            futures = [executor.submit(task, address, placement) for address, placement in visible]
        for future in futures:
            # Re-raise the first tile error, if any
            future.result()

    def render_to_file(
        self,
        source: TileSource,
        viewport: Viewport,
        output_path: Path,
        quality: int = JPEG_QUALITY,
        parallel: bool = False,
    ) -> Path:
        """Render ``viewport`` and save it; the format follows the file suffix."""
        output_path = Path(output_path)
        fmt = "png" if output_path.suffix.lower() == ".png" else "jpeg"
        pixels = self.render(source, viewport, parallel=parallel)
        data = self.backend.encode(pixels, fmt, quality)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(data)
        logger.info("Saved %dx%d viewport to %s", viewport.width, viewport.height, output_path)
        return output_path


def render_viewport(
    source: TileSource,
    offset_x: float,
    offset_y: float,
    zoom_factor: float,
    width: int,
    height: int,
    tile_size: int = DEFAULT_TILE_SIZE,
    cache: TileCache | None = None,
    parallel: bool = False,
    backend: RasterBackend | None = None,
) -> np.ndarray:
    """Render one viewport from ``source``.

    Args:
        source: Tile store to read from
        offset_x: Horizontal offset in full-resolution pixels
        offset_y: Vertical offset in full-resolution pixels
        zoom_factor: 1.0 = full resolution, 0.5 = level 1, ...
        width: Output width in pixels
        height: Output height in pixels
        tile_size: Tile size the pyramid was generated with
        cache: Optional decoded-tile cache
        parallel: Fetch tiles concurrently

    Returns:
        (height, width, 4) RGBA buffer
    """
    viewport = Viewport(offset_x, offset_y, zoom_factor, width, height)
    compositor = ViewportCompositor(tile_size=tile_size, backend=backend, cache=cache)
    return compositor.render(source, viewport, parallel=parallel)
