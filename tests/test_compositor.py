"""Tests for viewport rendering."""

from __future__ import annotations

import shutil
import threading
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from deeptile.core.cache import TileCache
from deeptile.core.errors import DecodeError, InvalidConfigurationError
from deeptile.core.types import TileAddress, Viewport
from deeptile.preprocess import PyramidBuilder
from deeptile.render import ViewportCompositor, render_viewport
from deeptile.storage import FileSystemTileStore, MemoryTileStore


@pytest.fixture
def png_pyramid(backend, gradient_array) -> MemoryTileStore:
    """300 x 200 gradient tiled losslessly with 64px tiles."""
    store = MemoryTileStore()
    PyramidBuilder(tile_size=64, backend=backend, tile_format="png").build(
        gradient_array, store, max_parallelism=1
    )
    return store


@pytest.fixture
def compositor(backend) -> ViewportCompositor:
    return ViewportCompositor(tile_size=64, backend=backend)


class TestRoundTrip:
    def test_full_image(self, compositor, png_pyramid, gradient_array):
        canvas = compositor.render(png_pyramid, Viewport(0, 0, 1.0, 300, 200))

        assert canvas.shape == (200, 300, 4)
        np.testing.assert_array_equal(canvas[:, :, :3], gradient_array)
        assert (canvas[:, :, 3] == 255).all()

    def test_offset_window(self, compositor, png_pyramid, gradient_array):
        canvas = compositor.render(png_pyramid, Viewport(37, 21, 1.0, 100, 80))
        np.testing.assert_array_equal(canvas[:, :, :3], gradient_array[21:101, 37:137])

    def test_window_past_image_edge(self, compositor, png_pyramid, gradient_array):
        canvas = compositor.render(png_pyramid, Viewport(250, 150, 1.0, 100, 100))

        np.testing.assert_array_equal(canvas[:50, :50, :3], gradient_array[150:200, 250:300])
        assert (canvas[:50, :50, 3] == 255).all()
        assert canvas[50:].sum() == 0
        assert canvas[:, 50:].sum() == 0

    def test_jpeg_pyramid_within_tolerance(self, backend, gradient_array):
        store = MemoryTileStore()
        PyramidBuilder(tile_size=64, backend=backend, tile_format="jpeg", quality=95).build(
            gradient_array, store, max_parallelism=2
        )
        canvas = ViewportCompositor(tile_size=64, backend=backend).render(
            store, Viewport(0, 0, 1.0, 300, 200)
        )
        diff = np.abs(canvas[:, :, :3].astype(int) - gradient_array.astype(int))
        assert diff.mean() < 4

    def test_coarser_level(self, compositor, png_pyramid):
        """At zoom 0.5 the 150 x 100 level 1 fills the top-left of the output."""
        canvas = compositor.render(png_pyramid, Viewport(0, 0, 0.5, 200, 150))

        assert canvas.shape == (150, 200, 4)
        assert (canvas[:100, :150, 3] == 255).all()
        assert canvas[100:].sum() == 0
        assert canvas[:, 150:].sum() == 0

    def test_odd_tile_size_with_half_pixel_offset(self, backend, gradient_array):
        """Every column inside the image is covered exactly once."""
        store = MemoryTileStore()
        PyramidBuilder(tile_size=63, backend=backend, tile_format="png").build(
            gradient_array, store, max_parallelism=1
        )
        canvas = ViewportCompositor(tile_size=63, backend=backend).render(
            store, Viewport(0.5, 0, 1.0, 250, 50)
        )

        assert (canvas[:, :, 3] == 255).all()
        # round(0.5) == 0, so the window starts at the image origin
        np.testing.assert_array_equal(canvas[:, :, :3], gradient_array[:50, :250])

    def test_fractional_zoom_snaps_to_nearest_level(self, compositor, png_pyramid, gradient_array):
        """0.75 draws level 0 tiles unscaled, shifted by offset * zoom."""
        canvas = compositor.render(png_pyramid, Viewport(40, 0, 0.75, 50, 10))
        np.testing.assert_array_equal(canvas[:, :, :3], gradient_array[:10, 30:80])


class TestMissingAndBlank:
    def test_empty_store_renders_transparent(self, backend):
        canvas = ViewportCompositor(tile_size=256, backend=backend).render(
            MemoryTileStore(), Viewport(0, 0, 1.0, 800, 600)
        )
        assert canvas.shape == (600, 800, 4)
        assert canvas.sum() == 0

    def test_missing_level_renders_blank(self, backend, gradient_array, temp_dir: Path):
        store = FileSystemTileStore(temp_dir, "png")
        PyramidBuilder(tile_size=64, backend=backend, tile_format="png").build(
            gradient_array, store, max_parallelism=1
        )
        shutil.rmtree(temp_dir / "z1")

        canvas = ViewportCompositor(tile_size=64, backend=backend).render(
            store, Viewport(0, 0, 0.5, 800, 600)
        )

        assert canvas.shape == (600, 800, 4)
        assert canvas.sum() == 0

    def test_missing_tile_leaves_gap(self, compositor, png_pyramid):
        holey = MemoryTileStore()
        holey.create_container(0)
        missing = TileAddress(0, 1, 1)
        for address in png_pyramid.addresses():
            if address.zoom_level == 0 and address != missing:
                holey.write(address, png_pyramid.read(address))

        canvas = compositor.render(holey, Viewport(0, 0, 1.0, 300, 200))

        assert canvas[64:128, 64:128].sum() == 0
        assert (canvas[:64, :, 3] == 255).all()
        assert (canvas[128:, :, 3] == 255).all()

    def test_cancelled_render_is_blank(self, compositor, png_pyramid):
        cancel = threading.Event()
        cancel.set()
        canvas = compositor.render(png_pyramid, Viewport(0, 0, 1.0, 300, 200), cancel_event=cancel)
        assert canvas.sum() == 0


class TestErrors:
    def test_tile_size_mismatch(self, backend, png_pyramid):
        with pytest.raises(InvalidConfigurationError):
            ViewportCompositor(tile_size=128, backend=backend).render(
                png_pyramid, Viewport(0, 0, 1.0, 10, 10)
            )

    @pytest.mark.parametrize("parallel", [False, True], ids=["sequential", "parallel"])
    def test_corrupt_tile_raises(self, compositor, parallel):
        store = MemoryTileStore()
        store.create_container(0)
        store.write(TileAddress(0, 0, 0), b"garbage")

        with pytest.raises(DecodeError):
            compositor.render(store, Viewport(0, 0, 1.0, 100, 10), parallel=parallel)


class TestParallelAndCache:
    def test_parallel_matches_sequential(self, compositor, png_pyramid):
        viewport = Viewport(13, 7, 1.0, 250, 170)
        sequential = compositor.render(png_pyramid, viewport)
        parallel = compositor.render(png_pyramid, viewport, parallel=True, max_workers=4)
        np.testing.assert_array_equal(parallel, sequential)

    def test_cache_serves_repeat_renders(self, backend, png_pyramid, gradient_array):
        cache = TileCache()
        compositor = ViewportCompositor(tile_size=64, backend=backend, cache=cache)
        viewport = Viewport(0, 0, 1.0, 300, 200)

        first = compositor.render(png_pyramid, viewport, parallel=True)
        assert cache.stats()["loads"] == 20

        second = compositor.render(png_pyramid, viewport)
        stats = cache.stats()
        assert stats["loads"] == 20
        assert stats["hits"] >= 20
        np.testing.assert_array_equal(first, second)
        np.testing.assert_array_equal(second[:, :, :3], gradient_array)

    def test_render_does_not_mutate_cached_tiles(self, backend, png_pyramid):
        cache = TileCache()
        compositor = ViewportCompositor(tile_size=64, backend=backend, cache=cache)
        canvas = compositor.render(png_pyramid, Viewport(0, 0, 1.0, 64, 64))
        canvas[:] = 0

        tile = cache.get_or_create(TileAddress(0, 0, 0), lambda a: None)
        assert tile is not None
        assert tile.sum() > 0


class TestRenderOutput:
    def test_render_to_png(self, compositor, png_pyramid, temp_dir: Path):
        out = compositor.render_to_file(png_pyramid, Viewport(0, 0, 1.0, 120, 90), temp_dir / "view.png")
        with Image.open(out) as img:
            assert img.size == (120, 90)
            assert img.mode == "RGBA"

    def test_render_to_jpeg(self, compositor, png_pyramid, temp_dir: Path):
        out = compositor.render_to_file(
            png_pyramid, Viewport(0, 0, 1.0, 120, 90), temp_dir / "nested" / "view.jpg"
        )
        with Image.open(out) as img:
            assert img.format == "JPEG"
            assert img.size == (120, 90)

    def test_render_viewport_function(self, backend, png_pyramid, gradient_array):
        canvas = render_viewport(png_pyramid, 0, 0, 1.0, 64, 64, tile_size=64, backend=backend)
        np.testing.assert_array_equal(canvas[:, :, :3], gradient_array[:64, :64])
