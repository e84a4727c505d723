"""Pyramid generation: slice a source image into a multi-resolution tile set."""

from __future__ import annotations

import logging
import re
import shutil
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Union

import numpy as np

from deeptile.backends import RasterBackend, get_backend, normalize_bands
from deeptile.config import (
    DEFAULT_MAX_PARALLELISM,
    DEFAULT_TILE_SIZE,
    JPEG_QUALITY,
    METADATA_FILENAME,
    METADATA_VERSION,
    TILE_FORMAT,
    TILE_FORMATS,
)
from deeptile.core.errors import (
    BuildCancelled,
    DecodeError,
    InvalidConfigurationError,
    PyramidBuildError,
    SinkWriteError,
)
from deeptile.core.gate import AdmissionGate
from deeptile.core.grid import calculate_levels, source_rect, tile_extent, validate_tile_size
from deeptile.core.types import LevelInfo, TileAddress
from deeptile.storage import FileSystemTileStore, TileSink

from .metadata import PyramidMetadata, PyramidStatus, check_pyramid_status

logger = logging.getLogger(__name__)

#: Encoded bytes, a path to an image file, or an already decoded buffer
SourceImage = Union[bytes, str, Path, np.ndarray]

#: progress_callback(stage, current, total)
ProgressCallback = Callable[[str, int, int], None]


@dataclass
class BuildResult:
    """Outcome of a successful pyramid build."""

    tile_count: int
    levels: list[LevelInfo]
    metadata: PyramidMetadata

    @property
    def max_zoom_level(self) -> int:
        return self.levels[-1].level


class PyramidBuilder:
    """Builds a tile pyramid from one source image.

    Level 0 is full resolution; level ``n`` is the source downsampled by
    ``2**n``. The last level is the first whose longest side fits in a tile.
    Every tile is cut from the full-resolution source and resampled straight
    to its level, so no level depends on another.

    Args:
        tile_size: Tile edge length in pixels
        backend: Raster backend (default: ``get_backend()``)
        tile_format: "jpeg" or "png"
        quality: Encode quality (1-100, used for JPEG)
    """

    def __init__(
        self,
        tile_size: int = DEFAULT_TILE_SIZE,
        backend: RasterBackend | None = None,
        tile_format: str = TILE_FORMAT,
        quality: int = JPEG_QUALITY,
    ) -> None:
        self.tile_size = validate_tile_size(tile_size)
        tile_format = tile_format.lower()
        if tile_format not in TILE_FORMATS:
            raise InvalidConfigurationError(
                f"Unsupported tile format {tile_format!r}, expected one of {sorted(TILE_FORMATS)}"
            )
        if not 1 <= quality <= 100:
            raise InvalidConfigurationError(f"quality must be in 1..100, got {quality}")
        self.tile_format = tile_format
        self.quality = quality
        self.backend = backend or get_backend()

    def build(
        self,
        source: SourceImage,
        sink: TileSink,
        max_parallelism: int | None = None,
        progress_callback: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
        executor: Executor | None = None,
        source_name: str = "",
    ) -> BuildResult:
        """Generate every tile of the pyramid and hand it to ``sink``.

        Args:
            source: Encoded bytes, image path, or decoded (H, W, bands) buffer
            sink: Destination for the encoded tiles
            max_parallelism: ``1`` runs sequentially in this thread (ascending
                zoom, then tile_x, then tile_y); ``> 1`` bounds the number of
                tiles in flight; ``<= 0`` admits all; None uses
                ``config.DEFAULT_MAX_PARALLELISM``
            progress_callback: Optional callback(stage, current, total); raising
                InterruptedError from it cancels the build
            cancel_event: Set to stop scheduling new tiles
            executor: Executor for parallel builds (default: a private
                ThreadPoolExecutor)
            source_name: Name recorded in the metadata

        Returns:
            BuildResult with the number of tiles written

        Raises:
            DecodeError: If the source cannot be decoded (nothing is written)
            PyramidBuildError: If any tile failed; the sink holds a partial pyramid
            BuildCancelled: If the build was cancelled
        """
        if max_parallelism is None:
            max_parallelism = DEFAULT_MAX_PARALLELISM
        if isinstance(source, (str, Path)) and not source_name:
            source_name = Path(source).name

        pixels = self._load_source(source)
        height, width = pixels.shape[:2]
        levels = calculate_levels(width, height, self.tile_size)
        total = sum(info.tile_count for info in levels)
        logger.info(
            "Building %d levels (%d tiles) from %d x %d source, tile size %d, parallelism %d",
            len(levels), total, width, height, self.tile_size, max_parallelism,
        )

        if progress_callback:
            progress_callback("tiles", 0, total)

        if max_parallelism == 1:
            written = self._build_sequential(
                pixels, levels, sink, total, progress_callback, cancel_event
            )
        else:
            written = self._build_parallel(
                pixels, levels, sink, total, max_parallelism,
                progress_callback, cancel_event, executor,
            )

        metadata = PyramidMetadata(
            version=METADATA_VERSION,
            source_file=source_name,
            tile_size=self.tile_size,
            dimensions=(width, height),
            levels=levels,
            tile_format=self.tile_format,
            quality=self.quality,
            generated_at=datetime.now(timezone.utc).isoformat(),
        )
        sink.write_metadata(metadata.to_dict())

        logger.info("Generated %d tiles in %d levels", written, len(levels))
        return BuildResult(tile_count=written, levels=levels, metadata=metadata)

    def _load_source(self, source: SourceImage) -> np.ndarray:
        """Decode the source once, before any tile is produced."""
        if isinstance(source, np.ndarray):
            if source.ndim not in (2, 3) or source.size == 0:
                raise DecodeError(f"Source buffer has unusable shape {source.shape}")
            return normalize_bands(source)

        if isinstance(source, (str, Path)):
            try:
                data = Path(source).read_bytes()
            except OSError as e:
                raise DecodeError(f"Cannot read source image {source}: {e}") from e
        else:
            data = bytes(source)

        return self.backend.decode(data)

    def _produce_tile(
        self,
        pixels: np.ndarray,
        address: TileAddress,
        sink: TileSink,
        gate: AdmissionGate,
        stop: threading.Event,
    ) -> bool:
        """Cut, resample, encode and write one tile while holding a gate permit.

        Returns:
            True if the tile was written, False if skipped because of a stop
        """
        if stop.is_set():
            return False
        with gate.permit(stop) as admitted:
            if not admitted:
                return False
            height, width = pixels.shape[:2]
            rect = source_rect(address, width, height, self.tile_size)
            tile_w, tile_h = tile_extent(address, width, height, self.tile_size)

            region = pixels[rect.y:rect.bottom, rect.x:rect.right]
            tile = self.backend.resize(region, tile_w, tile_h)
            data = self.backend.encode(tile, self.tile_format, self.quality)
            try:
                sink.write(address, data)
            except SinkWriteError:
                raise
            except OSError as e:
                raise SinkWriteError(f"Cannot write tile {address.key}: {e}", address) from e
            return True

    def _build_sequential(
        self,
        pixels: np.ndarray,
        levels: list[LevelInfo],
        sink: TileSink,
        total: int,
        progress_callback: ProgressCallback | None,
        cancel_event: threading.Event | None,
    ) -> int:
        stop = cancel_event or threading.Event()
        gate = AdmissionGate(1)
        written = 0
        for info in levels:
            sink.create_container(info.level)
            for address in info.addresses():
                if stop.is_set():
                    raise BuildCancelled(written)
                try:
                    produced = self._produce_tile(pixels, address, sink, gate, stop)
                except Exception as e:
                    logger.error("Tile %s failed: %s", address.key, e)
                    raise PyramidBuildError(written, [(address, e)]) from e
                if not produced:
                    raise BuildCancelled(written)
                written += 1
                if progress_callback:
                    try:
                        progress_callback("tiles", written, total)
                    except InterruptedError:
                        raise BuildCancelled(written) from None
        return written

    def _build_parallel(
        self,
        pixels: np.ndarray,
        levels: list[LevelInfo],
        sink: TileSink,
        total: int,
        max_parallelism: int,
        progress_callback: ProgressCallback | None,
        cancel_event: threading.Event | None,
        executor: Executor | None,
    ) -> int:
        gate = AdmissionGate(max_parallelism)
        # Set on cancellation or on the first failure; tiles not yet started are skipped
        stop = threading.Event()
        owns_executor = executor is None
        if executor is None:
            workers = max_parallelism if max_parallelism > 1 else None
            executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="deeptile-tile")

        futures: dict[Future, TileAddress] = {}
        failures: list[tuple[TileAddress, BaseException]] = []
        written = 0
        try:
            for info in levels:
                if cancel_event is not None and cancel_event.is_set():
                    self._stop_pending(stop, futures)
                    break
                sink.create_container(info.level)
                for address in info.addresses():
                    future = executor.submit(
                        self._produce_tile, pixels, address, sink, gate, stop
                    )
                    futures[future] = address

            for future in as_completed(futures):
                if cancel_event is not None and cancel_event.is_set() and not stop.is_set():
                    self._stop_pending(stop, futures)
                if future.cancelled():
                    continue
                address = futures[future]
                try:
                    produced = future.result()
                except Exception as e:
                    logger.error("Tile %s failed: %s", address.key, e)
                    failures.append((address, e))
                    self._stop_pending(stop, futures)
                    continue
                if not produced:
                    continue
                written += 1
                if progress_callback:
                    try:
                        progress_callback("tiles", written, total)
                    except InterruptedError:
                        self._stop_pending(stop, futures)
        except BaseException:
            self._stop_pending(stop, futures)
            raise
        finally:
            if owns_executor:
                executor.shutdown(wait=True)

        if failures:
            raise PyramidBuildError(written, failures) from failures[0][1]
        if written < total:
            raise BuildCancelled(written)
        return written

    @staticmethod
    def _stop_pending(stop: threading.Event, futures: dict[Future, TileAddress]) -> None:
        stop.set()
        for pending in futures:
            pending.cancel()


def _is_pyramid_dir(pyramid_dir: Path) -> bool:
    """True if the directory holds metadata or only what a build leaves behind.

    A failed or cancelled build writes level directories (``z0``, ``z1``, ...)
    and possibly ``*.tmp`` files, but no metadata.
    """
    if (pyramid_dir / METADATA_FILENAME).exists():
        return True
    for entry in pyramid_dir.iterdir():
        if entry.is_dir() and re.fullmatch(r"z\d+", entry.name):
            continue
        if entry.is_file() and entry.suffix == ".tmp":
            continue
        return False
    return True


def _prepare_output(pyramid_dir: Path, source_name: str, force: bool) -> bool:
    """Check an existing pyramid and clean it up if it will be rebuilt.

    Returns:
        True if the build should be skipped (already complete and not forced)
    """
    status = check_pyramid_status(pyramid_dir)

    if status == PyramidStatus.COMPLETE and not force:
        logger.info("Skipping %s: already tiled (use force to rebuild)", source_name)
        return True

    if status == PyramidStatus.NOT_EXISTS:
        return False

    if not _is_pyramid_dir(pyramid_dir):
        raise InvalidConfigurationError(
            f"{pyramid_dir} exists and is not a pyramid directory; refusing to overwrite"
        )

    if status == PyramidStatus.INCOMPLETE:
        logger.info("Found incomplete pyramid for %s, cleaning up...", source_name)
    elif status == PyramidStatus.CORRUPTED:
        logger.warning("Found corrupted pyramid for %s, cleaning up...", source_name)
    elif force:
        logger.info("Force rebuild for %s, removing existing...", source_name)
    shutil.rmtree(pyramid_dir)
    return False


def build_pyramid(
    source_path: Path,
    pyramid_dir: Path,
    tile_size: int = DEFAULT_TILE_SIZE,
    tile_format: str = TILE_FORMAT,
    quality: int = JPEG_QUALITY,
    max_parallelism: int | None = None,
    progress_callback: ProgressCallback | None = None,
    force: bool = False,
    backend: RasterBackend | None = None,
) -> Path | None:
    """Build a tile pyramid for an image file into a directory.

    Args:
        source_path: Path to the source image
        pyramid_dir: Directory receiving ``z{level}/y{y}_x{x}.{ext}`` tiles
        tile_size: Tile size in pixels
        tile_format: "jpeg" or "png"
        quality: Encode quality
        max_parallelism: See PyramidBuilder.build
        progress_callback: Progress callback function
        force: Force rebuild even if already complete

    Returns:
        Path to the pyramid directory, or None if skipped
    """
    source_path = Path(source_path)
    pyramid_dir = Path(pyramid_dir)

    builder = PyramidBuilder(
        tile_size=tile_size, backend=backend, tile_format=tile_format, quality=quality
    )
    if _prepare_output(pyramid_dir, source_path.name, force):
        return None
    pyramid_dir.mkdir(parents=True, exist_ok=True)

    store = FileSystemTileStore.for_format(pyramid_dir, tile_format)
    builder.build(
        source_path,
        store,
        max_parallelism=max_parallelism,
        progress_callback=progress_callback,
    )
    return pyramid_dir
