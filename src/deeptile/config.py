"""Centralized configuration for deeptile.

All tunable parameters are defined here with sensible defaults.
Values can be overridden via environment variables.

Environment Variables:
    DEEPTILE_TILE_SIZE: Edge length of a square tile in pixels (default: 256)
    DEEPTILE_JPEG_QUALITY: Encode quality for tiles (default: 90)
    DEEPTILE_TILE_FORMAT: Tile encoding, "jpeg" or "png" (default: jpeg)
    DEEPTILE_MAX_PARALLELISM: Concurrent tile productions (default: CPU count)
    DEEPTILE_TILE_CACHE_SIZE: Decoded tiles kept by the tile cache, 0 = unbounded (default: 1024)
    DEEPTILE_RENDER_WORKERS: Threads used for parallel viewport fetches (default: 8)
    DEEPTILE_BACKEND: Raster backend, "pillow" or "vips" (default: pillow)
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


def _get_env_int(name: str, default: int) -> int:
    """Get an integer from environment variable with fallback."""
    value = os.environ.get(name)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            logger.warning(
                "Invalid integer for %s: %r, using default %d", name, value, default
            )
    return default


def _get_env_str(name: str, default: str) -> str:
    """Get a string from environment variable with fallback."""
    return os.environ.get(name, default)


# =============================================================================
# Tile Generation Defaults
# =============================================================================

#: Tile size in pixels, shared by generation and rendering
DEFAULT_TILE_SIZE: int = _get_env_int("DEEPTILE_TILE_SIZE", 256)

#: Encode quality for generated tiles and rendered viewports
JPEG_QUALITY: int = _get_env_int("DEEPTILE_JPEG_QUALITY", 90)

#: Tile encoding format
TILE_FORMAT: str = _get_env_str("DEEPTILE_TILE_FORMAT", "jpeg").lower()

#: Supported tile formats and their file extensions
TILE_FORMATS: dict[str, str] = {"jpeg": "jpg", "png": "png"}

#: Default number of tiles produced concurrently
DEFAULT_MAX_PARALLELISM: int = _get_env_int(
    "DEEPTILE_MAX_PARALLELISM", os.cpu_count() or 4
)

#: Raster backend name
BACKEND: str = _get_env_str("DEEPTILE_BACKEND", "pillow").lower()

#: Name of the pyramid metadata document in a tile store
METADATA_FILENAME: str = "metadata.json"

#: Metadata schema version
METADATA_VERSION: str = "1.0"


# =============================================================================
# Rendering Configuration
# =============================================================================

#: Decoded tiles kept by the default tile cache (0 = unbounded)
TILE_CACHE_SIZE: int = _get_env_int("DEEPTILE_TILE_CACHE_SIZE", 1024)

#: Worker threads for parallel viewport rendering
RENDER_WORKERS: int = _get_env_int("DEEPTILE_RENDER_WORKERS", 8)

#: Bands of a rendered viewport (RGBA, transparent where tiles are missing)
OUTPUT_BANDS: int = 4


# =============================================================================
# Validation
# =============================================================================


def _validate_config() -> None:
    """Validate configuration values and log warnings for out-of-range settings."""
    global DEFAULT_TILE_SIZE, JPEG_QUALITY, TILE_FORMAT, TILE_CACHE_SIZE, RENDER_WORKERS

    if DEFAULT_TILE_SIZE < 1:
        logger.warning("DEFAULT_TILE_SIZE=%d is invalid, using 256", DEFAULT_TILE_SIZE)
        DEFAULT_TILE_SIZE = 256

    if not 1 <= JPEG_QUALITY <= 100:
        clamped = min(max(JPEG_QUALITY, 1), 100)
        logger.warning("JPEG_QUALITY=%d is out of range, clamping to %d", JPEG_QUALITY, clamped)
        JPEG_QUALITY = clamped

    if TILE_FORMAT not in TILE_FORMATS:
        logger.warning("TILE_FORMAT=%r is not supported, using 'jpeg'", TILE_FORMAT)
        TILE_FORMAT = "jpeg"

    if TILE_CACHE_SIZE < 0:
        logger.warning("TILE_CACHE_SIZE=%d is negative, clamping to 0", TILE_CACHE_SIZE)
        TILE_CACHE_SIZE = 0

    if RENDER_WORKERS < 1:
        logger.warning("RENDER_WORKERS=%d is too low, clamping to 1", RENDER_WORKERS)
        RENDER_WORKERS = 1


_validate_config()
