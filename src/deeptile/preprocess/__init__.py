"""Pyramid generation: turn one large image into a tile set."""

from .metadata import (
    PyramidMetadata,
    PyramidStatus,
    check_pyramid_status,
    read_pyramid_metadata,
)
from .pyramid import (
    BuildResult,
    PyramidBuilder,
    build_pyramid,
)

__all__ = [
    "BuildResult",
    "PyramidBuilder",
    "PyramidMetadata",
    "PyramidStatus",
    "build_pyramid",
    "check_pyramid_status",
    "read_pyramid_metadata",
]
