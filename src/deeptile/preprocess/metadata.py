"""Metadata types and validation for pyramid directories."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from deeptile.config import METADATA_FILENAME, TILE_FORMATS
from deeptile.core.types import LevelInfo

logger = logging.getLogger(__name__)


class PyramidStatus(Enum):
    """Status of an existing pyramid directory."""

    NOT_EXISTS = "not_exists"  # No pyramid directory
    COMPLETE = "complete"  # Valid and complete
    INCOMPLETE = "incomplete"  # Missing metadata or tiles
    CORRUPTED = "corrupted"  # Invalid metadata or structure


@dataclass
class PyramidMetadata:
    """Description of a generated tile pyramid."""

    version: str
    source_file: str
    tile_size: int
    dimensions: tuple[int, int]
    levels: list[LevelInfo]
    tile_format: str
    quality: int
    generated_at: str

    @property
    def max_zoom_level(self) -> int:
        return self.levels[-1].level if self.levels else 0

    @property
    def tile_count(self) -> int:
        return sum(l.tile_count for l in self.levels)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "source_file": self.source_file,
            "tile_size": self.tile_size,
            "dimensions": list(self.dimensions),
            "levels": [
                {
                    "level": l.level,
                    "downsample": l.downsample,
                    "cols": l.cols,
                    "rows": l.rows,
                    "width": l.width,
                    "height": l.height,
                }
                for l in self.levels
            ],
            "tile_format": self.tile_format,
            "quality": self.quality,
            "generated_at": self.generated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PyramidMetadata:
        return cls(
            version=data["version"],
            source_file=data.get("source_file", ""),
            tile_size=data["tile_size"],
            dimensions=tuple(data["dimensions"]),
            levels=[
                LevelInfo(
                    level=l["level"],
                    downsample=l["downsample"],
                    cols=l["cols"],
                    rows=l["rows"],
                    width=l.get("width", 0),
                    height=l.get("height", 0),
                )
                for l in data["levels"]
            ],
            tile_format=data.get("tile_format", "jpeg"),
            quality=data.get("quality", 0),
            generated_at=data.get("generated_at", ""),
        )


def check_pyramid_status(pyramid_dir: Path) -> PyramidStatus:
    """Check the status of an existing pyramid directory.

    A pyramid is complete when its metadata parses and every tile the
    metadata lists exists on disk.

    Args:
        pyramid_dir: Path to the pyramid directory

    Returns:
        PyramidStatus indicating the state
    """
    pyramid_dir = Path(pyramid_dir)
    if not pyramid_dir.exists():
        return PyramidStatus.NOT_EXISTS

    metadata_path = pyramid_dir / METADATA_FILENAME
    if not metadata_path.exists():
        return PyramidStatus.INCOMPLETE

    try:
        with open(metadata_path) as f:
            metadata = PyramidMetadata.from_dict(json.load(f))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        logger.debug("Unreadable metadata %s: %s", metadata_path, e)
        return PyramidStatus.CORRUPTED

    extension = TILE_FORMATS.get(metadata.tile_format)
    if extension is None or not metadata.levels:
        return PyramidStatus.CORRUPTED

    for info in metadata.levels:
        level_dir = pyramid_dir / f"z{info.level}"
        if not level_dir.is_dir():
            return PyramidStatus.INCOMPLETE
        for address in info.addresses():
            if not (level_dir / address.filename(extension)).exists():
                return PyramidStatus.INCOMPLETE

    return PyramidStatus.COMPLETE


def read_pyramid_metadata(pyramid_dir: Path) -> PyramidMetadata | None:
    """Load ``metadata.json`` from a pyramid directory, or None if unreadable."""
    metadata_path = Path(pyramid_dir) / METADATA_FILENAME
    try:
        with open(metadata_path) as f:
            return PyramidMetadata.from_dict(json.load(f))
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        logger.error("Invalid metadata file %s: %s", metadata_path, e)
        return None
