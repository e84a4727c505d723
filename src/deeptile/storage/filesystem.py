"""Directory-backed tile store.

Layout::

    root/
        metadata.json
        z0/y0_x0.jpg
        z0/y0_x1.jpg
        ...
        z4/y0_x0.jpg

Level ``z0`` is full resolution. Tile names are ``y{tile_y}_x{tile_x}``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from deeptile.config import METADATA_FILENAME, TILE_FORMATS
from deeptile.core.errors import InvalidConfigurationError, SinkWriteError
from deeptile.core.types import TileAddress

from .base import TileStore

logger = logging.getLogger(__name__)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Atomically write bytes to a file.

    Writes to a temp file in the same directory, then replaces the target.
    ``os.replace()`` is atomic on both POSIX and Windows (same filesystem).
    """
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix=path.stem)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class FileSystemTileStore(TileStore):
    """Stores tiles as ``root/z{level}/y{y}_x{x}.{extension}`` files.

    Args:
        root: Pyramid directory
        extension: Tile file extension without the dot ("jpg" or "png")
    """

    def __init__(self, root: str | Path, extension: str = "jpg") -> None:
        extension = extension.lower().lstrip(".")
        if extension not in TILE_FORMATS.values():
            raise InvalidConfigurationError(
                f"Unsupported tile extension {extension!r}, "
                f"expected one of {sorted(TILE_FORMATS.values())}"
            )
        self.root = Path(root)
        self.extension = extension

    @classmethod
    def for_format(cls, root: str | Path, fmt: str) -> FileSystemTileStore:
        try:
            return cls(root, TILE_FORMATS[fmt.lower()])
        except KeyError:
            raise InvalidConfigurationError(f"Unsupported tile format {fmt!r}") from None

    @classmethod
    def open(cls, root: str | Path) -> FileSystemTileStore:
        """Open an existing pyramid, taking the extension from its metadata."""
        store = cls(root)
        metadata = store.read_metadata()
        if metadata and metadata.get("tile_format") in TILE_FORMATS:
            store.extension = TILE_FORMATS[metadata["tile_format"]]
        return store

    def level_dir(self, zoom_level: int) -> Path:
        return self.root / f"z{zoom_level}"

    def tile_path(self, address: TileAddress) -> Path:
        address.validate()
        return self.root / address.folder_name / address.filename(self.extension)

    def create_container(self, zoom_level: int) -> None:
        try:
            self.level_dir(zoom_level).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkWriteError(f"Cannot create level directory z{zoom_level}: {e}") from e

    def write(self, address: TileAddress, data: bytes) -> None:
        path = self.tile_path(address)
        try:
            atomic_write_bytes(path, data)
        except OSError as e:
            raise SinkWriteError(f"Cannot write tile {path}: {e}", address) from e

    def read(self, address: TileAddress) -> bytes | None:
        path = self.tile_path(address)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def write_metadata(self, metadata: dict) -> None:
        path = self.root / METADATA_FILENAME
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            atomic_write_bytes(path, json.dumps(metadata, indent=2).encode("utf-8"))
        except OSError as e:
            raise SinkWriteError(f"Cannot write metadata {path}: {e}") from e

    def read_metadata(self) -> dict | None:
        path = self.root / METADATA_FILENAME
        try:
            with open(path) as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in metadata file %s: %s", path, e)
            return None

    def __repr__(self) -> str:
        return f"FileSystemTileStore({str(self.root)!r}, extension={self.extension!r})"
