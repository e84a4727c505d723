"""Exception hierarchy for pyramid generation and viewport rendering.

A tile that does not exist is not an error: readers return ``None`` and the
compositor leaves a transparent gap.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import TileAddress


class DeepTileError(Exception):
    """Base class for all deeptile errors."""


class InvalidConfigurationError(DeepTileError, ValueError):
    """Raised for a bad tile size, zoom factor, viewport, or format before any work starts."""


class DecodeError(DeepTileError):
    """Raised when source or tile bytes cannot be decoded."""


class SinkWriteError(DeepTileError):
    """Raised when a tile could not be persisted."""

    def __init__(self, message: str, address: TileAddress | None = None) -> None:
        super().__init__(message)
        self.address = address


class BuildCancelled(DeepTileError):
    """Raised when pyramid generation was cancelled before it finished."""

    def __init__(self, tiles_written: int) -> None:
        super().__init__(f"Pyramid build cancelled after {tiles_written} tiles")
        self.tiles_written = tiles_written


class PyramidBuildError(DeepTileError):
    """Raised when one or more tiles failed; the pyramid on the sink is partial.

    Attributes:
        tiles_written: Number of tiles handed to the sink successfully
        failures: ``(address, exception)`` for each failed tile
    """

    def __init__(
        self,
        tiles_written: int,
        failures: list[tuple[TileAddress, BaseException]],
    ) -> None:
        first_address, first_error = failures[0]
        super().__init__(
            f"{len(failures)} tile(s) failed, {tiles_written} written; "
            f"first failure at {first_address.key}: {first_error}"
        )
        self.tiles_written = tiles_written
        self.failures = failures
