"""Test fixtures for deeptile tests."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import numpy as np
import pytest

from deeptile.backends import PillowBackend
from deeptile.storage import MemoryTileStore


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's cleaned up after tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def backend() -> PillowBackend:
    return PillowBackend()


@pytest.fixture
def memory_store() -> MemoryTileStore:
    return MemoryTileStore()


@pytest.fixture
def sample_rgb_array() -> np.ndarray:
    """Create a simple RGB test image as numpy array with some patterns."""
    # Create 512x512 image with colored quadrants
    img = np.full((512, 512, 3), 255, dtype=np.uint8)

    # Top-left: red
    img[0:256, 0:256] = [200, 50, 50]

    # Top-right: green
    img[0:256, 256:512] = [50, 200, 50]

    # Bottom-left: blue
    img[256:512, 0:256] = [50, 50, 200]

    # Bottom-right: purple
    img[256:512, 256:512] = [150, 50, 150]

    return img


@pytest.fixture
def gradient_array() -> np.ndarray:
    """Non-square 300x200 image whose every pixel is distinct per column/row."""
    height, width = 200, 300
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[:, :, 0] = (np.arange(width) % 256)[None, :]
    img[:, :, 1] = (np.arange(height) % 256)[:, None]
    img[:, :, 2] = 128
    return img
