"""Raster backends: decode, resize, composite and encode pixel buffers.

Pixel buffers are numpy arrays shaped ``(height, width, bands)`` with dtype
uint8 and 3 (RGB) or 4 (RGBA) bands. Two backends are provided:

- Pillow (default), pure wheels, always available;
- PyVIPS (libvips), faster resampling and JPEG encoding when installed.

Usage:
    from deeptile.backends import get_backend

    backend = get_backend()
    pixels = backend.decode(Path("input.jpg").read_bytes())
    resized = backend.resize(pixels, 256, 256)
    data = backend.encode(resized, "jpeg", quality=90)
"""

from __future__ import annotations

import io
import logging
from abc import ABC, abstractmethod
from typing import Any

import numpy as np
from PIL import Image, UnidentifiedImageError

from deeptile.config import BACKEND, TILE_FORMATS
from deeptile.core.errors import DecodeError, InvalidConfigurationError
from deeptile.core.types import Rect

logger = logging.getLogger(__name__)

# Source images are gigapixel-scale by design
Image.MAX_IMAGE_PIXELS = None

_HAS_VIPS = False
_vips_import_error: str | None = None
pyvips: Any = None

try:
    import pyvips
    _HAS_VIPS = True
except (ImportError, OSError) as e:
    _vips_import_error = str(e)


def is_vips_available() -> bool:
    """Check if PyVIPS is available.

    Returns:
        True if pyvips is installed and working
    """
    return _HAS_VIPS


def get_vips_import_error() -> str | None:
    """Get the error message if PyVIPS failed to import.

    Returns:
        Error message string, or None if pyvips is available
    """
    return _vips_import_error


def _check_format(fmt: str) -> str:
    fmt = fmt.lower()
    if fmt == "jpg":
        fmt = "jpeg"
    if fmt not in TILE_FORMATS:
        raise InvalidConfigurationError(
            f"Unsupported format {fmt!r}, expected one of {sorted(TILE_FORMATS)}"
        )
    return fmt


def _check_quality(quality: int) -> int:
    if not 1 <= quality <= 100:
        raise InvalidConfigurationError(f"quality must be in 1..100, got {quality}")
    return quality


def normalize_bands(arr: np.ndarray) -> np.ndarray:
    """Return an (H, W, 3|4) uint8 view or copy of ``arr``."""
    if arr.ndim == 2:
        arr = np.repeat(arr[:, :, None], 3, axis=2)
    elif arr.shape[2] == 1:
        arr = np.repeat(arr, 3, axis=2)
    elif arr.shape[2] == 2:
        # Grey + alpha
        arr = np.concatenate([np.repeat(arr[:, :, :1], 3, axis=2), arr[:, :, 1:]], axis=2)
    if arr.dtype != np.uint8:
        arr = arr.astype(np.uint8)
    return arr


class RasterBackend(ABC):
    """Image operations the pyramid builder and compositor depend on."""

    name: str = "abstract"

    @abstractmethod
    def decode(self, data: bytes) -> np.ndarray:
        """Decode encoded image bytes.

        Raises:
            DecodeError: If the bytes are not a readable image
        """

    @abstractmethod
    def resize(self, buffer: np.ndarray, width: int, height: int) -> np.ndarray:
        """Resample ``buffer`` to exactly ``width`` x ``height``."""

    @abstractmethod
    def encode(self, buffer: np.ndarray, fmt: str = "jpeg", quality: int = 90) -> bytes:
        """Encode ``buffer`` as ``fmt`` ("jpeg" or "png")."""

    @staticmethod
    def new_canvas(width: int, height: int, bands: int = 4) -> np.ndarray:
        """Create a transparent black buffer."""
        return np.zeros((height, width, bands), dtype=np.uint8)

    @staticmethod
    def composite(dst: np.ndarray, src: np.ndarray, src_rect: Rect, dst_rect: Rect) -> None:
        """Copy the ``src_rect`` region of ``src`` onto ``dst`` at ``dst_rect``.

        Both rectangles must have the same size. The copy is clipped to the
        bounds of ``dst``. RGB sources drawn onto an RGBA destination become
        opaque.
        """
        if (src_rect.width, src_rect.height) != (dst_rect.width, dst_rect.height):
            raise ValueError(f"Rect sizes differ: {src_rect} vs {dst_rect}")

        dst_h, dst_w = dst.shape[:2]
        clipped = dst_rect.intersection(Rect(0, 0, dst_w, dst_h))
        if clipped.is_empty:
            return

        sx = src_rect.x + (clipped.x - dst_rect.x)
        sy = src_rect.y + (clipped.y - dst_rect.y)
        region = src[sy:sy + clipped.height, sx:sx + clipped.width]
        target = dst[clipped.y:clipped.bottom, clipped.x:clipped.right]

        dst_bands = dst.shape[2]
        src_bands = region.shape[2]
        if src_bands == dst_bands:
            target[...] = region
        elif src_bands == 3 and dst_bands == 4:
            target[:, :, :3] = region
            target[:, :, 3] = 255
        else:
            target[...] = region[:, :, :dst_bands]


class PillowBackend(RasterBackend):
    """Pillow-based backend (Lanczos resampling)."""

    name = "pillow"

    def decode(self, data: bytes) -> np.ndarray:
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                has_alpha = img.mode in ("RGBA", "LA") or (
                    img.mode == "P" and "transparency" in img.info
                )
                converted = img.convert("RGBA" if has_alpha else "RGB")
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise DecodeError(f"Cannot decode image ({len(data)} bytes): {e}") from e
        return np.asarray(converted, dtype=np.uint8).copy()

    def resize(self, buffer: np.ndarray, width: int, height: int) -> np.ndarray:
        buffer = normalize_bands(buffer)
        if buffer.shape[1] == width and buffer.shape[0] == height:
            return buffer.copy()
        img = Image.fromarray(np.ascontiguousarray(buffer))
        resized = img.resize((width, height), Image.Resampling.LANCZOS)
        return np.asarray(resized, dtype=np.uint8).copy()

    def encode(self, buffer: np.ndarray, fmt: str = "jpeg", quality: int = 90) -> bytes:
        fmt = _check_format(fmt)
        _check_quality(quality)
        img = Image.fromarray(np.ascontiguousarray(normalize_bands(buffer)))
        out = io.BytesIO()
        if fmt == "jpeg":
            if img.mode != "RGB":
                img = img.convert("RGB")
            img.save(out, format="JPEG", quality=quality)
        else:
            img.save(out, format="PNG")
        return out.getvalue()


class VIPSBackend(RasterBackend):
    """PyVIPS-based backend.

    libvips is particularly effective for JPEG encoding and Lanczos
    resampling of large images. Requires pyvips to be installed:
    pip install pyvips
    """

    name = "vips"

    def __init__(self) -> None:
        if not _HAS_VIPS:
            raise RuntimeError(f"PyVIPS is not available: {get_vips_import_error()}")

    @staticmethod
    def from_numpy(arr: np.ndarray) -> "pyvips.Image":
        """Convert a numpy array to pyvips format.

        Args:
            arr: numpy array (H, W, 3|4) uint8

        Returns:
            pyvips.Image
        """
        arr = np.ascontiguousarray(normalize_bands(arr))
        height, width, bands = arr.shape
        return pyvips.Image.new_from_memory(arr.tobytes(), width, height, bands, "uchar")

    @staticmethod
    def to_numpy(img: "pyvips.Image") -> np.ndarray:
        """Convert a pyvips image to a numpy array with 3 or 4 bands."""
        if img.bands == 1:
            # bandjoin joins self + list, so [img, img] gives 3 bands
            img = img.bandjoin([img, img])
        elif img.bands == 2:
            img = img[0].bandjoin([img[0], img[0], img[1]])
        elif img.bands > 4:
            img = img.extract_band(0, n=4)
        if img.format != "uchar":
            img = img.cast("uchar")

        data = img.write_to_memory()
        return np.ndarray(
            buffer=data,
            dtype=np.uint8,
            shape=(img.height, img.width, img.bands),
        ).copy()

    def decode(self, data: bytes) -> np.ndarray:
        try:
            img = pyvips.Image.new_from_buffer(data, "", access="sequential")
            return self.to_numpy(img)
        except pyvips.error.Error as e:
            raise DecodeError(f"Cannot decode image ({len(data)} bytes): {e}") from e

    def resize(self, buffer: np.ndarray, width: int, height: int) -> np.ndarray:
        if buffer.shape[1] == width and buffer.shape[0] == height:
            return normalize_bands(buffer).copy()
        img = self.from_numpy(buffer)
        h_scale = width / img.width
        v_scale = height / img.height
        img = img.resize(h_scale, vscale=v_scale, kernel="lanczos3")
        # libvips rounds output dimensions; pin them to the requested size
        if img.width != width or img.height != height:
            img = img.extract_area(0, 0, min(width, img.width), min(height, img.height))
            img = img.embed(0, 0, width, height, extend="copy")
        return self.to_numpy(img)

    def encode(self, buffer: np.ndarray, fmt: str = "jpeg", quality: int = 90) -> bytes:
        fmt = _check_format(fmt)
        _check_quality(quality)
        img = self.from_numpy(buffer)
        if fmt == "jpeg":
            if img.bands == 4:
                img = img.extract_band(0, n=3)
            return img.write_to_buffer(".jpg", Q=quality, strip=True)
        return img.write_to_buffer(".png")


_BACKENDS: dict[str, type[RasterBackend]] = {
    PillowBackend.name: PillowBackend,
    VIPSBackend.name: VIPSBackend,
}


def get_backend(name: str | None = None) -> RasterBackend:
    """Get a raster backend by name.

    Args:
        name: "pillow" or "vips"; None uses ``config.BACKEND``

    Returns:
        RasterBackend instance

    Raises:
        InvalidConfigurationError: If the name is unknown
        RuntimeError: If the vips backend is requested but PyVIPS is missing
    """
    name = (name or BACKEND).lower()
    try:
        backend_cls = _BACKENDS[name]
    except KeyError:
        raise InvalidConfigurationError(
            f"Unknown backend {name!r}, expected one of {sorted(_BACKENDS)}"
        ) from None
    if backend_cls is VIPSBackend and not _HAS_VIPS:
        raise RuntimeError(
            f"PyVIPS is required but not available: {get_vips_import_error()}\n"
            "Install pyvips and libvips: pip install pyvips"
        )
    return backend_cls()
