"""
Raster Image Utility

Small raster interface used by the trimmer and the grid composer:
load, pixel access, scaled/centered drawing, and encoding.
Backed by Pillow with numpy pixel buffers.
"""

import io
from pathlib import Path
from typing import BinaryIO, NamedTuple, Tuple, Union

import numpy as np
from PIL import Image, ImageColor, UnidentifiedImageError

from lookgen.core.exceptions import CompositingError

ImageSource = Union[bytes, bytearray, str, Path, BinaryIO, Image.Image]


class Rect(NamedTuple):
    """Axis-aligned rectangle in canvas pixels."""
    x: float
    y: float
    width: float
    height: float


class RasterImage:
    """An RGBA raster."""

    def __init__(self, image: Image.Image):
        if image.mode != "RGBA":
            image = image.convert("RGBA")
        self.image = image

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    def crop(self, left: int, top: int, right: int, bottom: int) -> "RasterImage":
        """Crop to [left, right) x [top, bottom)."""
        return RasterImage(self.image.crop((left, top, right, bottom)))

    def __repr__(self) -> str:
        return f"RasterImage({self.width}x{self.height})"


def load(source: ImageSource) -> RasterImage:
    """
    Decode an image fully.

    Raises:
        CompositingError: the source is unreadable or corrupt
    """
    try:
        if isinstance(source, Image.Image):
            image = source
        elif isinstance(source, (bytes, bytearray)):
            image = Image.open(io.BytesIO(source))
        else:
            image = Image.open(source)
        # Force decode so truncated data fails here, not mid-composite
        image.load()
        return RasterImage(image)
    except (
        OSError,
        SyntaxError,
        UnidentifiedImageError,
        ValueError,
        Image.DecompressionBombError
    ) as e:
        raise CompositingError(f"Failed to load image: {e}") from e


def new_canvas(width: int, height: int, background: str = "#FFFFFF") -> RasterImage:
    """Create an opaque canvas filled with background."""
    color = ImageColor.getrgb(background)
    return RasterImage(Image.new("RGBA", (width, height), color[:3] + (255,)))


def pixels(image: RasterImage) -> np.ndarray:
    """RGBA pixel buffer of shape (height, width, 4), dtype uint8."""
    return np.asarray(image.image, dtype=np.uint8)


def fit_scale(width: int, height: int, rect: Rect, safety_margin: float = 1.0) -> float:
    """Largest uniform scale that fits width x height inside rect."""
    return min(rect.width / width, rect.height / height) * safety_margin


def draw_scaled_centered(
    dest: RasterImage,
    image: RasterImage,
    rect: Rect,
    safety_margin: float = 1.0
) -> Rect:
    """
    Draw image into rect, scaled uniformly to fit and centered.

    Returns:
        The destination rectangle actually drawn
    """
    scale = fit_scale(image.width, image.height, rect, safety_margin)
    dst_width = max(1, round(image.width * scale))
    dst_height = max(1, round(image.height * scale))

    x = round(rect.x + (rect.width - dst_width) / 2)
    y = round(rect.y + (rect.height - dst_height) / 2)

    try:
        scaled = image.image
        if scaled.size != (dst_width, dst_height):
            scaled = scaled.resize((dst_width, dst_height), Image.Resampling.LANCZOS)
        dest.image.alpha_composite(scaled, dest=(x, y))
    except (OSError, ValueError) as e:
        raise CompositingError(f"Failed to draw image: {e}") from e

    return Rect(x, y, dst_width, dst_height)


def encode(image: RasterImage, format: str = "JPEG", quality: int = 80) -> bytes:
    """Encode to bytes. JPEG output is flattened to RGB."""
    buffer = io.BytesIO()
    try:
        output = image.image
        if format.upper() in ("JPEG", "JPG"):
            output = output.convert("RGB")
            output.save(buffer, format="JPEG", quality=quality)
        else:
            output.save(buffer, format=format)
    except (OSError, ValueError, KeyError) as e:
        raise CompositingError(f"Failed to encode image: {e}") from e
    return buffer.getvalue()
