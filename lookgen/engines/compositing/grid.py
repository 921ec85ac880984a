"""
Clothing Grid Composer

Lays out N garment images on a fixed 3:4 portrait canvas with a white
background. Each image is trimmed to its content, scaled uniformly to
fit its cell, and centered. The result is encoded as JPEG.
"""

import base64
import math
from typing import List, Optional, Sequence, Tuple, Union

from lookgen.core.config import settings
from lookgen.core.exceptions import CompositingError
from lookgen.core.logging import get_logger
from lookgen.engines.compositing import raster
from lookgen.engines.compositing.raster import ImageSource, RasterImage, Rect
from lookgen.engines.compositing.trimmer import trim

logger = get_logger(__name__)


def grid_layout(item_count: int) -> Tuple[int, int]:
    """
    Grid dimensions (cols, rows) for item_count images.

    Small counts use a fixed table tuned for common outfit sizes;
    larger counts fall back to a near-square grid.
    """
    if item_count <= 1:
        return 1, 1
    if item_count == 2:
        return 2, 1  # side-by-side
    if item_count <= 4:
        return 2, 2
    if item_count <= 6:
        return 2, 3
    if item_count <= 9:
        return 3, 3
    if item_count <= 12:
        return 3, 4

    cols = math.ceil(math.sqrt(item_count))
    rows = math.ceil(item_count / cols)
    return cols, rows


class GridComposer:
    """Composes trimmed garment images into a single grid image."""

    def __init__(
        self,
        width: Optional[int] = None,
        height: Optional[int] = None,
        padding: Optional[int] = None,
        background: Optional[str] = None,
        quality: Optional[int] = None,
        safety_margin: Optional[float] = None,
        trim_threshold: Optional[int] = None
    ):
        self.width = width or settings.GRID_CANVAS_WIDTH
        self.height = height or settings.GRID_CANVAS_HEIGHT
        self.padding = settings.GRID_PADDING if padding is None else padding
        self.background = background or settings.GRID_BACKGROUND
        self.quality = quality or settings.GRID_JPEG_QUALITY
        self.safety_margin = safety_margin or settings.GRID_SAFETY_MARGIN
        self.trim_threshold = settings.TRIM_THRESHOLD if trim_threshold is None else trim_threshold

    def cell_size(self, cols: int, rows: int) -> Tuple[int, int]:
        """Cell width/height after removing inter-cell padding."""
        cell_width = (self.width - (cols - 1) * self.padding) // cols
        cell_height = (self.height - (rows - 1) * self.padding) // rows
        if cell_width <= 0 or cell_height <= 0:
            raise CompositingError(
                f"Canvas {self.width}x{self.height} too small for a {cols}x{rows} grid"
            )
        return cell_width, cell_height

    def cell_rect(self, index: int, cols: int, cell_width: int, cell_height: int) -> Rect:
        """Rectangle of the index-th cell, filled row by row."""
        col = index % cols
        row = index // cols
        return Rect(
            col * (cell_width + self.padding),
            row * (cell_height + self.padding),
            cell_width,
            cell_height
        )

    def compose_canvas(self, images: Sequence[Union[RasterImage, ImageSource]]) -> RasterImage:
        """
        Draw every image into its cell on a fresh canvas.

        Raises:
            CompositingError: no images, or any image fails to load or draw
        """
        if not images:
            raise CompositingError("No images provided for grid generation")

        # Fail fast: one unreadable image aborts the whole composite
        loaded: List[RasterImage] = [
            image if isinstance(image, RasterImage) else raster.load(image)
            for image in images
        ]

        cols, rows = grid_layout(len(loaded))
        cell_width, cell_height = self.cell_size(cols, rows)

        logger.info(
            "grid_compose_started",
            items=len(loaded),
            layout=f"{cols}x{rows}",
            cell=f"{cell_width}x{cell_height}"
        )

        canvas = raster.new_canvas(self.width, self.height, self.background)

        for index, image in enumerate(loaded):
            trimmed = trim(image, self.trim_threshold)
            rect = self.cell_rect(index, cols, cell_width, cell_height)
            drawn = raster.draw_scaled_centered(canvas, trimmed, rect, self.safety_margin)

            logger.debug(
                "grid_item_drawn",
                index=index,
                source=f"{trimmed.width}x{trimmed.height}",
                drawn=f"{drawn.width}x{drawn.height}@{drawn.x},{drawn.y}"
            )

        return canvas

    def compose(self, images: Sequence[Union[RasterImage, ImageSource]]) -> bytes:
        """Compose and encode as JPEG bytes."""
        canvas = self.compose_canvas(images)
        data = raster.encode(canvas, "JPEG", self.quality)
        logger.info("grid_compose_completed", items=len(images), size_bytes=len(data))
        return data

    def compose_base64(self, images: Sequence[Union[RasterImage, ImageSource]]) -> str:
        """Compose and return the JPEG as a base64 string."""
        return base64.b64encode(self.compose(images)).decode("utf-8")
