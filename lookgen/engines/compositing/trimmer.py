"""
Whitespace Trimming

Crops an image to the bounding box of its content. A pixel is empty
when it is fully transparent or when every color channel is above
255 - threshold (near-white).
"""

from typing import Optional, Tuple, Union

import numpy as np

from lookgen.core.logging import get_logger
from lookgen.engines.compositing.raster import ImageSource, RasterImage, load, pixels

logger = get_logger(__name__)

DEFAULT_THRESHOLD = 15


def content_mask(image: RasterImage, threshold: int = DEFAULT_THRESHOLD) -> np.ndarray:
    """Boolean (height, width) mask of non-empty pixels."""
    if not 0 <= threshold <= 255:
        raise ValueError(f"threshold must be within 0..255, got {threshold}")

    data = pixels(image)
    min_channel_value = 255 - threshold

    transparent = data[..., 3] == 0
    near_white = np.all(data[..., :3] > min_channel_value, axis=-1)
    return ~(transparent | near_white)


def content_bounds(
    image: RasterImage,
    threshold: int = DEFAULT_THRESHOLD
) -> Optional[Tuple[int, int, int, int]]:
    """
    Minimal (left, top, right, bottom) box covering all content pixels.

    right and bottom are exclusive. None when the image has no content.
    """
    mask = content_mask(image, threshold)

    rows = np.flatnonzero(mask.any(axis=1))
    if rows.size == 0:
        return None
    cols = np.flatnonzero(mask.any(axis=0))

    return int(cols[0]), int(rows[0]), int(cols[-1]) + 1, int(rows[-1]) + 1


def trim(image: Union[RasterImage, ImageSource], threshold: int = DEFAULT_THRESHOLD) -> RasterImage:
    """
    Crop image exactly to its content bounding box.

    An image with no content is returned unmodified.

    Raises:
        CompositingError: the source image is unreadable
    """
    if not isinstance(image, RasterImage):
        image = load(image)

    bounds = content_bounds(image, threshold)
    if bounds is None:
        logger.debug("trim_no_content", width=image.width, height=image.height)
        return image

    left, top, right, bottom = bounds
    logger.debug(
        "trim_bounds",
        original=f"{image.width}x{image.height}",
        trimmed=f"{right - left}x{bottom - top}",
        bounds=bounds
    )
    return image.crop(left, top, right, bottom)
