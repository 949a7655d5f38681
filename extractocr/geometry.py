"""Scale word boxes from PDF-page space to page-image pixels."""

from __future__ import annotations

import logging
import math
from pathlib import Path

log = logging.getLogger(__name__)

Box = tuple[float, float, float, float]


def round_half_up(value: float) -> int:
    """Round half away from zero (``round()`` rounds half to even)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def scale_factors(
    page_width: float,
    page_height: float,
    image_width: float | None = None,
    image_height: float | None = None,
) -> tuple[float, float]:
    """Return ``(scale_x, scale_y)`` mapping page units to image pixels.

    An axis falls back to 1.0 when its page dimension is zero or when there
    is no image (or an image of unknown size) for the page.
    """
    if not image_width or not image_height:
        return 1.0, 1.0
    scale_x = image_width / page_width if page_width else 1.0
    scale_y = image_height / page_height if page_height else 1.0
    return scale_x, scale_y


def scale_box(box: Box, scale_x: float, scale_y: float) -> tuple[int, int, int, int]:
    """Scale ``(x_min, y_min, x_max, y_max)`` and return rounded ``(x, y, w, h)``."""
    x_min, y_min, x_max, y_max = box
    x_min *= scale_x
    x_max *= scale_x
    y_min *= scale_y
    y_max *= scale_y
    return (
        round_half_up(x_min),
        round_half_up(y_min),
        round_half_up(x_max - x_min),
        round_half_up(y_max - y_min),
    )


def scale(
    box: Box,
    page_width: float,
    page_height: float,
    image_width: float | None = None,
    image_height: float | None = None,
) -> tuple[int, int, int, int]:
    scale_x, scale_y = scale_factors(page_width, page_height, image_width, image_height)
    return scale_box(box, scale_x, scale_y)


def format_xywh(xywh: tuple[int, int, int, int]) -> str:
    return ",".join(str(v) for v in xywh)


def image_size(path: Path) -> tuple[int, int]:
    """Read pixel dimensions of an image file; ``(0, 0)`` when unreadable."""
    from PIL import Image, UnidentifiedImageError

    try:
        with Image.open(path) as img:
            return img.size
    except (OSError, UnidentifiedImageError) as exc:
        log.warning("Unable to read image size of %s: %s", path, exc)
        return 0, 0
