"""
Geometry — maps percent-based plant placements onto pixel space.

The inpainting backend only accepts canvases whose sides are multiples of 64
within [128, 2048], so every requested size goes through resolve_dimensions
before a generation call is issued.
"""
from __future__ import annotations

import math
from typing import Optional

from .garden_model import Circle, PlantPlacement, radius_fraction

DIMENSION_STEP = 64
MIN_DIMENSION = 128
MAX_DIMENSION = 2048

DEFAULT_WIDTH = 1920
DEFAULT_HEIGHT = 1440


def _snap(value: Optional[float], default: int) -> int:
    if value is None or not math.isfinite(value):
        value = default
    # Halves round up: 1440 → 1472, not banker's rounding down to 1408.
    snapped = int(math.floor(value / DIMENSION_STEP + 0.5)) * DIMENSION_STEP
    return max(MIN_DIMENSION, min(MAX_DIMENSION, snapped))


def resolve_dimensions(
    requested_width: Optional[float] = None,
    requested_height: Optional[float] = None,
) -> tuple[int, int]:
    """Return (width, height) snapped to the backend's size grid."""
    return _snap(requested_width, DEFAULT_WIDTH), _snap(requested_height, DEFAULT_HEIGHT)


def placement_to_circle(
    placement: PlantPlacement,
    canvas_width: int,
    canvas_height: int,
) -> Circle:
    return Circle(
        center_x=placement.x_percent / 100 * canvas_width,
        center_y=placement.y_percent / 100 * canvas_height,
        radius=radius_fraction(placement.size_category) * canvas_width,
    )


def horizontal_band(x_percent: float) -> str:
    if x_percent < 33:
        return "left"
    if x_percent > 66:
        return "right"
    return "center"


def depth_band(y_percent: float) -> str:
    if y_percent < 33:
        return "background"
    if y_percent > 66:
        return "foreground"
    return "midground"


def depth_phrase(y_percent: float) -> str:
    if y_percent < 30:
        return "in the background"
    if y_percent > 70:
        return "in the foreground"
    return "in the middle ground"
