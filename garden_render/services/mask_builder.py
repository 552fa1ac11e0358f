"""
Mask Builder — binary/soft masks telling the inpainting backend where it may paint.

Black (0) preserves the canvas, white (255) marks a region eligible for
regeneration. Batch masks feather each region with a slightly translucent
outer ring so several plants generated in one call blend without seams.
"""
from __future__ import annotations

import math
from typing import Iterable

import numpy as np
from PIL import Image, ImageDraw

from .garden_model import Circle, Mask, encode_png

OUTER_RING_VALUE = 230        # ~90% opacity
INNER_RADIUS_RATIO = 0.8


def _blank(dims: tuple[int, int]) -> Image.Image:
    width, height = dims
    return Image.new("L", (width, height), 0)


def _bbox(circle: Circle, scale: float = 1.0) -> tuple[float, float, float, float]:
    r = circle.radius * scale
    return (
        circle.center_x - r,
        circle.center_y - r,
        circle.center_x + r,
        circle.center_y + r,
    )


def _to_mask(img: Image.Image) -> Mask:
    return Mask(pixels=encode_png(img), width=img.width, height=img.height)


def build_single_mask(dims: tuple[int, int], circle: Circle) -> Mask:
    img = _blank(dims)
    ImageDraw.Draw(img).ellipse(_bbox(circle), fill=255)
    return _to_mask(img)


def build_combined_mask(dims: tuple[int, int], circles: Iterable[Circle]) -> Mask:
    circles = list(circles)
    img = _blank(dims)
    draw = ImageDraw.Draw(img)
    # All rings first, then all cores, so an overlapping ring never dims a core.
    for circle in circles:
        draw.ellipse(_bbox(circle), fill=OUTER_RING_VALUE)
    for circle in circles:
        draw.ellipse(_bbox(circle, INNER_RADIUS_RATIO), fill=255)
    return _to_mask(img)


def build_full_mask(dims: tuple[int, int]) -> Mask:
    width, height = dims
    return _to_mask(Image.new("L", (width, height), 255))


def white_region_stats(mask: Mask, threshold: int = 128) -> tuple[float, float, float, float]:
    """
    Measure the eligible region of a mask.
    Returns (center_x, center_y, equivalent_radius, coverage_fraction).
    An empty mask yields zeros.
    """
    arr = np.asarray(mask.to_image(), dtype=np.uint8)
    ys, xs = np.nonzero(arr >= threshold)
    if xs.size == 0:
        return 0.0, 0.0, 0.0, 0.0
    area = float(xs.size)
    # Pixel centers sit at +0.5.
    cx = float(xs.mean()) + 0.5
    cy = float(ys.mean()) + 0.5
    radius = math.sqrt(area / math.pi)
    return cx, cy, radius, area / arr.size
