"""
Base Canvas — procedurally drawn starting images.

create_empty_garden_base draws sky, lawn and an empty stone-framed soil bed
in perspective; it is the canvas the generative strategies paint plants into.
create_lawn_base is the flat lawn the mechanical sprite compositor uses.
Both are deterministic for a given size and seed.
"""
from __future__ import annotations

import numpy as np
from PIL import Image, ImageDraw

from .garden_model import Canvas

SKY_TOP = (135, 206, 235)
SKY_HORIZON = (224, 246, 255)
LAWN_FAR = (143, 188, 143)
LAWN_NEAR = (34, 139, 34)
SOIL = (139, 69, 19)
SOIL_SPECKLE = ((101, 67, 33), (92, 64, 51), (62, 39, 35))
STONE_TONES = ((138, 133, 128), (158, 152, 144), (112, 108, 104), (176, 170, 160))

HORIZON_RATIO = 0.4
# Trapezoid bed corners as fractions of (width, height): back-left, back-right, front-right, front-left.
BED_OUTLINE = ((0.2, 0.5), (0.8, 0.5), (0.75, 0.85), (0.25, 0.85))


def _vertical_gradient(width: int, height: int, top: tuple, bottom: tuple) -> np.ndarray:
    t = np.linspace(0.0, 1.0, max(1, height), dtype=np.float32)[:, None]
    top_arr = np.array(top, dtype=np.float32)
    bottom_arr = np.array(bottom, dtype=np.float32)
    rows = top_arr * (1.0 - t) + bottom_arr * t
    return np.repeat(rows[:, None, :], width, axis=1).reshape(height, width, 3)


def _soil_texture(width: int, height: int, rng: np.random.Generator) -> Image.Image:
    base = np.empty((height, width, 3), dtype=np.float32)
    base[:] = SOIL
    # Low-amplitude grain plus sparse darker clods.
    base += rng.normal(0.0, 8.0, size=(height, width, 1))
    clods = rng.random((height, width)) < 0.04
    tones = np.array(SOIL_SPECKLE, dtype=np.float32)
    base[clods] = tones[rng.integers(0, len(tones), size=int(clods.sum()))]
    return Image.fromarray(np.clip(base, 0, 255).astype(np.uint8))


def _bed_polygon(width: int, height: int) -> list[tuple[float, float]]:
    return [(fx * width, fy * height) for fx, fy in BED_OUTLINE]


def _draw_stone_frame(
    draw: ImageDraw.ImageDraw,
    polygon: list[tuple[float, float]],
    stone_size: float,
    rng: np.random.Generator,
) -> None:
    corners = polygon + polygon[:1]
    for (x0, y0), (x1, y1) in zip(corners, corners[1:]):
        length = float(np.hypot(x1 - x0, y1 - y0))
        count = max(2, int(length / stone_size))
        for i in range(count + 1):
            t = i / count
            cx = x0 + (x1 - x0) * t
            cy = y0 + (y1 - y0) * t
            rx = stone_size * (0.55 + 0.2 * rng.random())
            ry = stone_size * (0.35 + 0.15 * rng.random())
            tone = STONE_TONES[int(rng.integers(0, len(STONE_TONES)))]
            draw.ellipse((cx - rx, cy - ry, cx + rx, cy + ry), fill=tone, outline=(90, 86, 82))


def create_empty_garden_base(width: int, height: int, seed: int = 7) -> Canvas:
    rng = np.random.default_rng(seed)
    horizon = int(height * HORIZON_RATIO)

    pixels = np.empty((height, width, 3), dtype=np.float32)
    pixels[:horizon] = _vertical_gradient(width, horizon, SKY_TOP, SKY_HORIZON)
    pixels[horizon:] = _vertical_gradient(width, height - horizon, LAWN_FAR, LAWN_NEAR)
    img = Image.fromarray(np.clip(pixels, 0, 255).astype(np.uint8))

    polygon = _bed_polygon(width, height)
    bed_mask = Image.new("L", (width, height), 0)
    ImageDraw.Draw(bed_mask).polygon(polygon, fill=255)
    img.paste(_soil_texture(width, height, rng), (0, 0), bed_mask)

    draw = ImageDraw.Draw(img)
    draw.line([(0, horizon), (width, horizon)], fill=(107, 142, 35), width=max(1, width // 960))
    _draw_stone_frame(draw, polygon, stone_size=max(6.0, width / 96), rng=rng)
    return Canvas.from_image(img)


def create_lawn_base(width: int, height: int, seed: int = 7) -> Canvas:
    rng = np.random.default_rng(seed)
    pixels = _vertical_gradient(width, height, (124, 179, 66), (104, 159, 56))
    pixels += rng.normal(0.0, 6.0, size=(height, width, 1))
    # Slightly darker bands top and bottom for depth.
    band = max(1, height // 30)
    pixels[:band] *= 0.9
    pixels[-band:] *= 0.95
    return Canvas.from_image(Image.fromarray(np.clip(pixels, 0, 255).astype(np.uint8)))
