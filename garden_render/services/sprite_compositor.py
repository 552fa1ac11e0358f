"""
Sprite Compositor — mechanical, non-generative garden rendering.

Pastes pre-rendered plant sprites onto a lawn at their layout positions.
Placement is exact but the result looks like cut-outs, which is why the
comparison harness also runs the enhancement pass over it.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from PIL import Image, UnidentifiedImageError

from .base_canvas import create_lawn_base
from .garden_model import Canvas, PlantPlacement, radius_fraction

logger = logging.getLogger(__name__)

# Background plants shrink by up to this fraction.
MAX_DEPTH_SHRINK = 0.3
# Sprites are anchored this far down their height, roughly where the stem meets the soil.
ANCHOR_RATIO = 0.8


@dataclass
class SpriteLibrary:
    """Resolves species names to sprite files named sprite-<slug>.png."""

    directory: Path

    def path_for(self, species_name: str) -> Optional[Path]:
        slug = re.sub(r"[^a-z0-9]+", "-", species_name.lower()).strip("-")
        path = Path(self.directory) / f"sprite-{slug}.png"
        return path if path.exists() else None


def sprite_width(placement: PlantPlacement, canvas_width: int) -> int:
    """Target sprite width: the placement's footprint diameter, shrunk with depth."""
    depth_scale = 1.0 - (placement.y_percent / 100) * MAX_DEPTH_SHRINK
    diameter = 2 * radius_fraction(placement.size_category) * canvas_width
    return max(1, round(diameter * depth_scale))


def composite_garden(
    placements: Sequence[PlantPlacement],
    sprites: Mapping[str, Path] | SpriteLibrary,
    width: int,
    height: int,
    base: Optional[Canvas] = None,
) -> Canvas:
    """Alpha-composite each plant's sprite back to front; missing sprites are skipped."""
    canvas_img = (base or create_lawn_base(width, height)).to_image().convert("RGBA")
    if canvas_img.size != (width, height):
        canvas_img = canvas_img.resize((width, height), Image.LANCZOS)

    for placement in sorted(placements, key=lambda p: p.y_percent):
        if isinstance(sprites, SpriteLibrary):
            path = sprites.path_for(placement.species_name)
        else:
            path = sprites.get(placement.species_name)
        if path is None:
            logger.warning(f"No sprite for {placement.label()}, skipping")
            continue

        try:
            with Image.open(path) as raw:
                sprite = raw.convert("RGBA")
        except (OSError, UnidentifiedImageError) as e:
            logger.error(f"Failed to load sprite {path} for {placement.label()}: {e}")
            continue

        target_w = sprite_width(placement, width)
        target_h = max(1, round(sprite.height * target_w / sprite.width))
        sprite = sprite.resize((target_w, target_h), Image.LANCZOS)

        px = round(placement.x_percent / 100 * width)
        py = round(placement.y_percent / 100 * height)
        left = max(0, px - target_w // 2)
        top = max(0, py - round(target_h * ANCHOR_RATIO))
        logger.debug(f"Placing {placement.label()} → pixels ({left}, {top}) size {target_w}x{target_h}")
        canvas_img.alpha_composite(sprite, (left, top))

    return Canvas.from_image(canvas_img.convert("RGB"))
