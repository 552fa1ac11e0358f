"""
Comparison — renders one layout every way we know and keeps every artifact.

Seven images per run: the empty base, the mechanical sprite composite, the
sequential and batch renders, and the enhancement pass over each of those
three. The three branches share no state, so they can run concurrently.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from . import storage
from .compositing_pipeline import CompositingPipeline
from .garden_model import (
    Canvas,
    GardenLayout,
    GenerationStrategy,
    PlantPlacement,
    RenderStyle,
    SizeClassifier,
)
from .geometry import resolve_dimensions
from .sprite_compositor import SpriteLibrary, composite_garden

logger = logging.getLogger(__name__)

SPRITE_DIR = Path(os.environ.get("GARDEN_SPRITE_DIR", "static/plant-sprites"))
SIZE_KEYWORDS_FILE = os.environ.get("GARDEN_SIZE_KEYWORDS")


@dataclass(frozen=True)
class ComparisonResult:
    mechanical_composite: str
    enhanced_mechanical_composite: str
    sequential_result: str
    enhanced_sequential_result: str
    batch_result: str
    enhanced_batch_result: str
    empty_base: str

    def to_dict(self) -> dict[str, str]:
        return dataclasses.asdict(self)


def default_classifier() -> SizeClassifier:
    if SIZE_KEYWORDS_FILE:
        return SizeClassifier.from_json(SIZE_KEYWORDS_FILE)
    return SizeClassifier()


def default_comparison_layout(classifier: Optional[SizeClassifier] = None) -> GardenLayout:
    classifier = classifier or default_classifier()
    plants = [
        ("Japanese Maple", 70, 25),   # right, background
        ("Hosta", 30, 65),            # left, foreground
        ("Lavender", 50, 45),         # center
    ]
    return GardenLayout(
        placements=[
            PlantPlacement(name, x, y, classifier.classify(name), season_override="summer")
            for name, x, y in plants
        ],
        season="summer",
        style=RenderStyle.PHOTOREALISTIC,
    )


async def _generative_branch(
    pipeline: CompositingPipeline,
    layout: GardenLayout,
    base: Canvas,
    strategy: GenerationStrategy,
) -> tuple[str, str]:
    branch_layout = dataclasses.replace(layout, strategy=strategy)
    outcome = await pipeline.compose(branch_layout, base=base)
    plain_ref = storage.save_canvas(outcome.canvas, "inpainted-garden", strategy.value, pipeline.output_dir)

    enhanced = await pipeline.run_enhancement(outcome.canvas, layout.placements, layout.season, layout.style)
    enhanced_ref = storage.save_canvas(enhanced.canvas, "enhanced-garden", strategy.value, pipeline.output_dir)
    return plain_ref, enhanced_ref


async def _mechanical_branch(
    pipeline: CompositingPipeline,
    layout: GardenLayout,
    sprites: Mapping[str, Path] | SpriteLibrary,
) -> tuple[str, str]:
    width, height = resolve_dimensions(layout.canvas_width, layout.canvas_height)
    composite = composite_garden(layout.placements, sprites, width, height)
    plain_ref = storage.save_canvas(composite, "composite-garden", "mechanical", pipeline.output_dir)

    enhanced = await pipeline.run_enhancement(composite, layout.placements, layout.season, layout.style)
    enhanced_ref = storage.save_canvas(enhanced.canvas, "enhanced-composite", "mechanical", pipeline.output_dir)
    return plain_ref, enhanced_ref


async def compare_strategies(
    layout: Optional[GardenLayout] = None,
    pipeline: Optional[CompositingPipeline] = None,
    sprites: Mapping[str, Path] | SpriteLibrary | None = None,
    concurrent: bool = False,
) -> ComparisonResult:
    layout = layout or default_comparison_layout()
    pipeline = pipeline or CompositingPipeline()
    sprites = sprites if sprites is not None else SpriteLibrary(SPRITE_DIR)

    logger.info(f"Running strategy comparison for {layout.plant_count} plants")
    base = pipeline.ensure_base_canvas(layout)
    empty_ref = storage.save_canvas(base, "empty-base", None, pipeline.output_dir)

    if concurrent:
        mechanical, sequential, batch = await asyncio.gather(
            _mechanical_branch(pipeline.fork(), layout, sprites),
            _generative_branch(pipeline.fork(), layout, base, GenerationStrategy.SEQUENTIAL),
            _generative_branch(pipeline.fork(), layout, base, GenerationStrategy.BATCH),
        )
    else:
        mechanical = await _mechanical_branch(pipeline, layout, sprites)
        sequential = await _generative_branch(pipeline, layout, base, GenerationStrategy.SEQUENTIAL)
        batch = await _generative_branch(pipeline, layout, base, GenerationStrategy.BATCH)

    return ComparisonResult(
        mechanical_composite=mechanical[0],
        enhanced_mechanical_composite=mechanical[1],
        sequential_result=sequential[0],
        enhanced_sequential_result=sequential[1],
        batch_result=batch[0],
        enhanced_batch_result=batch[1],
        empty_base=empty_ref,
    )
