"""
Compositing Pipeline — turns a GardenLayout into a rendered garden image.

Flow:
  1. Resolve canvas dimensions onto the backend's 64 px grid
  2. Take the caller's base canvas, or draw an empty stone-framed bed
  3. Paint the plants in:
       sequential — one masked call per plant, each on the previous result
       batch      — one call with a combined mask and a single prompt
  4. Optionally run a low-strength enhancement pass over the result
  5. Persist the final canvas once and return a GenerationResult

Provider failures never escape run(): a failed plant keeps the previous
canvas, a failed batch or enhancement keeps the canvas it started from, and
the result is flagged as degraded.
"""
from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from . import storage
from .base_canvas import create_empty_garden_base
from .garden_model import (
    BATCH_PARAMS,
    ENHANCEMENT_PARAMS,
    ENHANCEMENT_STRENGTH_RANGE,
    SEQUENTIAL_PARAMS,
    Canvas,
    GardenLayout,
    GenerationParams,
    GenerationResult,
    GenerationStrategy,
    PlantPlacement,
    ProviderCapability,
    RenderStyle,
)
from .geometry import placement_to_circle, resolve_dimensions
from .mask_builder import build_combined_mask, build_full_mask, build_single_mask, white_region_stats
from .prompt_composer import compose_base, compose_batch, compose_enhancement, compose_single
from .providers import ProviderAdapter, ProviderError, ProviderSet, create_default_adapters

logger = logging.getLogger(__name__)

BASE_PARAMS = GenerationParams(strength=1.0, guidance_scale=3.5, step_count=28)


class PipelineState(str, Enum):
    IDLE = "idle"
    BASE_READY = "base_ready"
    SEQUENTIAL_IN_PROGRESS = "sequential_in_progress"
    BATCH_IN_PROGRESS = "batch_in_progress"
    ENHANCEMENT_OPTIONAL = "enhancement_optional"
    DONE = "done"


@dataclass
class StepOutcome:
    canvas: Canvas
    provider: str = "none"
    degraded: bool = False
    failed_steps: list[str] = field(default_factory=list)


def _decode(payload: bytes, like: Canvas) -> Canvas:
    try:
        return Canvas.from_payload(payload, like.width, like.height)
    except ValueError as e:
        raise ProviderError(str(e)) from e


class CompositingPipeline:
    def __init__(
        self,
        providers: Optional[ProviderSet] = None,
        output_dir: Optional[Path] = None,
        generate_base: bool = False,
    ) -> None:
        self.providers = providers if providers is not None else create_default_adapters()
        self.output_dir = output_dir
        self.generate_base = generate_base
        self.state = PipelineState.IDLE

    def fork(self) -> "CompositingPipeline":
        """A pipeline sharing providers and storage but with its own state."""
        return CompositingPipeline(self.providers, self.output_dir, self.generate_base)

    def _transition(self, state: PipelineState) -> None:
        logger.debug(f"Pipeline {self.state.value} → {state.value}")
        self.state = state

    # ------------------------------------------------------------------ #
    # Provider selection                                                   #
    # ------------------------------------------------------------------ #

    def _editor(self) -> Optional[ProviderAdapter]:
        """Masked inpainting when configured; reference conditioning is the fallback."""
        return (
            self.providers.for_capability(ProviderCapability.MASKED_INPAINT)
            or self.providers.for_capability(ProviderCapability.REFERENCE_CONDITIONED)
        )

    def _enhancer(self) -> Optional[ProviderAdapter]:
        return (
            self.providers.for_capability(ProviderCapability.REFERENCE_CONDITIONED)
            or self.providers.for_capability(ProviderCapability.MASKED_INPAINT)
        )

    # ------------------------------------------------------------------ #
    # Base canvas                                                          #
    # ------------------------------------------------------------------ #

    def ensure_base_canvas(self, layout: GardenLayout) -> Canvas:
        width, height = resolve_dimensions(layout.canvas_width, layout.canvas_height)
        if layout.base_canvas is not None:
            return Canvas.from_payload(layout.base_canvas.pixels, width, height)
        return create_empty_garden_base(width, height)

    async def generate_base_canvas(self, layout: GardenLayout) -> StepOutcome:
        fallback = self.ensure_base_canvas(layout)
        adapter = self.providers.for_capability(ProviderCapability.TEXT_TO_IMAGE)
        if adapter is None or layout.base_canvas is not None:
            return StepOutcome(canvas=fallback)

        prompt = compose_base(layout)
        try:
            payload = await adapter.generate(prompt.text, prompt.negative, fallback, None, BASE_PARAMS)
            return StepOutcome(canvas=_decode(payload, fallback), provider=adapter.name)
        except ProviderError as e:
            logger.warning(f"Base canvas generation via {adapter.name} failed, using drawn bed: {e}")
            return StepOutcome(canvas=fallback, provider=adapter.name, degraded=True, failed_steps=["base canvas"])

    # ------------------------------------------------------------------ #
    # Strategies                                                           #
    # ------------------------------------------------------------------ #

    async def _add_plant(
        self,
        adapter: ProviderAdapter,
        canvas: Canvas,
        placement: PlantPlacement,
        season: str,
        bed_width_m: float,
        bed_length_m: float,
    ) -> Canvas:
        circle = placement_to_circle(placement, canvas.width, canvas.height)
        mask = build_single_mask(canvas.size, circle)
        prompt = compose_single(placement, season, bed_width_m, bed_length_m)
        payload = await adapter.generate(prompt.text, prompt.negative, canvas, mask, SEQUENTIAL_PARAMS)
        return _decode(payload, canvas)

    async def run_sequential(
        self,
        canvas: Canvas,
        placements: Sequence[PlantPlacement],
        season: str,
        bed_width_m: float = 10.0,
        bed_length_m: float = 10.0,
    ) -> StepOutcome:
        adapter = self._editor()
        if adapter is None:
            logger.warning("[sequential] no image editing provider configured, returning base canvas")
            return StepOutcome(canvas=canvas, degraded=bool(placements),
                               failed_steps=[p.label() for p in placements])

        current = canvas
        failed: list[str] = []
        total = len(placements)
        for index, placement in enumerate(placements, start=1):
            logger.info(f"[sequential] {index}/{total} adding {placement.label()} via {adapter.name}")
            try:
                current = await self._add_plant(adapter, current, placement, season, bed_width_m, bed_length_m)
            except ProviderError as e:
                logger.warning(
                    f"[sequential] {index}/{total} {placement.label()} "
                    f"({placement.size_category.value}) failed, keeping previous canvas: {e}"
                )
                failed.append(placement.label())

        return StepOutcome(canvas=current, provider=adapter.name, degraded=bool(failed), failed_steps=failed)

    async def run_batch(
        self,
        canvas: Canvas,
        placements: Sequence[PlantPlacement],
        season: str,
        style: RenderStyle | str = RenderStyle.PHOTOREALISTIC,
        bed_width_m: float = 10.0,
        bed_length_m: float = 10.0,
    ) -> StepOutcome:
        labels = [p.label() for p in placements]
        adapter = self._editor()
        if adapter is None:
            logger.warning("[batch] no image editing provider configured, returning base canvas")
            return StepOutcome(canvas=canvas, degraded=bool(placements), failed_steps=labels)
        if not placements:
            return StepOutcome(canvas=canvas, provider=adapter.name)

        circles = [placement_to_circle(p, canvas.width, canvas.height) for p in placements]
        mask = build_combined_mask(canvas.size, circles)
        prompt = compose_batch(placements, season, style, bed_width_m, bed_length_m)
        coverage = white_region_stats(mask)[3]
        logger.info(
            f"[batch] {len(placements)} plants via {adapter.name}, mask covers {coverage:.1%} of canvas"
        )

        try:
            payload = await adapter.generate(prompt.text, prompt.negative, canvas, mask, BATCH_PARAMS)
            return StepOutcome(canvas=_decode(payload, canvas), provider=adapter.name)
        except ProviderError as e:
            logger.warning(f"[batch] call failed for {', '.join(labels)}, returning original canvas: {e}")
            return StepOutcome(canvas=canvas, provider=adapter.name, degraded=True, failed_steps=labels)

    async def run_enhancement(
        self,
        canvas: Canvas,
        placements: Sequence[PlantPlacement] = (),
        season: str = "summer",
        style: RenderStyle | str = RenderStyle.PHOTOREALISTIC,
        params: GenerationParams = ENHANCEMENT_PARAMS,
        bed_width_m: float = 10.0,
        bed_length_m: float = 10.0,
    ) -> StepOutcome:
        """Low-strength re-conditioning; plants stay where they are."""
        low, high = ENHANCEMENT_STRENGTH_RANGE
        params = dataclasses.replace(params, strength=min(max(params.strength, low), high))

        adapter = self._enhancer()
        if adapter is None:
            logger.warning("[enhance] no provider configured, returning canvas unenhanced")
            return StepOutcome(canvas=canvas, degraded=True, failed_steps=["enhancement"])

        mask = None
        if adapter.capability == ProviderCapability.MASKED_INPAINT:
            mask = build_full_mask(canvas.size)
        prompt = compose_enhancement(placements, season, style, bed_width_m, bed_length_m)
        logger.info(f"[enhance] strength {params.strength} via {adapter.name}")

        try:
            payload = await adapter.generate(prompt.text, prompt.negative, canvas, mask, params)
            return StepOutcome(canvas=_decode(payload, canvas), provider=adapter.name)
        except ProviderError as e:
            logger.warning(f"[enhance] failed via {adapter.name}, keeping unenhanced canvas: {e}")
            return StepOutcome(canvas=canvas, provider=adapter.name, degraded=True, failed_steps=["enhancement"])

    # ------------------------------------------------------------------ #
    # Entry points                                                         #
    # ------------------------------------------------------------------ #

    async def compose(self, layout: GardenLayout, base: Optional[Canvas] = None) -> StepOutcome:
        """Base canvas + strategy, without enhancement or persistence."""
        self._transition(PipelineState.IDLE)
        width, height = resolve_dimensions(layout.canvas_width, layout.canvas_height)

        base_failures: list[str] = []
        if base is not None:
            base = Canvas.from_payload(base.pixels, width, height)
        elif self.generate_base:
            base_outcome = await self.generate_base_canvas(layout)
            base = base_outcome.canvas
            base_failures = base_outcome.failed_steps
        else:
            base = self.ensure_base_canvas(layout)
        self._transition(PipelineState.BASE_READY)

        strategy = GenerationStrategy(layout.strategy)
        if strategy == GenerationStrategy.SEQUENTIAL:
            self._transition(PipelineState.SEQUENTIAL_IN_PROGRESS)
            outcome = await self.run_sequential(
                base, layout.placements, layout.season, layout.bed_width_m, layout.bed_length_m
            )
        else:
            self._transition(PipelineState.BATCH_IN_PROGRESS)
            outcome = await self.run_batch(
                base, layout.placements, layout.season, layout.style, layout.bed_width_m, layout.bed_length_m
            )

        if base_failures:
            outcome.failed_steps = base_failures + outcome.failed_steps
            outcome.degraded = True
        return outcome

    async def run(self, layout: GardenLayout) -> GenerationResult:
        strategy = GenerationStrategy(layout.strategy)
        outcome = await self.compose(layout)
        self._transition(PipelineState.ENHANCEMENT_OPTIONAL)

        kind = "inpainted-garden"
        provider = outcome.provider
        if layout.enhance:
            enhanced = await self.run_enhancement(
                outcome.canvas,
                layout.placements,
                layout.season,
                layout.style,
                bed_width_m=layout.bed_width_m,
                bed_length_m=layout.bed_length_m,
            )
            outcome = StepOutcome(
                canvas=enhanced.canvas,
                provider=f"{provider}+{enhanced.provider}",
                degraded=outcome.degraded or enhanced.degraded,
                failed_steps=outcome.failed_steps + enhanced.failed_steps,
            )
            provider = outcome.provider
            kind = "enhanced-garden"

        ref = storage.save_canvas(outcome.canvas, kind, strategy.value, self.output_dir)
        self._transition(PipelineState.DONE)
        if outcome.degraded:
            logger.warning(f"[{strategy.value}] finished degraded ({ref}): {outcome.failed_steps}")
        return GenerationResult(
            artifact_ref=ref,
            strategy=strategy,
            provider=provider,
            degraded=outcome.degraded,
            failed_steps=tuple(outcome.failed_steps),
        )

    async def enhance_artifact(
        self,
        artifact_ref: str,
        placements: Sequence[PlantPlacement] = (),
        season: str = "summer",
        style: RenderStyle | str = RenderStyle.PHOTOREALISTIC,
    ) -> GenerationResult:
        """
        Run the enhancement pass over a previously stored render or sprite composite.
        Raises FileNotFoundError / ValueError when the reference does not load.
        """
        canvas = storage.load_canvas(artifact_ref, self.output_dir)
        self._transition(PipelineState.ENHANCEMENT_OPTIONAL)
        outcome = await self.run_enhancement(canvas, placements, season, style)

        ref = storage.save_canvas(outcome.canvas, "enhanced-garden", None, self.output_dir)
        self._transition(PipelineState.DONE)
        if outcome.degraded:
            logger.warning(f"[enhance] {artifact_ref} stored unenhanced as {ref}")
        return GenerationResult(
            artifact_ref=ref,
            strategy=None,
            provider=outcome.provider,
            degraded=outcome.degraded,
            failed_steps=tuple(outcome.failed_steps),
        )
