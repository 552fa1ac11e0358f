"""Unit tests for compositing_pipeline.py — sequential, batch and enhancement flows."""
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import io
import re

import pytest
from PIL import Image

from garden_render.services import storage
from garden_render.services.compositing_pipeline import CompositingPipeline, PipelineState
from garden_render.services.garden_model import (
    BATCH_PARAMS,
    SEQUENTIAL_PARAMS,
    Canvas,
    GardenLayout,
    GenerationParams,
    GenerationStrategy,
    PlantPlacement,
    ProviderCapability,
    SizeCategory,
)
from garden_render.services.providers import ProviderError, ProviderSet


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

def _png(width: int, height: int, color) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


class FakeAdapter:
    """Records every call; returns a distinct solid-color canvas per call."""

    def __init__(self, capability=ProviderCapability.MASKED_INPAINT, fail_on=(), name="fake"):
        self.name = name
        self.capability = capability
        self.available = True
        self.fail_on = set(fail_on)
        self.calls = []
        self.outputs = []

    async def generate(self, prompt, negative_prompt, canvas, mask=None, params=None):
        index = len(self.calls) + 1
        self.calls.append({
            "prompt": prompt,
            "negative": negative_prompt,
            "canvas": canvas,
            "mask": mask,
            "params": params,
        })
        if index in self.fail_on:
            self.outputs.append(None)
            raise ProviderError(f"call {index} failed")
        payload = _png(canvas.width, canvas.height, (index * 40 % 256, 100, 50))
        self.outputs.append(payload)
        return payload


PLACEMENTS = [
    PlantPlacement("Japanese Maple", 70, 25, SizeCategory.LARGE),
    PlantPlacement("Hosta", 30, 65, SizeCategory.MEDIUM),
    PlantPlacement("Lavender", 50, 45, SizeCategory.SMALL),
]


def _base() -> Canvas:
    return Canvas(pixels=_png(256, 192, (0, 0, 0)), width=256, height=192)


def _layout(**kwargs) -> GardenLayout:
    values = dict(placements=list(PLACEMENTS), canvas_width=256, canvas_height=192)
    values.update(kwargs)
    return GardenLayout(**values)


def _pipeline(tmp_path, **adapters) -> CompositingPipeline:
    return CompositingPipeline(providers=ProviderSet(**adapters), output_dir=tmp_path)


# ─────────────────────────────────────────────────────────────────────────────
# Tests: sequential strategy
# ─────────────────────────────────────────────────────────────────────────────

class TestSequential:
    @pytest.mark.asyncio
    async def test_each_call_builds_on_previous(self, tmp_path):
        fake = FakeAdapter()
        base = _base()
        outcome = await _pipeline(tmp_path, masked_inpaint=fake).run_sequential(base, PLACEMENTS, "summer")

        assert len(fake.calls) == 3
        assert fake.calls[0]["canvas"] is base
        assert fake.calls[1]["canvas"].pixels == fake.outputs[0]
        assert fake.calls[2]["canvas"].pixels == fake.outputs[1]
        assert outcome.canvas.pixels == fake.outputs[2]
        assert outcome.degraded is False

    @pytest.mark.asyncio
    async def test_one_prompt_and_mask_per_plant(self, tmp_path):
        fake = FakeAdapter()
        await _pipeline(tmp_path, masked_inpaint=fake).run_sequential(_base(), PLACEMENTS, "summer")

        for call, placement in zip(fake.calls, PLACEMENTS):
            assert placement.species_name in call["prompt"]
            assert call["mask"].to_image().size == (256, 192)
            assert call["params"] == SEQUENTIAL_PARAMS

    @pytest.mark.asyncio
    async def test_failed_step_keeps_previous_canvas(self, tmp_path):
        fake = FakeAdapter(fail_on={2})
        outcome = await _pipeline(tmp_path, masked_inpaint=fake).run_sequential(_base(), PLACEMENTS, "summer")

        assert len(fake.calls) == 3
        assert fake.calls[2]["canvas"].pixels == fake.outputs[0]
        assert outcome.canvas.pixels == fake.outputs[2]
        assert outcome.degraded is True
        assert outcome.failed_steps == ["Hosta @ (30%, 65%)"]

    @pytest.mark.asyncio
    async def test_trailing_failures_leave_first_result(self, tmp_path):
        fake = FakeAdapter(fail_on={2, 3})
        outcome = await _pipeline(tmp_path, masked_inpaint=fake).run_sequential(_base(), PLACEMENTS, "summer")

        assert outcome.canvas.pixels == fake.outputs[0]
        assert len(outcome.failed_steps) == 2

    @pytest.mark.asyncio
    async def test_all_failures_return_base(self, tmp_path):
        fake = FakeAdapter(fail_on={1, 2, 3})
        base = _base()
        outcome = await _pipeline(tmp_path, masked_inpaint=fake).run_sequential(base, PLACEMENTS, "summer")
        assert outcome.canvas is base

    @pytest.mark.asyncio
    async def test_unreadable_payload_counts_as_failure(self, tmp_path):
        class GarbageAdapter(FakeAdapter):
            async def generate(self, *args, **kwargs):
                await super().generate(*args, **kwargs)
                return b"<html>gateway error</html>"

        base = _base()
        outcome = await _pipeline(tmp_path, masked_inpaint=GarbageAdapter()).run_sequential(
            base, PLACEMENTS[:1], "summer"
        )
        assert outcome.canvas is base
        assert outcome.degraded is True

    @pytest.mark.asyncio
    async def test_falls_back_to_reference_provider(self, tmp_path):
        fake = FakeAdapter(capability=ProviderCapability.REFERENCE_CONDITIONED)
        outcome = await _pipeline(tmp_path, reference_conditioned=fake).run_sequential(
            _base(), PLACEMENTS, "summer"
        )
        assert len(fake.calls) == 3
        assert outcome.degraded is False


# ─────────────────────────────────────────────────────────────────────────────
# Tests: batch strategy
# ─────────────────────────────────────────────────────────────────────────────

class TestBatch:
    @pytest.mark.asyncio
    async def test_single_call(self, tmp_path):
        fake = FakeAdapter()
        outcome = await _pipeline(tmp_path, masked_inpaint=fake).run_batch(_base(), PLACEMENTS, "summer")

        assert len(fake.calls) == 1
        call = fake.calls[0]
        assert "EXACTLY 3 plants" in call["prompt"]
        assert call["params"] == BATCH_PARAMS
        assert outcome.canvas.pixels == fake.outputs[0]

    @pytest.mark.asyncio
    async def test_failure_returns_input_canvas(self, tmp_path):
        fake = FakeAdapter(fail_on={1})
        base = _base()
        outcome = await _pipeline(tmp_path, masked_inpaint=fake).run_batch(base, PLACEMENTS, "summer")

        assert outcome.canvas is base
        assert outcome.canvas.pixels == base.pixels
        assert outcome.degraded is True
        assert len(outcome.failed_steps) == 3

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_call(self, tmp_path):
        fake = FakeAdapter()
        base = _base()
        outcome = await _pipeline(tmp_path, masked_inpaint=fake).run_batch(base, [], "summer")
        assert fake.calls == []
        assert outcome.canvas is base
        assert outcome.degraded is False


# ─────────────────────────────────────────────────────────────────────────────
# Tests: enhancement
# ─────────────────────────────────────────────────────────────────────────────

class TestEnhancement:
    @pytest.mark.asyncio
    async def test_prefers_reference_provider(self, tmp_path):
        inpaint = FakeAdapter(name="inpaint")
        reference = FakeAdapter(capability=ProviderCapability.REFERENCE_CONDITIONED, name="reference")
        pipeline = _pipeline(tmp_path, masked_inpaint=inpaint, reference_conditioned=reference)

        outcome = await pipeline.run_enhancement(_base(), PLACEMENTS)

        assert inpaint.calls == []
        assert len(reference.calls) == 1
        assert reference.calls[0]["mask"] is None
        assert outcome.provider == "reference"

    @pytest.mark.asyncio
    async def test_inpaint_fallback_uses_full_mask(self, tmp_path):
        inpaint = FakeAdapter()
        await _pipeline(tmp_path, masked_inpaint=inpaint).run_enhancement(_base(), PLACEMENTS)

        mask = inpaint.calls[0]["mask"].to_image()
        assert mask.getextrema() == (255, 255)

    @pytest.mark.asyncio
    async def test_strength_clamped(self, tmp_path):
        fake = FakeAdapter(capability=ProviderCapability.REFERENCE_CONDITIONED)
        pipeline = _pipeline(tmp_path, reference_conditioned=fake)

        await pipeline.run_enhancement(_base(), PLACEMENTS, params=GenerationParams(strength=0.9))
        await pipeline.run_enhancement(_base(), PLACEMENTS, params=GenerationParams(strength=0.05))

        assert fake.calls[0]["params"].strength == 0.35
        assert fake.calls[1]["params"].strength == 0.2

    @pytest.mark.asyncio
    async def test_failure_keeps_input(self, tmp_path):
        fake = FakeAdapter(capability=ProviderCapability.REFERENCE_CONDITIONED, fail_on={1})
        base = _base()
        outcome = await _pipeline(tmp_path, reference_conditioned=fake).run_enhancement(base, PLACEMENTS)

        assert outcome.canvas is base
        assert outcome.failed_steps == ["enhancement"]

    @pytest.mark.asyncio
    async def test_no_provider(self, tmp_path):
        base = _base()
        outcome = await _pipeline(tmp_path).run_enhancement(base, PLACEMENTS)
        assert outcome.canvas is base
        assert outcome.degraded is True


# ─────────────────────────────────────────────────────────────────────────────
# Tests: run (end to end)
# ─────────────────────────────────────────────────────────────────────────────

class TestRun:
    @pytest.mark.asyncio
    async def test_sequential_writes_one_artifact(self, tmp_path):
        fake = FakeAdapter()
        pipeline = _pipeline(tmp_path, masked_inpaint=fake)

        result = await pipeline.run(_layout())

        files = list(tmp_path.iterdir())
        assert len(files) == 1
        assert re.fullmatch(r"inpainted-garden-sequential-\d+\.png", files[0].name)
        assert result.artifact_ref.endswith(files[0].name)
        assert result.strategy == GenerationStrategy.SEQUENTIAL
        assert result.degraded is False
        assert pipeline.state == PipelineState.DONE
        assert files[0].read_bytes() == fake.outputs[-1]

    @pytest.mark.asyncio
    async def test_sequential_with_failed_plant(self, tmp_path):
        fake = FakeAdapter(fail_on={2})
        pipeline = _pipeline(tmp_path, masked_inpaint=fake)

        result = await pipeline.run(_layout())

        files = list(tmp_path.iterdir())
        assert len(files) == 1
        assert re.fullmatch(r"inpainted-garden-sequential-\d+\.png", files[0].name)
        # The maple result is what the lavender step paints on.
        assert fake.calls[2]["canvas"].pixels == fake.outputs[0]
        assert files[0].read_bytes() == fake.outputs[2]
        assert result.degraded is True
        assert result.failed_steps == ("Hosta @ (30%, 65%)",)
        assert pipeline.state == PipelineState.DONE

    @pytest.mark.asyncio
    async def test_enhances_stored_composite(self, tmp_path):
        reference = FakeAdapter(capability=ProviderCapability.REFERENCE_CONDITIONED, name="reference")
        pipeline = _pipeline(tmp_path, reference_conditioned=reference)
        stored = storage.save_canvas(_base(), "composite-garden", "mechanical", tmp_path)

        result = await pipeline.enhance_artifact(stored, PLACEMENTS)

        assert reference.calls[0]["canvas"].to_image().tobytes() == _base().to_image().tobytes()
        assert "Japanese Maple" in reference.calls[0]["prompt"]
        assert re.fullmatch(r"/inpainted-gardens/enhanced-garden-\d+\.png", result.artifact_ref)
        stored_result = storage.load_canvas(result.artifact_ref, tmp_path)
        assert stored_result.to_image().tobytes() == Image.open(io.BytesIO(reference.outputs[0])).convert("RGB").tobytes()
        assert result.strategy is None
        assert result.degraded is False
        assert pipeline.state == PipelineState.DONE
        assert len(list(tmp_path.iterdir())) == 2

    @pytest.mark.asyncio
    async def test_enhance_missing_artifact(self, tmp_path):
        pipeline = _pipeline(tmp_path, reference_conditioned=FakeAdapter())
        with pytest.raises(FileNotFoundError):
            await pipeline.enhance_artifact("/inpainted-gardens/composite-garden-mechanical-1.png")
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_canvas_dimensions_snapped(self, tmp_path):
        fake = FakeAdapter()
        await _pipeline(tmp_path, masked_inpaint=fake).run(_layout(canvas_width=250, canvas_height=200))
        assert fake.calls[0]["canvas"].size == (256, 192)

    @pytest.mark.asyncio
    async def test_batch_with_enhancement(self, tmp_path):
        inpaint = FakeAdapter(name="inpaint")
        reference = FakeAdapter(capability=ProviderCapability.REFERENCE_CONDITIONED, name="reference")
        pipeline = _pipeline(tmp_path, masked_inpaint=inpaint, reference_conditioned=reference)

        result = await pipeline.run(_layout(strategy=GenerationStrategy.BATCH, enhance=True))

        files = [f.name for f in tmp_path.iterdir()]
        assert len(files) == 1
        assert files[0].startswith("enhanced-garden-batch-")
        assert result.provider == "inpaint+reference"
        assert reference.calls[0]["canvas"].pixels == inpaint.outputs[0]

    @pytest.mark.asyncio
    async def test_no_providers_still_returns_artifact(self, tmp_path):
        result = await _pipeline(tmp_path).run(_layout())

        assert result.degraded is True
        assert len(result.failed_steps) == 3
        assert len(list(tmp_path.iterdir())) == 1

    @pytest.mark.asyncio
    async def test_uses_supplied_base_canvas(self, tmp_path):
        fake = FakeAdapter()
        supplied = Canvas(pixels=_png(512, 384, (255, 0, 0)), width=512, height=384)
        await _pipeline(tmp_path, masked_inpaint=fake).run(_layout(base_canvas=supplied))

        first = fake.calls[0]["canvas"]
        assert first.size == (256, 192)
        assert first.to_image().getpixel((10, 10)) == (255, 0, 0)

    @pytest.mark.asyncio
    async def test_generated_base_canvas(self, tmp_path):
        text = FakeAdapter(capability=ProviderCapability.TEXT_TO_IMAGE, name="t2i")
        inpaint = FakeAdapter()
        pipeline = CompositingPipeline(
            providers=ProviderSet(masked_inpaint=inpaint, text_to_image=text),
            output_dir=tmp_path,
            generate_base=True,
        )

        await pipeline.run(_layout())

        assert len(text.calls) == 1
        assert text.calls[0]["mask"] is None
        assert inpaint.calls[0]["canvas"].pixels == text.outputs[0]

    @pytest.mark.asyncio
    async def test_generated_base_failure_falls_back(self, tmp_path):
        text = FakeAdapter(capability=ProviderCapability.TEXT_TO_IMAGE, fail_on={1})
        inpaint = FakeAdapter()
        pipeline = CompositingPipeline(
            providers=ProviderSet(masked_inpaint=inpaint, text_to_image=text),
            output_dir=tmp_path,
            generate_base=True,
        )

        result = await pipeline.run(_layout())

        assert result.degraded is True
        assert result.failed_steps[0] == "base canvas"
        assert len(inpaint.calls) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
