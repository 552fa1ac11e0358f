"""
Prompt Composer — natural-language prompts for each generation step.

Every prompt comes with a negative fragment listing the failure modes we
have seen from the backends: duplicated plants, stylization drift, and the
model repainting the whole scene instead of the masked region.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .garden_model import GardenLayout, PlantPlacement, RenderStyle, size_scale
from .geometry import depth_band, depth_phrase, horizontal_band

SEASON_DESCRIPTIONS = {
    "spring": "early spring with fresh growth",
    "summer": "summer in full bloom",
    "fall": "autumn with warm colors",
    "autumn": "autumn with warm colors",
    "winter": "winter with dormant plants",
}
DEFAULT_SEASON_DESCRIPTION = "lush garden"

STYLE_DESCRIPTIONS = {
    RenderStyle.PHOTOREALISTIC: "photorealistic",
    RenderStyle.ARTISTIC: "artistic illustration",
    RenderStyle.WATERCOLOR: "watercolor painting style",
}

STYLIZATION_DRIFT = "cartoon, anime, illustration, painting, blurry, distorted"
SCENE_REGENERATION = (
    "changed background, repainted lawn, moved garden bed, different camera angle, "
    "full scene regeneration"
)


@dataclass(frozen=True)
class ComposedPrompt:
    text: str
    negative: str


def season_description(season: Optional[str]) -> str:
    if not season:
        return DEFAULT_SEASON_DESCRIPTION
    return SEASON_DESCRIPTIONS.get(season.strip().lower(), DEFAULT_SEASON_DESCRIPTION)


def style_description(style: RenderStyle | str) -> str:
    try:
        return STYLE_DESCRIPTIONS[RenderStyle(style)]
    except ValueError:
        return STYLE_DESCRIPTIONS[RenderStyle.PHOTOREALISTIC]


def _drift_terms(style: RenderStyle | str) -> str:
    if style_description(style) == STYLE_DESCRIPTIONS[RenderStyle.PHOTOREALISTIC]:
        return STYLIZATION_DRIFT
    return "blurry, distorted"


def _bed_phrase(bed_width_m: float, bed_length_m: float) -> str:
    return f"{bed_width_m:g}x{bed_length_m:g} meter garden"


def compose_single(
    placement: PlantPlacement,
    season: str,
    bed_width_m: float = 10.0,
    bed_length_m: float = 10.0,
) -> ComposedPrompt:
    scale = size_scale(placement.size_category)
    season_desc = season_description(placement.season_override or season)
    depth = depth_phrase(placement.y_percent)

    text = (
        f"In a {_bed_phrase(bed_width_m, bed_length_m)}, add ONE {scale.single_descriptor} "
        f"{placement.species_name} ({scale.scale_phrase}) {depth}, inside the masked region only, "
        f"{season_desc}, natural lighting, photorealistic, proper scale to garden size, "
        "single plant only, no duplicates, maintain correct proportions, "
        "leave everything outside the masked region unchanged"
    )
    negative = (
        f"multiple {placement.species_name}, two plants, duplicate plants, extra plants, "
        f"{STYLIZATION_DRIFT}, {SCENE_REGENERATION}"
    )
    return ComposedPrompt(text=text, negative=negative)


def batch_clause(placement: PlantPlacement) -> str:
    scale = size_scale(placement.size_category)
    return (
        f"ONE {scale.batch_qualifier} {placement.species_name} {scale.height_hint} "
        f"in the {horizontal_band(placement.x_percent)} {depth_band(placement.y_percent)}"
    )


def compose_batch(
    placements: Sequence[PlantPlacement],
    season: str,
    style: RenderStyle | str = RenderStyle.PHOTOREALISTIC,
    bed_width_m: float = 10.0,
    bed_length_m: float = 10.0,
) -> ComposedPrompt:
    count = len(placements)
    clauses = ", ".join(batch_clause(p) for p in placements)

    text = (
        f"A {_bed_phrase(bed_width_m, bed_length_m)} with EXACTLY {count} plants: {clauses}. "
        f"{season_description(season)}, {style_description(style)}, proper scale to garden size, "
        "natural lighting and shadows, no duplicate plants, only the specified plants"
    )
    negative = (
        f"{count + 1} plants, more than {count} plants, fewer than {count} plants, "
        "extra plants, duplicate plants, substitute plants, wrong plants, crowded, "
        f"overlapping plants, {_drift_terms(style)}, {SCENE_REGENERATION}"
    )
    return ComposedPrompt(text=text, negative=negative)


def compose_enhancement(
    placements: Sequence[PlantPlacement],
    season: str,
    style: RenderStyle | str = RenderStyle.PHOTOREALISTIC,
    bed_width_m: float = 10.0,
    bed_length_m: float = 10.0,
) -> ComposedPrompt:
    plant_lines = "\n".join(
        f"{i}. {p.species_name} at ({p.x_percent:g}%, {p.y_percent:g}%): "
        f"{size_scale(p.size_category).scale_phrase}"
        for i, p in enumerate(placements, start=1)
    )
    text = f"""Make this {_bed_phrase(bed_width_m, bed_length_m)} look like a {style_description(style)} photograph, {season_description(season)}.

PLANTS ALREADY IN THE IMAGE:
{plant_lines or "(none)"}

RULES:
1. Increase photorealism, lighting, shadows and fine detail only.
2. Do NOT move, add or remove any plant.
3. Do NOT change the composition, camera angle or garden bed outline.
4. Blend plants naturally into the scene so they do not look like overlaid sprites."""
    negative = (
        "moved plants, added plants, removed plants, new objects, changed composition, "
        f"different camera angle, {_drift_terms(style)}"
    )
    return ComposedPrompt(text=text, negative=negative)


def compose_base(layout: GardenLayout) -> ComposedPrompt:
    text = (
        f"An empty {layout.shape} garden bed of bare dark soil framed by natural stone edging, "
        f"in a {_bed_phrase(layout.bed_width_m, layout.bed_length_m)} lawn, "
        f"{season_description(layout.season)}, eye-level view from the front edge, "
        f"{style_description(layout.style)}, natural daylight, no plants in the bed"
    )
    negative = f"plants in the bed, flowers, shrubs, trees in the bed, people, text, {_drift_terms(layout.style)}"
    return ComposedPrompt(text=text, negative=negative)
