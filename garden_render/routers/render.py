"""POST /api/render, POST /api/enhance and GET /api/test/inpainting-comparison — garden rendering."""
from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from ..models.requests import EnhanceRequest, RenderRequest
from ..services import comparison
from ..services.compositing_pipeline import CompositingPipeline
from ..services.garden_model import Canvas, GardenLayout, PlantPlacement

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)


def placements_from_request(schemas) -> list[PlantPlacement]:
    classifier = comparison.default_classifier()
    return [
        PlantPlacement(
            species_name=p.species_name,
            x_percent=p.x_percent,
            y_percent=p.y_percent,
            size_category=p.size_category or classifier.classify(p.species_name),
            season_override=p.season_override,
        )
        for p in schemas
    ]


def layout_from_request(req: RenderRequest) -> GardenLayout:
    placements = placements_from_request(req.placements)

    base_canvas = None
    if req.base_image_base64:
        data = req.base_image_base64
        if data.startswith("data:"):
            data = data.split(",", 1)[1]
        try:
            raw = base64.b64decode(data, validate=True)
            base_canvas = Canvas.decode(raw)
        except (binascii.Error, ValueError) as e:
            raise HTTPException(status_code=422, detail=f"Invalid base image: {e}")

    return GardenLayout(
        placements=placements,
        season=req.season,
        style=req.style,
        strategy=req.strategy,
        bed_width_m=req.bed_width_m,
        bed_length_m=req.bed_length_m,
        shape=req.shape,
        canvas_width=req.canvas_width,
        canvas_height=req.canvas_height,
        enhance=req.enhance,
        base_canvas=base_canvas,
    )


@router.post("/render")
async def render_garden(req: RenderRequest) -> dict[str, Any]:
    """
    Render a garden layout into an image.
    Always returns an artifact; `degraded` tells the caller whether any step fell back.
    """
    layout = layout_from_request(req)
    result = await CompositingPipeline().run(layout)
    return result.to_dict()


@router.get("/test/inpainting-comparison")
async def inpainting_comparison() -> dict[str, Any]:
    """Render the reference layout with every strategy for side-by-side review."""
    try:
        results = await comparison.compare_strategies()
    except OSError as e:
        logger.error(f"Comparison run could not write artifacts: {e}")
        raise HTTPException(status_code=500, detail="Could not store comparison images")
    return {"success": True, "results": results.to_dict()}


@router.post("/enhance")
async def enhance_artifact(req: EnhanceRequest) -> dict[str, Any]:
    """Photorealize a stored render or sprite composite without moving any plant."""
    try:
        result = await CompositingPipeline().enhance_artifact(
            req.artifact_ref,
            placements_from_request(req.placements),
            req.season,
            req.style,
        )
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail=f"Artifact not found: {req.artifact_ref}")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Artifact is not a readable image: {e}")
    return result.to_dict()
