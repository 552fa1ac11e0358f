from pydantic import BaseModel, Field
from typing import Optional

from ..services.garden_model import GenerationStrategy, RenderStyle, SizeCategory


class PlantPlacementSchema(BaseModel):
    species_name: str = Field(min_length=1)
    x_percent: float = Field(ge=0, le=100)
    y_percent: float = Field(ge=0, le=100)
    size_category: Optional[SizeCategory] = None   # classified from the name when omitted
    season_override: Optional[str] = None


class RenderRequest(BaseModel):
    placements: list[PlantPlacementSchema] = []
    season: str = "summer"
    style: RenderStyle = RenderStyle.PHOTOREALISTIC
    strategy: GenerationStrategy = GenerationStrategy.SEQUENTIAL
    bed_width_m: float = Field(default=10.0, gt=0, le=200)
    bed_length_m: float = Field(default=10.0, gt=0, le=200)
    shape: str = "rectangle"
    canvas_width: Optional[int] = None
    canvas_height: Optional[int] = None
    enhance: bool = False
    base_image_base64: Optional[str] = None


class EnhanceRequest(BaseModel):
    artifact_ref: str = Field(min_length=1)     # e.g. /inpainted-gardens/composite-garden-mechanical-<ts>.png
    placements: list[PlantPlacementSchema] = []
    season: str = "summer"
    style: RenderStyle = RenderStyle.PHOTOREALISTIC
