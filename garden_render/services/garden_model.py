"""
Garden Model — core compositing domain model.

A GardenLayout holds plant placements on a 2-D bed (percent coordinates),
and the pipeline turns it into a Canvas through successive Mask-guided
generation calls. Everything here is plain data: no network, no disk.
"""
from __future__ import annotations

import io
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional

from PIL import Image, UnidentifiedImageError


class SizeCategory(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class GenerationStrategy(str, Enum):
    SEQUENTIAL = "sequential"
    BATCH = "batch"


class ProviderCapability(str, Enum):
    TEXT_TO_IMAGE = "text_to_image"
    REFERENCE_CONDITIONED = "reference_conditioned"
    MASKED_INPAINT = "masked_inpaint"


class RenderStyle(str, Enum):
    PHOTOREALISTIC = "photorealistic"
    ARTISTIC = "artistic"
    WATERCOLOR = "watercolor"


# --------------------------------------------------------------------------- #
# Physical scale lookup                                                        #
# --------------------------------------------------------------------------- #

MIN_RADIUS_FRACTION = 0.01
MAX_RADIUS_FRACTION = 0.25


@dataclass(frozen=True)
class SizeScale:
    category: SizeCategory
    height_range_cm: tuple[int, int]
    radius_fraction: float       # of canvas width
    single_descriptor: str
    batch_qualifier: str
    scale_phrase: str
    height_hint: str


# Calibrated for a 10×10 m bed rendered ~800 px wide (1 m ≈ 80 px).
SIZE_SCALES: dict[SizeCategory, SizeScale] = {
    SizeCategory.SMALL: SizeScale(
        category=SizeCategory.SMALL,
        height_range_cm=(20, 30),
        radius_fraction=0.025,
        single_descriptor="small, compact",
        batch_qualifier="small",
        scale_phrase="30cm tall herb",
        height_hint="(30cm tall)",
    ),
    SizeCategory.MEDIUM: SizeScale(
        category=SizeCategory.MEDIUM,
        height_range_cm=(80, 100),
        radius_fraction=0.075,
        single_descriptor="medium-sized",
        batch_qualifier="medium-sized",
        scale_phrase="1 meter tall shrub",
        height_hint="(1 meter tall)",
    ),
    SizeCategory.LARGE: SizeScale(
        category=SizeCategory.LARGE,
        height_range_cm=(300, 400),
        radius_fraction=0.25,
        single_descriptor="large, mature",
        batch_qualifier="large mature",
        scale_phrase="3-4 meter tall tree",
        height_hint="(3-4 meters tall)",
    ),
}


def validate_scale_table(table: dict[SizeCategory, SizeScale]) -> None:
    """Raise ValueError unless radius fractions increase small → large within bounds."""
    order = [SizeCategory.SMALL, SizeCategory.MEDIUM, SizeCategory.LARGE]
    missing = [c.value for c in order if c not in table]
    if missing:
        raise ValueError(f"Scale table missing categories: {missing}")

    fractions = [table[c].radius_fraction for c in order]
    for category, fraction in zip(order, fractions):
        if not MIN_RADIUS_FRACTION <= fraction <= MAX_RADIUS_FRACTION:
            raise ValueError(
                f"Radius fraction for {category.value} is {fraction}, "
                f"outside [{MIN_RADIUS_FRACTION}, {MAX_RADIUS_FRACTION}]"
            )
    if not fractions[0] < fractions[1] < fractions[2]:
        raise ValueError(f"Radius fractions must increase with size: {fractions}")


validate_scale_table(SIZE_SCALES)


def radius_fraction(category: SizeCategory) -> float:
    return SIZE_SCALES[SizeCategory(category)].radius_fraction


def size_scale(category: SizeCategory) -> SizeScale:
    return SIZE_SCALES[SizeCategory(category)]


# --------------------------------------------------------------------------- #
# Species → size classification                                                #
# --------------------------------------------------------------------------- #

DEFAULT_SIZE_KEYWORDS: dict[SizeCategory, tuple[str, ...]] = {
    SizeCategory.LARGE: ("maple", "oak", "tree"),
    SizeCategory.SMALL: ("lavender", "thyme", "sage", "rosemary", "herb"),
}


@dataclass
class SizeClassifier:
    """Keyword lookup on species names. Coarse; meant to be replaced by data."""

    keywords: dict[SizeCategory, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_SIZE_KEYWORDS)
    )
    default: SizeCategory = SizeCategory.MEDIUM

    def classify(self, species_name: str) -> SizeCategory:
        name = species_name.lower()
        for category, words in self.keywords.items():
            if any(word in name for word in words):
                return category
        return self.default

    @classmethod
    def from_json(cls, path: str | Path) -> "SizeClassifier":
        """Load `{"large": ["maple", ...], "small": [...]}` from a JSON file."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        keywords = {
            SizeCategory(category): tuple(word.lower() for word in words)
            for category, words in raw.items()
            if category != "default"
        }
        default = SizeCategory(raw.get("default", SizeCategory.MEDIUM.value))
        return cls(keywords=keywords, default=default)


# --------------------------------------------------------------------------- #
# Layout                                                                       #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class PlantPlacement:
    species_name: str
    x_percent: float          # 0 = left edge, 100 = right edge
    y_percent: float          # 0 = back of bed, 100 = front
    size_category: SizeCategory = SizeCategory.MEDIUM
    season_override: Optional[str] = None

    def __post_init__(self) -> None:
        for axis, value in (("x_percent", self.x_percent), ("y_percent", self.y_percent)):
            if not 0 <= value <= 100:
                raise ValueError(f"{axis} must be within [0, 100], got {value}")
        object.__setattr__(self, "size_category", SizeCategory(self.size_category))

    def label(self) -> str:
        return f"{self.species_name} @ ({self.x_percent:g}%, {self.y_percent:g}%)"


@dataclass
class GardenLayout:
    placements: list[PlantPlacement] = field(default_factory=list)
    season: str = "summer"
    style: RenderStyle = RenderStyle.PHOTOREALISTIC
    strategy: GenerationStrategy = GenerationStrategy.SEQUENTIAL
    bed_width_m: float = 10.0
    bed_length_m: float = 10.0
    shape: str = "rectangle"
    canvas_width: Optional[int] = None
    canvas_height: Optional[int] = None
    enhance: bool = False
    base_canvas: Optional["Canvas"] = None

    @property
    def plant_count(self) -> int:
        return len(self.placements)


# --------------------------------------------------------------------------- #
# Rasters                                                                      #
# --------------------------------------------------------------------------- #

def encode_png(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


@dataclass(frozen=True)
class Canvas:
    pixels: bytes             # PNG
    width: int
    height: int

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    def to_image(self) -> Image.Image:
        return Image.open(io.BytesIO(self.pixels)).convert("RGB")

    @classmethod
    def from_image(cls, image: Image.Image) -> "Canvas":
        rgb = image.convert("RGB")
        return cls(pixels=encode_png(rgb), width=rgb.width, height=rgb.height)

    @staticmethod
    def _open(payload: bytes) -> Image.Image:
        try:
            img = Image.open(io.BytesIO(payload))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ValueError(f"Unreadable image payload: {e}") from e
        return img

    @classmethod
    def decode(cls, payload: bytes) -> "Canvas":
        """Decode any readable image at its own size. Raises ValueError."""
        return cls.from_image(cls._open(payload))

    @classmethod
    def from_payload(cls, payload: bytes, width: int, height: int) -> "Canvas":
        """
        Normalize a backend image payload onto a width × height canvas.
        Raises ValueError when the payload is not a readable image.
        """
        img = cls._open(payload)
        if img.format == "PNG" and img.size == (width, height) and img.mode == "RGB":
            return cls(pixels=payload, width=width, height=height)

        img = img.convert("RGB")
        if img.size != (width, height):
            img = img.resize((width, height), Image.LANCZOS)
        return cls.from_image(img)


@dataclass(frozen=True)
class Mask:
    pixels: bytes             # PNG, mode L: 0 = preserve, 255 = regenerate
    width: int
    height: int

    def to_image(self) -> Image.Image:
        return Image.open(io.BytesIO(self.pixels)).convert("L")


class Circle(NamedTuple):
    center_x: float
    center_y: float
    radius: float


# --------------------------------------------------------------------------- #
# Generation parameters and results                                            #
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class GenerationParams:
    strength: float
    guidance_scale: float = 7.5
    step_count: int = 25
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.strength <= 1.0:
            raise ValueError(f"strength must be within [0, 1], got {self.strength}")


SEQUENTIAL_PARAMS = GenerationParams(strength=0.75)
BATCH_PARAMS = GenerationParams(strength=0.65)
ENHANCEMENT_PARAMS = GenerationParams(strength=0.3)
ENHANCEMENT_STRENGTH_RANGE = (0.2, 0.35)


@dataclass(frozen=True)
class GenerationResult:
    artifact_ref: str
    strategy: Optional[GenerationStrategy]
    provider: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    degraded: bool = False
    failed_steps: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "artifact_ref": self.artifact_ref,
            "strategy": self.strategy.value if self.strategy else None,
            "provider": self.provider,
            "created_at": self.created_at.isoformat(),
            "degraded": self.degraded,
            "failed_steps": list(self.failed_steps),
        }
