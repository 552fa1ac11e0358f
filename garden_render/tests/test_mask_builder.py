"""Unit tests for mask_builder.py."""
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

import pytest

from garden_render.services.garden_model import Circle, PlantPlacement, SizeCategory
from garden_render.services.geometry import placement_to_circle
from garden_render.services.mask_builder import (
    OUTER_RING_VALUE,
    build_combined_mask,
    build_full_mask,
    build_single_mask,
    white_region_stats,
)


# ─────────────────────────────────────────────────────────────────────────────
# Tests: single mask
# ─────────────────────────────────────────────────────────────────────────────

class TestSingleMask:
    def test_size_and_mode(self):
        mask = build_single_mask((256, 192), Circle(100, 80, 20))
        img = mask.to_image()
        assert img.size == (256, 192)
        assert img.mode == "L"

    def test_region_matches_circle(self):
        mask = build_single_mask((256, 256), Circle(128, 96, 30))
        cx, cy, r, _ = white_region_stats(mask)
        assert abs(cx - 128) <= 1.0
        assert abs(cy - 96) <= 1.0
        assert abs(r - 30) <= 1.5

    def test_outside_is_black(self):
        img = build_single_mask((128, 128), Circle(64, 64, 10)).to_image()
        assert img.getpixel((0, 0)) == 0
        assert img.getpixel((64, 64)) == 255

    def test_region_from_placement(self):
        p = PlantPlacement("Japanese Maple", 70, 25, SizeCategory.LARGE)
        circle = placement_to_circle(p, 640, 448)
        cx, cy, r, _ = white_region_stats(build_single_mask((640, 448), circle))
        # Clipped at the top edge, so only the horizontal center is exact.
        assert abs(cx - circle.center_x) <= 1.0
        assert r <= circle.radius + 1.5

    def test_deterministic(self):
        c = Circle(50.5, 40.25, 12)
        assert build_single_mask((128, 128), c).pixels == build_single_mask((128, 128), c).pixels


# ─────────────────────────────────────────────────────────────────────────────
# Tests: combined / full masks
# ─────────────────────────────────────────────────────────────────────────────

class TestCombinedMask:
    def test_core_and_ring_values(self):
        img = build_combined_mask((256, 256), [Circle(128, 128, 50)]).to_image()
        assert img.getpixel((128, 128)) == 255
        assert img.getpixel((128 + 45, 128)) == OUTER_RING_VALUE
        assert img.getpixel((128 + 60, 128)) == 0

    def test_overlapping_ring_never_dims_core(self):
        a = Circle(100, 128, 50)
        b = Circle(150, 128, 50)
        img = build_combined_mask((256, 256), [a, b]).to_image()
        # Inside a's core, inside b's outer ring.
        assert img.getpixel((130, 128)) == 255
        assert img.getpixel((120, 128)) == 255

    def test_union_contains_each_center(self):
        circles = [Circle(40, 40, 10), Circle(200, 150, 20)]
        img = build_combined_mask((256, 192), circles).to_image()
        for c in circles:
            assert img.getpixel((int(c.center_x), int(c.center_y))) == 255

    def test_empty_list(self):
        mask = build_combined_mask((128, 128), [])
        assert white_region_stats(mask) == (0.0, 0.0, 0.0, 0.0)


class TestFullMask:
    def test_everything_white(self):
        mask = build_full_mask((128, 64))
        _, _, _, coverage = white_region_stats(mask)
        assert coverage == pytest.approx(1.0)
        assert mask.to_image().getextrema() == (255, 255)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
