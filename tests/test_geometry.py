"""Tests for box geometry helpers."""

import pytest

from mangaflow.core.geometry import (
    Box,
    axis_gaps,
    contains,
    contains_box,
    distance_centers,
    intersection,
    intersection_over_union,
    union,
    union_all,
)

BOXES = [
    Box(0, 0, 10, 10),
    Box(5, 5, 10, 10),
    Box(20, 20, 5, 30),
    Box(0, 0, 100, 4),
    Box(3.5, 1.25, 7.5, 9),
]


class TestBox:
    """Box construction and derived values."""

    def test_negative_extent_collapses(self):
        b = Box(10, 10, -5, 3)
        assert b.width == 0
        assert b.is_degenerate

    def test_from_xyxy_normalizes_corners(self):
        assert Box.from_xyxy(30, 40, 10, 20) == Box(10, 20, 20, 20)

    def test_from_dict_accepts_short_keys(self):
        assert Box.from_dict({"x": 1, "y": 2, "w": 3, "h": 4}) == Box(1, 2, 3, 4)
        assert Box.from_dict({"x": 1, "y": 2, "width": 3, "height": 4}) == Box(1, 2, 3, 4)

    def test_center_area_edges(self):
        b = Box(10, 20, 30, 40)
        assert b.center == (25, 40)
        assert b.area == 1200
        assert (b.right, b.bottom) == (40, 60)

    def test_expand_ratio(self):
        assert Box(100, 100, 50, 20).expand_ratio(0.1) == Box(95, 98, 60, 24)

    def test_clamp_to_image(self):
        clamped = Box(-10, 190, 50, 40).clamp_to(300, 200)
        assert clamped == Box(0, 190, 40, 10)

    def test_clamp_fully_outside_is_degenerate(self):
        assert Box(400, 400, 10, 10).clamp_to(300, 200).is_degenerate


class TestIoU:
    """Intersection-over-union properties."""

    @pytest.mark.parametrize("a", BOXES)
    @pytest.mark.parametrize("b", BOXES)
    def test_symmetric(self, a, b):
        assert intersection_over_union(a, b) == pytest.approx(intersection_over_union(b, a))

    @pytest.mark.parametrize("a", BOXES)
    def test_self_is_one(self, a):
        assert intersection_over_union(a, a) == pytest.approx(1.0)

    def test_disjoint_is_zero(self):
        assert intersection_over_union(Box(0, 0, 10, 10), Box(50, 50, 10, 10)) == 0.0
        assert intersection(Box(0, 0, 10, 10), Box(10, 0, 10, 10)) is None

    def test_partial_overlap(self):
        # 25 / (100 + 100 - 25)
        assert intersection_over_union(Box(0, 0, 10, 10), Box(5, 5, 10, 10)) == pytest.approx(25 / 175)

    def test_degenerate_is_zero(self):
        assert intersection_over_union(Box(0, 0, 0, 10), Box(0, 0, 10, 10)) == 0.0


class TestUnion:
    """Union and containment."""

    @pytest.mark.parametrize("a", BOXES)
    @pytest.mark.parametrize("b", BOXES)
    def test_union_contains_both(self, a, b):
        u = union(a, b)
        assert contains_box(u, a)
        assert contains_box(u, b)

    def test_union_ignores_degenerate(self):
        assert union(Box(0, 0, 0, 0), Box(50, 50, 10, 10)) == Box(50, 50, 10, 10)

    def test_union_all(self):
        assert union_all([]) is None
        assert union_all([Box(0, 0, 1, 1), Box(9, 9, 1, 1)]) == Box(0, 0, 10, 10)

    def test_contains_is_inclusive(self):
        b = Box(0, 0, 10, 10)
        assert contains(b, (10, 10))
        assert not contains(b, (10.01, 5))


class TestDistances:
    """Centre distance and per-axis gaps."""

    def test_distance_centers(self):
        assert distance_centers(Box(0, 0, 2, 2), Box(3, 4, 2, 2)) == pytest.approx(5.0)

    def test_axis_gaps(self):
        assert axis_gaps(Box(0, 0, 10, 10), Box(15, 2, 10, 10)) == (5, 0)
        assert axis_gaps(Box(0, 0, 10, 10), Box(0, 30, 10, 10)) == (0, 20)
