"""
Axis-aligned box primitives in pixel space (top-left origin).

All operations are pure and return new ``Box`` instances.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

Point = Tuple[float, float]


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        # negative extents collapse to a degenerate box
        if self.width < 0:
            object.__setattr__(self, "width", 0)
        if self.height < 0:
            object.__setattr__(self, "height", 0)

    @classmethod
    def from_xyxy(cls, x0: float, y0: float, x1: float, y1: float) -> "Box":
        return cls(min(x0, x1), min(y0, y1), abs(x1 - x0), abs(y1 - y0))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Box":
        return cls(
            x=float(data.get("x", 0)),
            y=float(data.get("y", 0)),
            width=float(data.get("width", data.get("w", 0))),
            height=float(data.get("height", data.get("h", 0))),
        )

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Point:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def is_degenerate(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.right, self.bottom)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    def inset(self, dx: float, dy: Optional[float] = None) -> "Box":
        """Shrink by ``dx``/``dy`` on every side (negative values grow)."""
        if dy is None:
            dy = dx
        return Box(self.x + dx, self.y + dy, self.width - 2 * dx, self.height - 2 * dy)

    def expand_ratio(self, ratio: float) -> "Box":
        """Grow by ``ratio`` of the extent on each side."""
        return self.inset(-self.width * ratio, -self.height * ratio)

    def clamp_to(self, width: float, height: float) -> "Box":
        x0 = min(max(self.x, 0), width)
        y0 = min(max(self.y, 0), height)
        x1 = min(max(self.right, 0), width)
        y1 = min(max(self.bottom, 0), height)
        return Box.from_xyxy(x0, y0, max(x0, x1), max(y0, y1))


def distance_centers(a: Box, b: Box) -> float:
    ax, ay = a.center
    bx, by = b.center
    return math.hypot(ax - bx, ay - by)


def intersection(a: Box, b: Box) -> Optional[Box]:
    x0 = max(a.x, b.x)
    y0 = max(a.y, b.y)
    x1 = min(a.right, b.right)
    y1 = min(a.bottom, b.bottom)
    if x1 <= x0 or y1 <= y0:
        return None
    return Box.from_xyxy(x0, y0, x1, y1)


def intersection_over_union(a: Box, b: Box) -> float:
    if a.is_degenerate or b.is_degenerate:
        return 0.0
    inter = intersection(a, b)
    if inter is None:
        return 0.0
    union_area = a.area + b.area - inter.area
    if union_area <= 0:
        return 0.0
    return min(1.0, inter.area / union_area)


def union(a: Box, b: Box) -> Box:
    """Smallest box containing both; a degenerate operand is ignored."""
    if a.is_degenerate and not b.is_degenerate:
        return Box(b.x, b.y, b.width, b.height)
    if b.is_degenerate and not a.is_degenerate:
        return Box(a.x, a.y, a.width, a.height)
    return Box.from_xyxy(
        min(a.x, b.x), min(a.y, b.y), max(a.right, b.right), max(a.bottom, b.bottom)
    )


def union_all(boxes: Iterable[Box]) -> Optional[Box]:
    out: Optional[Box] = None
    for bb in boxes:
        out = bb if out is None else union(out, bb)
    return out


def contains(box: Box, point: Point) -> bool:
    px, py = point
    return box.x <= px <= box.right and box.y <= py <= box.bottom


def contains_box(outer: Box, inner: Box) -> bool:
    return (
        outer.x <= inner.x
        and outer.y <= inner.y
        and inner.right <= outer.right
        and inner.bottom <= outer.bottom
    )


def axis_gaps(a: Box, b: Box) -> Tuple[float, float]:
    """Edge-to-edge gaps (dx, dy); 0 on an axis where the boxes overlap."""
    dx = max(0.0, max(a.x - b.right, b.x - a.right))
    dy = max(0.0, max(a.y - b.bottom, b.y - a.bottom))
    return dx, dy
