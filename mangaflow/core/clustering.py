"""
Groups raw text detections into dialogue units ("bubbles").

Blocks are sorted into reading order, the page orientation is voted, and a
walk in that order joins each block to every bubble holding a nearby block,
fusing bubbles the block bridges. Bubbles are therefore the connected groups
of the proximity test, so re-clustering one bubble's members gives it back
whole. The thresholds are heuristics and live in
``ClusterParams`` so they can be recalibrated without code changes.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from mangaflow.core import constants as C
from mangaflow.core.geometry import Box, axis_gaps, contains, distance_centers, union_all
from mangaflow.core.types import Bubble, TextBlock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterParams:
    row_tolerance_px: float = C.DEFAULT_ROW_TOLERANCE_PX
    merge_ratio: float = C.DEFAULT_MERGE_RATIO

    # per-axis mode: edge gap across lines and centre span along a line,
    # both as multiples of the average block extent on that axis
    axis_mode: bool = False
    axis_gap_ratio: float = C.DEFAULT_AXIS_GAP_RATIO
    axis_span_ratio: float = C.DEFAULT_AXIS_SPAN_RATIO

    padding_ratio: float = C.DEFAULT_BUBBLE_PADDING_RATIO


class BaseClusterer:
    def name(self) -> str:
        raise NotImplementedError

    def cluster(self, blocks: Sequence[TextBlock]) -> List[Bubble]:
        raise NotImplementedError


# -----------------------------
# Reading order + orientation
# -----------------------------
def _band(items: List[TextBlock], key, tol: float) -> List[List[TextBlock]]:
    """Group items (pre-sorted by ``key``) into bands anchored on each band's first item."""
    bands: List[List[TextBlock]] = []
    anchor = None
    for it in items:
        k = key(it)
        if bands and abs(k - anchor) <= tol:
            bands[-1].append(it)
        else:
            bands.append([it])
            anchor = k
    return bands


def sort_reading_order(blocks: Sequence[TextBlock], orientation: str, row_tolerance: float) -> List[TextBlock]:
    """
    Horizontal: rows top to bottom, left to right inside a row.
    Vertical: columns right to left, top to bottom inside a column.
    """
    if orientation == "vertical":
        by_col = sorted(blocks, key=lambda b: (-b.bbox.right, b.bbox.y))
        cols = _band(by_col, lambda b: -b.bbox.right, row_tolerance)
        return [b for col in cols for b in sorted(col, key=lambda b: (b.bbox.y, -b.bbox.right))]

    by_row = sorted(blocks, key=lambda b: (b.bbox.y, b.bbox.x))
    rows = _band(by_row, lambda b: b.bbox.y, row_tolerance)
    return [b for row in rows for b in sorted(row, key=lambda b: (b.bbox.x, b.bbox.y))]


def detect_orientation(blocks: Sequence[TextBlock], row_tolerance: float = C.DEFAULT_ROW_TOLERANCE_PX) -> str:
    """
    Page-level orientation.

    When any block is marked vertical (by the OCR provider or ingestion), the
    majority of block orientations decides. Otherwise consecutive blocks in
    reading order vote: a pair whose vertical displacement exceeds its
    horizontal one votes vertical, the reverse votes horizontal. Ties resolve
    to horizontal.
    """
    marked = sum(1 for b in blocks if b.orientation == "vertical")
    if marked:
        return "vertical" if marked > len(blocks) - marked else "horizontal"

    ordered = sort_reading_order(blocks, "horizontal", row_tolerance)
    v_votes = h_votes = 0
    for prev, cur in zip(ordered, ordered[1:]):
        (px, py), (cx, cy) = prev.bbox.center, cur.bbox.center
        dx, dy = abs(cx - px), abs(cy - py)
        if dy > dx:
            v_votes += 1
        elif dx > dy:
            h_votes += 1
    return "vertical" if v_votes > h_votes else "horizontal"


# -----------------------------
# Proximity clustering
# -----------------------------
def bubble_box(members: Sequence[Box], padding_ratio: float) -> Box:
    """Union of ``members`` grown by ``padding_ratio`` of the extent per side, kept inside x/y >= 0."""
    bb = union_all(members)
    if bb is None:
        return Box(0, 0, 0, 0)
    padded = bb.expand_ratio(padding_ratio)
    x0 = max(0.0, padded.x)
    y0 = max(0.0, padded.y)
    return Box(x0, y0, padded.right - x0, padded.bottom - y0)


def aspect_score(box: Box) -> float:
    if box.is_degenerate:
        return 0.0
    aspect = max(box.width, box.height) / min(box.width, box.height)
    return max(0.0, 1.0 - (aspect - 1.0) / 2.0)


class ProximityClusterer(BaseClusterer):
    """Greedy reading-order walk over OCR blocks (words or lines)."""

    def __init__(self, params: Optional[ClusterParams] = None) -> None:
        self.params = params or ClusterParams()

    def name(self) -> str:
        return "proximity"

    def should_merge(self, prev: TextBlock, cur: TextBlock, orientation: str) -> bool:
        a, b = prev.bbox, cur.bbox
        p = self.params
        if not p.axis_mode:
            avg_size = (a.width + a.height + b.width + b.height) / 4.0
            return distance_centers(a, b) < p.merge_ratio * avg_size

        gap_x, gap_y = axis_gaps(a, b)
        span_x = abs(a.center[0] - b.center[0])
        span_y = abs(a.center[1] - b.center[1])
        avg_w = (a.width + b.width) / 2.0
        avg_h = (a.height + b.height) / 2.0
        if orientation == "vertical":
            # columns stack along x, characters run along y
            return gap_x <= p.axis_gap_ratio * avg_w and span_y <= p.axis_span_ratio * avg_h
        return gap_y <= p.axis_gap_ratio * avg_h and span_x <= p.axis_span_ratio * avg_w

    def _make_bubble(self, index: int, members: List[TextBlock]) -> Bubble:
        bbox = bubble_box([m.bbox for m in members], self.params.padding_ratio)
        conf = sum(min(1.0, max(0.0, m.confidence)) for m in members) / len(members)
        score = 0.6 * aspect_score(bbox) + 0.4 * conf
        return Bubble(
            id=f"bubble-{index}",
            bbox=bbox,
            member_block_ids=[m.id for m in members],
            score=max(0.0, min(1.0, score)),
        )

    def cluster(self, blocks: Sequence[TextBlock]) -> List[Bubble]:
        if not blocks:
            return []

        orientation = detect_orientation(blocks, self.params.row_tolerance_px)
        ordered = sort_reading_order(blocks, orientation, self.params.row_tolerance_px)

        rank = {id(b): i for i, b in enumerate(ordered)}
        groups: List[List[TextBlock]] = []
        for cur in ordered:
            linked = [g for g in groups if any(self.should_merge(m, cur, orientation) for m in g)]
            if not linked:
                groups.append([cur])
                continue
            # cur bridges every group it touches; the earliest one absorbs the rest
            target = linked[0]
            for g in linked[1:]:
                target.extend(g)
            groups = [g for g in groups if not any(g is other for other in linked[1:])]
            target.append(cur)

        bubbles: List[Bubble] = []
        for g in groups:
            bubbles.append(self._make_bubble(len(bubbles), sorted(g, key=lambda b: rank[id(b)])))

        logger.info(f"Clustered {len(blocks)} blocks into {len(bubbles)} bubbles ({orientation})")
        return bubbles


# -----------------------------
# Block <-> bubble lookup
# -----------------------------
def find_bubble_for_block(block: TextBlock, bubbles: Sequence[Bubble]) -> Optional[Bubble]:
    """First bubble whose box contains the block's centre."""
    center = block.bbox.center
    for bubble in bubbles:
        if contains(bubble.bbox, center):
            return bubble
    return None
