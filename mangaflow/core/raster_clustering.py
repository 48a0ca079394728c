"""
Raster bubble detection: connected regions of an edge-detected page image.

Used where pre-clustered OCR lines are not available. Produces the same
``List[Bubble]`` shape as the proximity clusterer; member blocks are assigned
by centre containment.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from mangaflow.core.clustering import BaseClusterer
from mangaflow.core.geometry import Box, contains, intersection_over_union, union
from mangaflow.core.types import Bubble, TextBlock

logger = logging.getLogger(__name__)

LAPLACIAN_KERNEL = np.array([[-1, -1, -1], [-1, 8, -1], [-1, -1, -1]], dtype=np.float32)


@dataclass(frozen=True)
class RasterParams:
    edge_threshold: int = 30
    min_region_pixels: int = 100
    min_box_area: int = 2000
    max_area_ratio: float = 0.5
    max_aspect: float = 3.0
    min_side_px: int = 30
    max_bubbles: int = 50
    merge_iou: float = 0.2


@dataclass
class _Candidate:
    bbox: Box
    area: int
    score: float = 0.0


def edge_map(bgr: np.ndarray, threshold: int = 30) -> np.ndarray:
    """Binary uint8 edge map (0/255): gray -> normalize -> blur -> Laplacian -> threshold."""
    if bgr.ndim == 3:
        gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
    else:
        gray = bgr
    gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)
    gray = cv2.GaussianBlur(gray, (3, 3), 1.0)
    lap = cv2.filter2D(gray.astype(np.float32), -1, LAPLACIAN_KERNEL)
    lap = np.abs(lap)
    return ((lap > threshold).astype(np.uint8)) * 255


def connected_regions(binary: np.ndarray, min_pixels: int) -> List[_Candidate]:
    """4-connected foreground components with their bounding boxes and pixel counts."""
    n, _, stats, _ = cv2.connectedComponentsWithStats(binary, connectivity=4)
    out: List[_Candidate] = []
    for i in range(1, n):  # 0 is background
        x, y, w, h, area = (int(v) for v in stats[i])
        if area > min_pixels:
            out.append(_Candidate(bbox=Box(x, y, w, h), area=area))
    return out


def bubble_score(cand: _Candidate, img_w: int, img_h: int) -> float:
    """Size, squareness and distance from the page edge, weighted 0.4 / 0.4 / 0.2."""
    w, h = cand.bbox.width, cand.bbox.height
    size_score = min(cand.area / 5000.0, 1.0) * max(1.0 - cand.area / (img_w * img_h * 0.3), 0.0)
    aspect = max(w, h) / max(1.0, min(w, h))
    aspect_score = max(0.0, 1.0 - (aspect - 1.0) / 2.0)
    cx, cy = cand.bbox.center
    edge_x = min(cx, img_w - cx) / img_w
    edge_y = min(cy, img_h - cy) / img_h
    position_score = (edge_x + edge_y) / 2.0
    return size_score * 0.4 + aspect_score * 0.4 + position_score * 0.2


def merge_overlaps(items: List[_Candidate], iou_thr: float) -> List[_Candidate]:
    used = [False] * len(items)
    out: List[_Candidate] = []
    for i, cur in enumerate(items):
        if used[i]:
            continue
        merged = _Candidate(bbox=cur.bbox, area=cur.area, score=cur.score)
        for j in range(i + 1, len(items)):
            if used[j]:
                continue
            if intersection_over_union(merged.bbox, items[j].bbox) >= iou_thr:
                merged = _Candidate(
                    bbox=union(merged.bbox, items[j].bbox),
                    area=merged.area + items[j].area,
                    score=max(merged.score, items[j].score),
                )
                used[j] = True
        out.append(merged)
    return out


def match_blocks_to_bubbles(blocks: Sequence[TextBlock], boxes: Sequence[Box]) -> List[List[str]]:
    """Member ids per box; each block goes to the first box containing its centre."""
    members: List[List[str]] = [[] for _ in boxes]
    for block in blocks:
        center = block.bbox.center
        for i, bb in enumerate(boxes):
            if contains(bb, center):
                members[i].append(block.id)
                break
    return members


class RasterBubbleClusterer(BaseClusterer):
    """Bubble boxes from pixel connectivity of the page's edge map."""

    def __init__(self, bgr: np.ndarray, params: Optional[RasterParams] = None) -> None:
        self.bgr = bgr
        self.params = params or RasterParams()

    def name(self) -> str:
        return "raster"

    def detect(self) -> List[Tuple[Box, float]]:
        p = self.params
        h, w = self.bgr.shape[:2]
        if w == 0 or h == 0:
            return []

        regions = connected_regions(edge_map(self.bgr, p.edge_threshold), p.min_region_pixels)
        kept: List[_Candidate] = []
        for cand in regions:
            bw, bh = cand.bbox.width, cand.bbox.height
            box_area = bw * bh
            aspect = max(bw, bh) / max(1.0, min(bw, bh))
            if (
                box_area > p.min_box_area
                and box_area < w * h * p.max_area_ratio
                and aspect < p.max_aspect
                and bw > p.min_side_px
                and bh > p.min_side_px
            ):
                cand.score = bubble_score(cand, w, h)
                kept.append(cand)

        kept.sort(key=lambda c: c.score, reverse=True)
        kept = merge_overlaps(kept[:p.max_bubbles], p.merge_iou)
        kept.sort(key=lambda c: (c.bbox.y, c.bbox.x))
        logger.debug(f"Raster detection kept {len(kept)} of {len(regions)} regions")
        return [(c.bbox, max(0.0, min(1.0, c.score))) for c in kept]

    def cluster(self, blocks: Sequence[TextBlock]) -> List[Bubble]:
        detected = self.detect()
        members = match_blocks_to_bubbles(blocks, [bb for bb, _ in detected])
        bubbles = [
            Bubble(id=f"bubble-{i}", bbox=bb, member_block_ids=ids, score=score)
            for i, ((bb, score), ids) in enumerate(zip(detected, members))
        ]
        logger.info(f"Raster clustering found {len(bubbles)} bubbles for {len(blocks)} blocks")
        return bubbles
