"""
OCR ingestion: turns provider detections into validated ``TextBlock`` records.

This is the stage that enforces the page invariant (every block box lies
inside the image); layout and compositing rely on it.
"""

import logging
import math
from typing import Callable, List, Optional, Sequence, Tuple

from mangaflow.core import constants as C
from mangaflow.core.geometry import Box, union
from mangaflow.core.types import BlockStatus, OCRDetection, TextBlock

logger = logging.getLogger(__name__)


def normalize_confidence(value: Optional[float]) -> float:
    """Providers report 0..1 or 0..100; the core works in 0..1."""
    if value is None or math.isnan(value):
        return 0.0
    v = float(value)
    if v > 1.0:
        v = v / 100.0
    return max(0.0, min(1.0, v))


def clamp_box(box: Box, width: float, height: float) -> Box:
    return box.clamp_to(width, height)


def detect_block_orientation(box: Box) -> str:
    return "vertical" if box.height > box.width * C.VERTICAL_ASPECT_RATIO else "horizontal"


def group_words_into_lines(
    detections: Sequence[OCRDetection],
    row_tolerance: float = 20,
    max_gap: float = 50,
) -> List[OCRDetection]:
    """Merge word-level detections that sit on the same row into line detections."""
    if not detections:
        return []

    ordered = sorted(detections, key=lambda d: (d.bbox.y, d.bbox.x))
    rows: List[List[OCRDetection]] = []
    for d in ordered:
        if rows and abs(d.bbox.y - rows[-1][0].bbox.y) <= row_tolerance:
            rows[-1].append(d)
        else:
            rows.append([d])

    lines: List[OCRDetection] = []
    for row in rows:
        current: Optional[OCRDetection] = None
        for word in sorted(row, key=lambda d: d.bbox.x):
            if current is None:
                current = OCRDetection(word.text, word.bbox, word.confidence, word.orientation)
                continue
            vertical_distance = abs(word.bbox.y - current.bbox.y)
            horizontal_gap = word.bbox.x - current.bbox.right
            if vertical_distance < row_tolerance and horizontal_gap < max_gap:
                current = OCRDetection(
                    text=f"{current.text} {word.text}",
                    bbox=union(current.bbox, word.bbox),
                    confidence=(current.confidence + word.confidence) / 2.0,
                    orientation=current.orientation or word.orientation,
                )
            else:
                lines.append(current)
                current = OCRDetection(word.text, word.bbox, word.confidence, word.orientation)
        if current is not None:
            lines.append(current)
    return lines


def ingest_detections(
    detections: Sequence[OCRDetection],
    image_size: Tuple[int, int],
    *,
    group_words: bool = False,
    confidence_threshold: float = C.OCR_CONFIDENCE_THRESHOLD,
    id_factory: Optional[Callable[[int], str]] = None,
) -> List[TextBlock]:
    """
    Build OCR-stage text blocks.

    Args:
        detections: Raw provider output.
        image_size: ``(width, height)`` of the page image.
        group_words: Merge word detections into lines first.
        confidence_threshold: Blocks below it are flagged for review.
        id_factory: Maps the block index to an id; defaults to ``blk_<index>``.
    """
    width, height = image_size
    make_id = id_factory or (lambda i: f"blk_{i}")

    normalized = [
        OCRDetection(d.text, d.bbox, normalize_confidence(d.confidence), d.orientation)
        for d in detections
    ]
    if group_words:
        normalized = group_words_into_lines(normalized)

    blocks: List[TextBlock] = []
    dropped = 0
    for d in normalized:
        text = (d.text or "").strip()
        bbox = clamp_box(d.bbox, width, height)
        if not text or bbox.is_degenerate:
            dropped += 1
            continue
        orientation = d.orientation if d.orientation in C.ORIENTATIONS else detect_block_orientation(bbox)
        needs_review = d.confidence < confidence_threshold
        blocks.append(TextBlock(
            id=make_id(len(blocks)),
            bbox=bbox,
            source_text=text,
            confidence=d.confidence,
            orientation=orientation,
            status=BlockStatus.FLAGGED if needs_review else BlockStatus.OCR_DONE,
            needs_review=needs_review,
        ))

    if dropped:
        logger.info(f"Dropped {dropped} empty or out-of-bounds detections")
    return blocks
