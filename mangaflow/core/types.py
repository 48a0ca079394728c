"""
Core records: OCR detections, text blocks, bubbles and pages.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mangaflow.core.geometry import Box


class BlockStatus:
    """Text block lifecycle constants."""
    PENDING = "pending"
    OCR_DONE = "ocr_done"
    TRANSLATED = "translated"
    REVIEWED = "reviewed"
    FLAGGED = "flagged"


@dataclass
class OCRDetection:
    """One raw detection as delivered by an OCR provider."""
    text: str
    bbox: Box
    confidence: float
    orientation: Optional[str] = None


@dataclass
class TextBlock:
    id: str
    bbox: Box
    source_text: Optional[str] = None
    translated_text: Optional[str] = None
    confidence: float = 1.0
    orientation: str = "horizontal"
    font_size: Optional[int] = None   # explicit override in px; None = fit

    # per-block style overrides carried by the stored record
    font_family: Optional[str] = None
    text_align: Optional[str] = None

    status: str = BlockStatus.PENDING
    needs_review: bool = False

    @property
    def is_vertical(self) -> bool:
        return self.orientation == "vertical"

    @property
    def has_translation(self) -> bool:
        return bool(self.translated_text and self.translated_text.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bbox": self.bbox.to_dict(),
            "sourceText": self.source_text,
            "translatedText": self.translated_text,
            "confidence": self.confidence,
            "orientation": self.orientation,
            "fontSize": self.font_size,
            "fontFamily": self.font_family,
            "textAlign": self.text_align,
            "status": self.status,
            "needsReview": self.needs_review,
        }


@dataclass(frozen=True)
class Bubble:
    """
    Transient grouping of text blocks believed to form one dialogue region.

    Bubbles are regenerated on every clustering run and never mutated.
    """
    id: str
    bbox: Box
    member_block_ids: List[str]
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bbox": self.bbox.to_dict(),
            "memberBlockIds": list(self.member_block_ids),
            "score": round(self.score, 4),
        }


@dataclass
class Page:
    id: str
    original_image: bytes
    blocks: List[TextBlock] = field(default_factory=list)
    rendered_image: Optional[bytes] = None

    def block_by_id(self, block_id: str) -> Optional[TextBlock]:
        for b in self.blocks:
            if b.id == block_id:
                return b
        return None

    def remove_block(self, block_id: str) -> bool:
        """Delete a block; the caller re-composites the page afterwards."""
        before = len(self.blocks)
        self.blocks = [b for b in self.blocks if b.id != block_id]
        return len(self.blocks) != before
