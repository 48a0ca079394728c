"""
Pydantic models for the layout / cluster / render API.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from mangaflow.core import constants as C
from mangaflow.core.clustering import ClusterParams
from mangaflow.core.geometry import Box
from mangaflow.core.layout import LayoutResult, LayoutStyle
from mangaflow.core.types import BlockStatus, Bubble, TextBlock


class BoxModel(BaseModel):
    """Axis-aligned rectangle in image pixels."""

    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(ge=0)
    height: float = Field(ge=0)

    def to_box(self) -> Box:
        return Box(self.x, self.y, self.width, self.height)

    @classmethod
    def from_box(cls, box: Box) -> "BoxModel":
        return cls(x=box.x, y=box.y, width=box.width, height=box.height)


class LayoutStyleModel(BaseModel):
    """Layout constraints; omitted fields take the service defaults."""

    font_family: str = Field(default=C.DEFAULT_FONT_FAMILY)
    max_font_px: int = Field(default=C.DEFAULT_MAX_FONT_PX, ge=1, le=400)
    min_font_px: int = Field(default=C.DEFAULT_MIN_FONT_PX, ge=1, le=400)
    line_height_multiplier: float = Field(default=C.DEFAULT_LINE_HEIGHT, gt=0)
    padding_px: float = Field(default=C.DEFAULT_PADDING_PX)
    horizontal_align: Literal["left", "center", "right"] = C.DEFAULT_H_ALIGN
    vertical_align: Literal["top", "middle", "bottom"] = C.DEFAULT_V_ALIGN
    max_lines: int = Field(default=C.DEFAULT_MAX_LINES, ge=1, le=50)
    overflow_policy: Literal["ellipsis", "shrink"] = C.DEFAULT_OVERFLOW
    script_hint: Literal["auto", "cjk", "latin"] = C.DEFAULT_SCRIPT_HINT

    def to_style(self) -> LayoutStyle:
        return LayoutStyle(**self.model_dump())


class LayoutRequest(BaseModel):
    text: Optional[str] = Field(default=None, description="Text to fit")
    box: BoxModel
    style: Optional[LayoutStyleModel] = None
    orientation: Literal["horizontal", "vertical"] = "horizontal"
    font_size: Optional[int] = Field(default=None, ge=1, description="Fixed font size; skips fitting")


class LinePlacementModel(BaseModel):
    text: str
    x: float
    y: float
    width: float


class LayoutResultData(BaseModel):
    font_size_px: int
    lines: List[str]
    line_height: float
    placements: List[LinePlacementModel]
    orientation: str
    degenerate: bool
    truncated: bool

    @classmethod
    def from_result(cls, r: LayoutResult) -> "LayoutResultData":
        return cls(
            font_size_px=r.font_size_px,
            lines=list(r.lines),
            line_height=r.line_height,
            placements=[LinePlacementModel(text=p.text, x=p.x, y=p.y, width=p.width) for p in r.placements],
            orientation=r.orientation,
            degenerate=r.degenerate,
            truncated=r.truncated,
        )


class TextBlockModel(BaseModel):
    id: str
    bbox: BoxModel
    source_text: Optional[str] = None
    translated_text: Optional[str] = None
    confidence: float = Field(default=1.0, ge=0, le=1)
    orientation: Literal["horizontal", "vertical"] = "horizontal"
    font_size: Optional[int] = Field(default=None, description="Fixed font size in px")
    font_family: Optional[str] = None
    text_align: Optional[Literal["left", "center", "right"]] = None

    def to_block(self) -> TextBlock:
        return TextBlock(
            id=self.id,
            bbox=self.bbox.to_box(),
            source_text=self.source_text,
            translated_text=self.translated_text,
            confidence=self.confidence,
            orientation=self.orientation,
            font_size=self.font_size,
            font_family=self.font_family,
            text_align=self.text_align,
            status=BlockStatus.TRANSLATED if self.translated_text else BlockStatus.PENDING,
        )


class ClusterParamsModel(BaseModel):
    row_tolerance_px: float = Field(default=C.DEFAULT_ROW_TOLERANCE_PX, ge=0)
    merge_ratio: float = Field(default=C.DEFAULT_MERGE_RATIO, gt=0)
    axis_mode: bool = False
    axis_gap_ratio: float = Field(default=C.DEFAULT_AXIS_GAP_RATIO, ge=0)
    axis_span_ratio: float = Field(default=C.DEFAULT_AXIS_SPAN_RATIO, ge=0)
    padding_ratio: float = Field(default=C.DEFAULT_BUBBLE_PADDING_RATIO, ge=0)

    def to_params(self) -> ClusterParams:
        return ClusterParams(**self.model_dump())


class ClusterRequest(BaseModel):
    blocks: List[TextBlockModel]
    params: Optional[ClusterParamsModel] = None
    image_url: Optional[str] = Field(
        default=None,
        description="Page image; when given, bubbles are detected from its outlines instead of block proximity",
    )


class RenderUrlRequest(BaseModel):
    """Request model for rendering a page fetched from a URL."""

    image_url: str = Field(..., description="URL of the page image")
    blocks: List[TextBlockModel]
    style: Optional[LayoutStyleModel] = None
    mask_original_regions: Optional[bool] = None
    auto_text_color: bool = False
    thumbnail: bool = False


class BubbleModel(BaseModel):
    id: str
    bbox: BoxModel
    member_block_ids: List[str]
    score: float

    @classmethod
    def from_bubble(cls, b: Bubble) -> "BubbleModel":
        return cls(id=b.id, bbox=BoxModel.from_box(b.bbox), member_block_ids=list(b.member_block_ids), score=b.score)


class ClusterResultData(BaseModel):
    bubbles: List[BubbleModel]


class RenderResultData(BaseModel):
    """Data returned from a render."""

    image_base64: str = Field(description="Rendered page as base64 PNG")
    thumbnail_base64: Optional[str] = Field(default=None, description="JPEG thumbnail, when requested")
    rendered: List[str] = Field(default_factory=list, description="Ids of rendered blocks")
    skipped: List[str] = Field(default_factory=list, description="Ids of blocks that failed to render")
    time_ms: int = Field(default=0, description="Processing time in milliseconds")


class LayoutResponse(BaseModel):
    success: bool = Field(description="Whether the request was successful")
    data: Optional[LayoutResultData] = None
    error: Optional[str] = Field(default=None, description="Error message if success=false")


class ClusterResponse(BaseModel):
    success: bool
    data: Optional[ClusterResultData] = None
    error: Optional[str] = None


class RenderResponse(BaseModel):
    success: bool
    data: Optional[RenderResultData] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="ok")
    version: str = Field(default="0.1.0")
