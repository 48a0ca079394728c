"""
Configuration management using pydantic-settings.
Loads from environment variables and .env file.
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings
from typing import List, Optional, Tuple
import logging

from mangaflow.core import constants as C
from mangaflow.core.clustering import ClusterParams
from mangaflow.core.layout import LayoutStyle

logger = logging.getLogger(__name__)


def parse_color(value: str) -> Tuple[int, ...]:
    """``"255,255,255"`` or ``"255,255,255,235"`` -> tuple of ints in 0..255."""
    parts = [p.strip() for p in str(value).split(",") if p.strip()]
    if len(parts) not in (3, 4):
        raise ValueError(f"Expected 3 or 4 comma-separated components, got '{value}'")
    out = tuple(int(p) for p in parts)
    if any(c < 0 or c > 255 for c in out):
        raise ValueError(f"Colour components must be in 0..255, got '{value}'")
    return out


def _color_str(rgb: Tuple[int, ...]) -> str:
    return ",".join(str(c) for c in rgb)


class RenderConfig(BaseSettings):
    """
    Layout, clustering and compositing settings.

    These settings can be overridden with environment variables.
    """
    # API settings
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "MangaFlow Render API"

    # CORS settings (comma-separated string)
    BACKEND_CORS_ORIGINS: str = "*"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # None = console only
    LOG_MAX_BYTES: int = 50 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 10
    LOG_BACKUP_DAYS: int = 30

    # Layout defaults
    LAYOUT_FONT_FAMILY: str = C.DEFAULT_FONT_FAMILY
    LAYOUT_MAX_FONT_PX: int = C.DEFAULT_MAX_FONT_PX
    LAYOUT_MIN_FONT_PX: int = C.DEFAULT_MIN_FONT_PX
    LAYOUT_LINE_HEIGHT: float = C.DEFAULT_LINE_HEIGHT
    LAYOUT_PADDING_PX: float = C.DEFAULT_PADDING_PX
    LAYOUT_H_ALIGN: str = C.DEFAULT_H_ALIGN
    LAYOUT_V_ALIGN: str = C.DEFAULT_V_ALIGN
    LAYOUT_MAX_LINES: int = C.DEFAULT_MAX_LINES
    LAYOUT_OVERFLOW: str = C.DEFAULT_OVERFLOW
    LAYOUT_SCRIPT_HINT: str = C.DEFAULT_SCRIPT_HINT

    # Font Configuration (comma-separated TTF/OTF paths; empty = discover)
    FONT_PATHS: str = ""

    # Compositing (colours as comma-separated components)
    MASK_ORIGINAL_REGIONS: bool = True
    MASK_COLOR: str = _color_str(C.DEFAULT_MASK_COLOR)
    TEXT_COLOR: str = _color_str(C.DEFAULT_TEXT_COLOR)
    STROKE_COLOR: str = _color_str(C.DEFAULT_STROKE_COLOR)
    STROKE_WIDTH: int = C.DEFAULT_STROKE_WIDTH

    # Clustering
    CLUSTER_ROW_TOLERANCE_PX: float = C.DEFAULT_ROW_TOLERANCE_PX
    CLUSTER_MERGE_RATIO: float = C.DEFAULT_MERGE_RATIO
    CLUSTER_AXIS_MODE: bool = False
    CLUSTER_AXIS_GAP_RATIO: float = C.DEFAULT_AXIS_GAP_RATIO
    CLUSTER_AXIS_SPAN_RATIO: float = C.DEFAULT_AXIS_SPAN_RATIO
    CLUSTER_PADDING_RATIO: float = C.DEFAULT_BUBBLE_PADDING_RATIO

    # OCR ingestion
    OCR_CONFIDENCE_THRESHOLD: float = C.OCR_CONFIDENCE_THRESHOLD

    # Orchestration
    STAGE_TIMEOUT_S: float = 60.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_DELAY_S: float = 2.0
    RETRY_BACKOFF: bool = True
    HTTP_TIMEOUT_S: float = 30.0

    @field_validator("MASK_COLOR", "TEXT_COLOR", "STROKE_COLOR", mode="before")
    @classmethod
    def validate_color(cls, v: str) -> str:
        """
        Validate colour strings early so a bad .env fails at startup.
        """
        parse_color(v)
        return str(v)

    @field_validator("LAYOUT_H_ALIGN")
    @classmethod
    def validate_h_align(cls, v: str) -> str:
        if v not in C.H_ALIGNS:
            raise ValueError(f"LAYOUT_H_ALIGN must be one of {C.H_ALIGNS}, got '{v}'")
        return v

    @field_validator("LAYOUT_V_ALIGN")
    @classmethod
    def validate_v_align(cls, v: str) -> str:
        if v not in C.V_ALIGNS:
            raise ValueError(f"LAYOUT_V_ALIGN must be one of {C.V_ALIGNS}, got '{v}'")
        return v

    @field_validator("LAYOUT_OVERFLOW")
    @classmethod
    def validate_overflow(cls, v: str) -> str:
        if v not in C.OVERFLOW_POLICIES:
            raise ValueError(f"LAYOUT_OVERFLOW must be one of {C.OVERFLOW_POLICIES}, got '{v}'")
        return v

    @model_validator(mode="after")
    def validate_font_range(self) -> "RenderConfig":
        if self.LAYOUT_MIN_FONT_PX > self.LAYOUT_MAX_FONT_PX:
            raise ValueError(
                f"LAYOUT_MIN_FONT_PX ({self.LAYOUT_MIN_FONT_PX}) must not exceed "
                f"LAYOUT_MAX_FONT_PX ({self.LAYOUT_MAX_FONT_PX})"
            )
        return self

    class Config:
        case_sensitive = True
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Allow extra fields in .env


class Settings(RenderConfig):
    """
    Combined application settings.
    """

    @property
    def font_paths(self) -> List[str]:
        return [p.strip() for p in self.FONT_PATHS.split(",") if p.strip()]

    @property
    def mask_color(self) -> Tuple[int, int, int, int]:
        rgba = parse_color(self.MASK_COLOR)
        return rgba if len(rgba) == 4 else rgba + (255,)

    @property
    def text_color(self) -> Tuple[int, int, int]:
        return parse_color(self.TEXT_COLOR)[:3]

    @property
    def stroke_color(self) -> Tuple[int, int, int]:
        return parse_color(self.STROKE_COLOR)[:3]

    def layout_style(self) -> LayoutStyle:
        return LayoutStyle(
            font_family=self.LAYOUT_FONT_FAMILY,
            max_font_px=self.LAYOUT_MAX_FONT_PX,
            min_font_px=self.LAYOUT_MIN_FONT_PX,
            line_height_multiplier=self.LAYOUT_LINE_HEIGHT,
            padding_px=self.LAYOUT_PADDING_PX,
            horizontal_align=self.LAYOUT_H_ALIGN,
            vertical_align=self.LAYOUT_V_ALIGN,
            max_lines=self.LAYOUT_MAX_LINES,
            overflow_policy=self.LAYOUT_OVERFLOW,
            script_hint=self.LAYOUT_SCRIPT_HINT,
        )

    def cluster_params(self) -> ClusterParams:
        return ClusterParams(
            row_tolerance_px=self.CLUSTER_ROW_TOLERANCE_PX,
            merge_ratio=self.CLUSTER_MERGE_RATIO,
            axis_mode=self.CLUSTER_AXIS_MODE,
            axis_gap_ratio=self.CLUSTER_AXIS_GAP_RATIO,
            axis_span_ratio=self.CLUSTER_AXIS_SPAN_RATIO,
            padding_ratio=self.CLUSTER_PADDING_RATIO,
        )


# Create settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance."""
    return settings
