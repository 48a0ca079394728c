"""
Text measurement backends.

The layout engine only ever calls ``measure_width``; the backend decides how
glyph widths are obtained (FreeType through Pillow, or a fixed-advance
approximation table).
"""

import logging
import os
from typing import Dict, List, Optional, Tuple

from PIL import ImageFont

from mangaflow.core.constants import CJK_RE, WIDE_CHAR_RE
from mangaflow.core.errors import MeasurementBackendError

logger = logging.getLogger(__name__)


def discover_default_fonts() -> List[str]:
    candidates = [
        # CJK-capable faces first so Japanese/Chinese blocks get real glyphs
        "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
        "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
        "/usr/share/fonts/truetype/wqy/wqy-microhei.ttc",
        "/System/Library/Fonts/PingFang.ttc",
        "/System/Library/Fonts/Hiragino Sans GB.ttc",
        "C:/Windows/Fonts/msyh.ttc",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/System/Library/Fonts/Supplemental/Arial.ttf",
        "/Library/Fonts/Arial.ttf",
    ]
    return [p for p in candidates if os.path.exists(p)]


class FontManager:
    """
    Resolves ``(family, size)`` to a Pillow font and caches the result.

    ``family`` is matched against the configured font file names; a family
    that is itself a font path is loaded directly. When nothing usable is
    installed, Pillow's bundled default face is used.
    """

    def __init__(self, font_paths: Optional[List[str]] = None) -> None:
        self.font_paths = [p for p in (font_paths or []) if p and os.path.exists(p)]
        if not self.font_paths:
            self.font_paths = discover_default_fonts()
        if not self.font_paths:
            logger.warning("No font files found, falling back to Pillow's bundled default font")
        self._cache: Dict[Tuple[str, int], ImageFont.FreeTypeFont] = {}

    def _candidates(self, family: str) -> List[str]:
        if family and os.path.isfile(family):
            return [family] + self.font_paths
        fam = (family or "").lower().replace(" ", "")
        preferred = [p for p in self.font_paths if fam and fam in os.path.basename(p).lower().replace(" ", "")]
        return preferred + [p for p in self.font_paths if p not in preferred]

    def get(self, family: str, size: int) -> ImageFont.FreeTypeFont:
        size = int(max(1, size))
        key = (family or "", size)
        if key in self._cache:
            return self._cache[key]

        last_err: Optional[Exception] = None
        for fp in self._candidates(family):
            try:
                font = ImageFont.truetype(fp, size=size)
                self._cache[key] = font
                return font
            except Exception as e:
                last_err = e
                continue

        try:
            font = ImageFont.load_default(size=size)
        except Exception as e:
            raise MeasurementBackendError(
                f"Failed to load any font for '{family}' at size {size}: {last_err or e}"
            ) from e
        self._cache[key] = font
        return font


class BaseTextMeasurer:
    def name(self) -> str:
        raise NotImplementedError

    def measure_width(self, text: str, font_family: str, font_size_px: int) -> float:
        raise NotImplementedError


class PillowTextMeasurer(BaseTextMeasurer):
    """Measures advance widths with Pillow FreeType fonts."""

    def __init__(self, fonts: FontManager) -> None:
        self.fonts = fonts

    def name(self) -> str:
        return "pillow"

    def measure_width(self, text: str, font_family: str, font_size_px: int) -> float:
        if not text:
            return 0.0
        font = self.fonts.get(font_family, font_size_px)
        try:
            return float(font.getlength(text))
        except Exception as e:
            raise MeasurementBackendError(f"Failed to measure text with '{font_family}': {e}") from e


class FixedWidthMeasurer(BaseTextMeasurer):
    """
    Approximation table: every character advances ``char_ratio`` em,
    full-width (CJK) characters advance ``cjk_ratio`` em.

    Deterministic and font-free, so layouts computed with it are stable
    across environments.
    """

    def __init__(self, char_ratio: float = 0.6, cjk_ratio: float = 1.0) -> None:
        self.char_ratio = char_ratio
        self.cjk_ratio = cjk_ratio

    def name(self) -> str:
        return "fixed"

    def measure_width(self, text: str, font_family: str, font_size_px: int) -> float:
        total = 0.0
        for ch in text or "":
            wide = CJK_RE.match(ch) or WIDE_CHAR_RE.match(ch)
            total += self.cjk_ratio if wide else self.char_ratio
        return total * font_size_px
