"""
Process-wide constants: script detection patterns and default tunables.

Plain data only. Runtime overrides go through ``mangaflow.config.Settings``.
"""

import re

# -----------------------------
# Script detection
# -----------------------------
# Hiragana, Katakana, CJK Extension A, CJK Unified Ideographs, CJK Compatibility Ideographs
CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")

# Full-width forms measured as a full em by the approximation backend
WIDE_CHAR_RE = re.compile(r"[\u1100-\u115f\u2e80-\ua4cf\uac00-\ud7a3\uf900-\ufaff\ufe30-\ufe4f\uff00-\uff60\uffe0-\uffe6]")

# Latin text may also break right after one of these
BREAK_AFTER_CHARS = "/?#&=_.-,:;"

ELLIPSIS = "\u2026"
VERTICAL_ELLIPSIS = "\u22ee"

# -----------------------------
# Layout defaults
# -----------------------------
DEFAULT_FONT_FAMILY = "sans-serif"
DEFAULT_MAX_FONT_PX = 36
DEFAULT_MIN_FONT_PX = 10
DEFAULT_LINE_HEIGHT = 1.45
DEFAULT_PADDING_PX = 12
DEFAULT_H_ALIGN = "center"
DEFAULT_V_ALIGN = "middle"
DEFAULT_MAX_LINES = 3
DEFAULT_OVERFLOW = "ellipsis"
DEFAULT_SCRIPT_HINT = "auto"

H_ALIGNS = ("left", "center", "right")
V_ALIGNS = ("top", "middle", "bottom")
OVERFLOW_POLICIES = ("ellipsis", "shrink")
SCRIPT_HINTS = ("auto", "cjk", "latin")
ORIENTATIONS = ("horizontal", "vertical")

# -----------------------------
# Compositing defaults (RGBA)
# -----------------------------
DEFAULT_MASK_COLOR = (255, 255, 255, 235)
DEFAULT_TEXT_COLOR = (17, 17, 17)
DEFAULT_STROKE_COLOR = (255, 255, 255)
DEFAULT_STROKE_WIDTH = 2

# -----------------------------
# Clustering defaults
# -----------------------------
DEFAULT_ROW_TOLERANCE_PX = 24
DEFAULT_MERGE_RATIO = 1.5
DEFAULT_AXIS_GAP_RATIO = 0.5
DEFAULT_AXIS_SPAN_RATIO = 2.5
DEFAULT_BUBBLE_PADDING_RATIO = 0.1
DEFAULT_BUBBLE_SCORE = 0.8

# -----------------------------
# OCR ingestion
# -----------------------------
OCR_CONFIDENCE_THRESHOLD = 0.7
VERTICAL_ASPECT_RATIO = 1.5
