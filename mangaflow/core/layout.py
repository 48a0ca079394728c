"""
Text layout engine: font-size fitting, line wrapping, overflow handling and
alignment of a translated string inside a target box.

Horizontal text is wrapped per word (Latin) or per character (CJK) and the
largest integer font size that fits is found by binary search. Vertical text
is laid out as a single top-to-bottom column. The engine never raises for
text that does not fit; it returns the best result it can, possibly empty.
"""

import dataclasses
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from mangaflow.core import constants as C
from mangaflow.core.errors import InvalidStyle, MangaFlowError, MeasurementBackendError
from mangaflow.core.geometry import Box
from mangaflow.core.measure import BaseTextMeasurer

logger = logging.getLogger(__name__)

MeasureFn = Callable[[str], float]

_EPS = 1e-6
_BREAK = re.escape(C.BREAK_AFTER_CHARS)
_LATIN_TOKEN_RE = re.compile(r"\s+|[^\s" + _BREAK + r"]*[" + _BREAK + r"]+|\S+")


@dataclass(frozen=True)
class LayoutStyle:
    font_family: str = C.DEFAULT_FONT_FAMILY
    max_font_px: int = C.DEFAULT_MAX_FONT_PX
    min_font_px: int = C.DEFAULT_MIN_FONT_PX
    line_height_multiplier: float = C.DEFAULT_LINE_HEIGHT
    padding_px: float = C.DEFAULT_PADDING_PX
    horizontal_align: str = C.DEFAULT_H_ALIGN
    vertical_align: str = C.DEFAULT_V_ALIGN
    max_lines: int = C.DEFAULT_MAX_LINES
    overflow_policy: str = C.DEFAULT_OVERFLOW
    script_hint: str = C.DEFAULT_SCRIPT_HINT

    def validate(self) -> None:
        if self.min_font_px > self.max_font_px:
            raise InvalidStyle(
                f"min_font_px ({self.min_font_px}) is greater than max_font_px ({self.max_font_px})"
            )
        if self.min_font_px < 1:
            raise InvalidStyle(f"min_font_px must be at least 1, got {self.min_font_px}")
        if self.padding_px < 0:
            raise InvalidStyle(f"padding_px must not be negative, got {self.padding_px}")
        if self.line_height_multiplier <= 0:
            raise InvalidStyle(f"line_height_multiplier must be positive, got {self.line_height_multiplier}")
        if self.max_lines < 1:
            raise InvalidStyle(f"max_lines must be at least 1, got {self.max_lines}")
        if self.horizontal_align not in C.H_ALIGNS:
            raise InvalidStyle(f"Unknown horizontal_align: {self.horizontal_align}")
        if self.vertical_align not in C.V_ALIGNS:
            raise InvalidStyle(f"Unknown vertical_align: {self.vertical_align}")
        if self.overflow_policy not in C.OVERFLOW_POLICIES:
            raise InvalidStyle(f"Unknown overflow_policy: {self.overflow_policy}")
        if self.script_hint not in C.SCRIPT_HINTS:
            raise InvalidStyle(f"Unknown script_hint: {self.script_hint}")

    def replace(self, **overrides) -> "LayoutStyle":
        return dataclasses.replace(self, **overrides)


@dataclass(frozen=True)
class LinePlacement:
    """One drawn line (or vertical cell); ``x``/``y`` is its top-left in page coordinates."""
    text: str
    x: float
    y: float
    width: float


@dataclass
class LayoutResult:
    font_size_px: int
    lines: List[str]
    line_height: float = 0.0
    placements: List[LinePlacement] = field(default_factory=list)
    orientation: str = "horizontal"
    degenerate: bool = False
    truncated: bool = False

    @property
    def total_height(self) -> float:
        return len(self.lines) * self.line_height

    @classmethod
    def empty(cls, orientation: str = "horizontal", degenerate: bool = False) -> "LayoutResult":
        return cls(font_size_px=0, lines=[], orientation=orientation, degenerate=degenerate)


# -----------------------------
# Pure helpers
# -----------------------------
def is_cjk(text: str) -> bool:
    return bool(C.CJK_RE.search(text or ""))


def resolve_script(text: str, script_hint: str) -> str:
    if script_hint == "cjk":
        return "cjk"
    if script_hint == "latin":
        return "latin"
    return "cjk" if is_cjk(text) else "latin"


def tokenize(text: str, cjk: bool) -> List[str]:
    """Split into wrap units; explicit line breaks come back as ``"\\n"`` tokens."""
    toks: List[str] = []
    for ln in re.split(r"\r?\n", text or ""):
        if cjk:
            toks.extend(" " if ch.isspace() else ch for ch in ln)
        else:
            toks.extend(" " if t.isspace() else t for t in _LATIN_TOKEN_RE.findall(ln))
        toks.append("\n")
    if toks and toks[-1] == "\n":
        toks.pop()
    return toks


def hard_break(token: str, max_width: float, measure: MeasureFn) -> List[str]:
    out: List[str] = []
    cur = ""
    for ch in token:
        trial = cur + ch
        if measure(trial) <= max_width:
            cur = trial
        else:
            if cur:
                out.append(cur)
            cur = ch
    if cur:
        out.append(cur)
    return out


def wrap_text(text: str, max_width: float, measure: MeasureFn, cjk: bool) -> List[str]:
    """Greedy wrap; words wider than ``max_width`` are broken per character."""
    out: List[str] = []
    line = ""
    for tk in tokenize(text, cjk):
        if tk == "\n":
            if line.strip():
                out.append(line.rstrip())
            line = ""
            continue
        if tk == " ":
            if line:
                line += tk
            continue

        trial = line + tk
        if measure(trial) <= max_width:
            line = trial
            continue

        if line.strip():
            out.append(line.rstrip())
        if measure(tk) > max_width:
            pieces = hard_break(tk, max_width, measure)
            out.extend(pieces[:-1])
            line = pieces[-1]
        else:
            line = tk

    if line.strip():
        out.append(line.rstrip())
    return out


def fit_ellipsis(line: str, max_width: float, measure: MeasureFn, glyph: str = C.ELLIPSIS) -> str:
    """
    Return ``line`` unchanged when it fits; otherwise strip trailing characters
    until ``body + glyph`` fits. Applying it to its own output is a no-op.
    """
    if measure(line) <= max_width:
        return line
    body = line[:-len(glyph)] if line.endswith(glyph) else line
    while body and measure(body + glyph) > max_width:
        body = body[:-1]
    body = body.rstrip()
    if not body:
        return glyph if measure(glyph) <= max_width else ""
    return body + glyph


def _search_largest(lo: int, hi: int, fits: Callable[[int], bool]) -> int:
    """Largest size in ``[lo, hi]`` accepted by ``fits``; ``lo`` when none is."""
    best = lo
    while lo <= hi:
        mid = (lo + hi) // 2
        if fits(mid):
            best = mid
            lo = mid + 1
        else:
            hi = mid - 1
    return best


def _scan_largest(lo: int, hi: int, fits: Callable[[int], bool]) -> int:
    """Largest size in ``[lo, hi]`` accepted by ``fits``, walking down from ``hi``; ``lo`` when none is."""
    for size in range(hi, lo - 1, -1):
        if fits(size):
            return size
    return lo


# -----------------------------
# Engine
# -----------------------------
class LayoutEngine:
    """Lays text out in boxes using an injected measurement backend."""

    def __init__(self, measurer: BaseTextMeasurer) -> None:
        self.measurer = measurer

    def _measure_fn(self, family: str, size: int) -> MeasureFn:
        def measure(text: str) -> float:
            if not text:
                return 0.0
            try:
                return self.measurer.measure_width(text, family, size)
            except MangaFlowError:
                raise
            except Exception as e:
                raise MeasurementBackendError(f"{self.measurer.name()} failed to measure text: {e}") from e
        return measure

    def layout(
        self,
        text: Optional[str],
        box: Box,
        style: LayoutStyle,
        *,
        orientation: str = "horizontal",
        font_size: Optional[int] = None,
    ) -> LayoutResult:
        """
        Fit ``text`` into ``box``.

        Args:
            text: String to lay out; ``None`` or blank yields an empty result.
            box: Target region in page coordinates.
            style: Layout constraints; validated first.
            orientation: ``"horizontal"`` or ``"vertical"``.
            font_size: Fixed size in px; skips the size search but still wraps,
                truncates and aligns.

        Raises:
            InvalidStyle: The style is malformed.
            MeasurementBackendError: The measurement backend failed.
        """
        style.validate()
        if orientation not in C.ORIENTATIONS:
            raise InvalidStyle(f"Unknown orientation: {orientation}")

        avail_w = box.width - 2 * style.padding_px
        avail_h = box.height - 2 * style.padding_px
        if avail_w <= 0 or avail_h <= 0:
            logger.debug(f"Degenerate region {box.to_dict()} after padding {style.padding_px}px")
            return LayoutResult.empty(orientation, degenerate=True)

        if not text or not text.strip():
            return LayoutResult.empty(orientation)

        fixed = int(font_size) if font_size is not None and font_size > 0 else None
        if orientation == "vertical":
            return self._layout_vertical(text.strip(), box, style, avail_w, avail_h, fixed)
        return self._layout_horizontal(text.strip(), box, style, avail_w, avail_h, fixed)

    def wrap(self, text: str, max_width: float, style: LayoutStyle, font_size: int) -> List[str]:
        cjk = resolve_script(text, style.script_hint) == "cjk"
        return wrap_text(text, max_width, self._measure_fn(style.font_family, font_size), cjk)

    # -----------------------------
    # Horizontal
    # -----------------------------
    def _layout_horizontal(
        self,
        text: str,
        box: Box,
        style: LayoutStyle,
        avail_w: float,
        avail_h: float,
        fixed: Optional[int],
    ) -> LayoutResult:
        lh = style.line_height_multiplier

        def fits(size: int) -> bool:
            lines = self.wrap(text, avail_w, style, size)
            return min(len(lines), style.max_lines) * size * lh <= avail_h + _EPS

        def fits_whole(size: int) -> bool:
            lines = self.wrap(text, avail_w, style, size)
            return len(lines) <= style.max_lines and len(lines) * size * lh <= avail_h + _EPS

        if fixed is not None:
            size = fixed
        elif style.overflow_policy == "shrink":
            size = _scan_largest(style.min_font_px, style.max_font_px, fits_whole)
        else:
            size = _search_largest(style.min_font_px, style.max_font_px, fits)

        lines = self.wrap(text, avail_w, style, size)
        truncated = False

        if len(lines) > style.max_lines:
            lines = lines[:style.max_lines]
            truncated = True
            if style.overflow_policy == "ellipsis":
                lines[-1] = self._ellipsize(lines[-1], avail_w, style, size)

        measure = self._measure_fn(style.font_family, size)
        line_h = size * lh
        while lines and len(lines) * line_h > avail_h + _EPS:
            lines.pop()
            truncated = True
            if lines and style.overflow_policy == "ellipsis":
                lines[-1] = self._ellipsize(lines[-1], avail_w, style, size)
        lines = [ln for ln in lines if ln]

        placements = self._place_lines(lines, box, style, line_h, measure)
        return LayoutResult(
            font_size_px=size,
            lines=lines,
            line_height=line_h,
            placements=placements,
            orientation="horizontal",
            truncated=truncated,
        )

    def _ellipsize(self, line: str, max_width: float, style: LayoutStyle, size: int) -> str:
        measure = self._measure_fn(style.font_family, size)
        base = line if line.endswith(C.ELLIPSIS) else line.rstrip() + C.ELLIPSIS
        return fit_ellipsis(base, max_width, measure)

    def _block_top(self, box: Box, style: LayoutStyle, total_h: float) -> float:
        if style.vertical_align == "top":
            return box.y + style.padding_px
        if style.vertical_align == "bottom":
            return box.bottom - style.padding_px - total_h
        return box.y + (box.height - total_h) / 2.0

    def _place_lines(
        self,
        lines: List[str],
        box: Box,
        style: LayoutStyle,
        line_h: float,
        measure: MeasureFn,
    ) -> List[LinePlacement]:
        top = self._block_top(box, style, len(lines) * line_h)
        out: List[LinePlacement] = []
        for i, ln in enumerate(lines):
            w = measure(ln)
            if style.horizontal_align == "left":
                x = box.x + style.padding_px
            elif style.horizontal_align == "right":
                x = box.right - style.padding_px - w
            else:
                x = box.x + (box.width - w) / 2.0
            out.append(LinePlacement(text=ln, x=x, y=top + i * line_h, width=w))
        return out

    # -----------------------------
    # Vertical (single column, top to bottom)
    # -----------------------------
    def _layout_vertical(
        self,
        text: str,
        box: Box,
        style: LayoutStyle,
        avail_w: float,
        avail_h: float,
        fixed: Optional[int],
    ) -> LayoutResult:
        lh = style.line_height_multiplier
        cells = [ch for ch in text if ch not in "\r\n"]

        def fits(size: int) -> bool:
            return len(cells) * size * lh <= avail_h + _EPS and size <= avail_w

        size = fixed if fixed is not None else _search_largest(style.min_font_px, style.max_font_px, fits)
        line_h = size * lh

        max_cells = int(math.floor(avail_h / line_h + _EPS))
        truncated = False
        if len(cells) > max_cells:
            cells = cells[:max_cells]
            truncated = True
            if cells and style.overflow_policy == "ellipsis":
                cells[-1] = C.VERTICAL_ELLIPSIS
        while cells and cells[-1].isspace():
            cells.pop()

        measure = self._measure_fn(style.font_family, size)
        top = self._block_top(box, style, len(cells) * line_h)
        placements: List[LinePlacement] = []
        for i, ch in enumerate(cells):
            w = measure(ch)
            placements.append(LinePlacement(
                text=ch,
                x=box.x + (box.width - w) / 2.0,
                y=top + i * line_h,
                width=w,
            ))

        return LayoutResult(
            font_size_px=size,
            lines=cells,
            line_height=line_h,
            placements=placements,
            orientation="vertical",
            truncated=truncated,
        )
