"""
Page compositor: masks the original text regions of a page and draws the
translated text of every block onto a fresh working copy of the image.

The source image is never modified. Every call starts from the image it is
given, so re-rendering after an edit always begins from the original page.
Failures are isolated per block: a block whose text cannot be measured or
drawn is skipped and the rest of the page is still rendered.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw

from mangaflow.core import constants as C
from mangaflow.core.errors import MeasurementBackendError
from mangaflow.core.geometry import Box
from mangaflow.core.layout import LayoutEngine, LayoutResult, LayoutStyle
from mangaflow.core.measure import FontManager
from mangaflow.core.types import TextBlock
from mangaflow.utils.image_utils import decode_image, encode_png

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

BLACK: RGB = (0, 0, 0)
WHITE: RGB = (255, 255, 255)


@dataclass
class CompositeOptions:
    mask_original_regions: bool = True
    mask_color: Tuple[int, int, int, int] = C.DEFAULT_MASK_COLOR
    text_color: RGB = C.DEFAULT_TEXT_COLOR
    stroke_color: RGB = C.DEFAULT_STROKE_COLOR
    stroke_width: int = C.DEFAULT_STROKE_WIDTH
    style: LayoutStyle = field(default_factory=LayoutStyle)
    # pick black or white text by contrast with the region background
    auto_text_color: bool = False


@dataclass
class CompositeReport:
    rendered: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


# -----------------------------
# Colour helpers
# -----------------------------
def median_rgb(pixels_rgb: np.ndarray) -> RGB:
    if pixels_rgb.size == 0:
        return WHITE
    med = np.median(pixels_rgb.reshape(-1, 3), axis=0)
    return (int(med[0]), int(med[1]), int(med[2]))


def rel_luminance(rgb: RGB) -> float:
    def f(c: float) -> float:
        c = c / 255.0
        return c / 12.92 if c <= 0.04045 else ((c + 0.055) / 1.055) ** 2.4
    r, g, b = rgb
    return 0.2126 * f(r) + 0.7152 * f(g) + 0.0722 * f(b)


def contrast_ratio(a: RGB, b: RGB) -> float:
    la, lb = rel_luminance(a), rel_luminance(b)
    lo, hi = min(la, lb), max(la, lb)
    return (hi + 0.05) / (lo + 0.05)


def pick_text_colors(background: RGB) -> Tuple[RGB, RGB]:
    """(fill, stroke): whichever of black/white contrasts more, the other as stroke."""
    fg = BLACK if contrast_ratio(BLACK, background) >= contrast_ratio(WHITE, background) else WHITE
    return fg, (WHITE if fg == BLACK else BLACK)


def block_style(base: LayoutStyle, block: TextBlock) -> LayoutStyle:
    """Apply the block's own font family / alignment overrides."""
    overrides = {}
    if block.font_family:
        overrides["font_family"] = block.font_family
    if block.text_align:
        if block.text_align in C.H_ALIGNS:
            overrides["horizontal_align"] = block.text_align
        else:
            logger.warning(f"Block {block.id}: ignoring unknown text_align '{block.text_align}'")
    return base.replace(**overrides) if overrides else base


class PageCompositor:
    """Draws translated blocks onto page images with a ``LayoutEngine``."""

    def __init__(self, engine: LayoutEngine, fonts: FontManager) -> None:
        self.engine = engine
        self.fonts = fonts

    def composite(
        self,
        image: Image.Image,
        blocks: Sequence[TextBlock],
        options: Optional[CompositeOptions] = None,
    ) -> Image.Image:
        out, _ = self.composite_with_report(image, blocks, options)
        return out

    def composite_bytes(
        self,
        image_bytes: bytes,
        blocks: Sequence[TextBlock],
        options: Optional[CompositeOptions] = None,
    ) -> bytes:
        """
        Decode, composite and PNG-encode.

        Raises:
            ImageDecodeError: ``image_bytes`` is not a readable image.
        """
        image = decode_image(image_bytes)
        return encode_png(self.composite(image, blocks, options))

    def composite_with_report(
        self,
        image: Image.Image,
        blocks: Sequence[TextBlock],
        options: Optional[CompositeOptions] = None,
    ) -> Tuple[Image.Image, CompositeReport]:
        """
        Render every block that has a translation, in input order.

        Blocks without a translation are left untouched (neither masked nor
        drawn). Blocks whose measurement or drawing fails are reported in
        ``skipped``.

        The result keeps an alpha channel when the input has one and is RGB
        otherwise.

        Raises:
            InvalidStyle: ``options.style`` is malformed.
        """
        opts = options or CompositeOptions()
        opts.style.validate()

        work = image.convert("RGBA")
        report = CompositeReport()
        logger.info(f"Compositing {len(blocks)} blocks onto {work.width}x{work.height} image")

        for block in blocks:
            if not block.has_translation:
                continue
            try:
                self._render_block(work, block, opts)
            except MeasurementBackendError as e:
                logger.warning(f"Skipping block {block.id}: {e}")
                report.skipped.append(block.id)
                continue
            report.rendered.append(block.id)

        logger.info(f"Composite finished: rendered={len(report.rendered)}, skipped={len(report.skipped)}")
        out_mode = "RGBA" if "A" in image.getbands() else "RGB"
        return work.convert(out_mode), report

    # -----------------------------
    # Per-block rendering
    # -----------------------------
    def _patch_region(self, work: Image.Image, bbox: Box, margin: int) -> Tuple[int, int, int, int]:
        x0 = max(0, int(bbox.x) - margin)
        y0 = max(0, int(bbox.y) - margin)
        x1 = min(work.width, int(np.ceil(bbox.right)) + margin)
        y1 = min(work.height, int(np.ceil(bbox.bottom)) + margin)
        return x0, y0, x1, y1

    def _render_block(self, work: Image.Image, block: TextBlock, opts: CompositeOptions) -> None:
        style = block_style(opts.style, block)
        fixed = block.font_size if block.font_size and block.font_size > 0 else None
        result = self.engine.layout(
            block.translated_text,
            block.bbox,
            style,
            orientation=block.orientation if block.orientation in C.ORIENTATIONS else "horizontal",
            font_size=fixed,
        )
        if result.degenerate:
            logger.warning(f"Block {block.id}: region {block.bbox.to_dict()} too small after padding, mask only")

        margin = max(0, opts.stroke_width) + 2
        x0, y0, x1, y1 = self._patch_region(work, block.bbox, margin)
        if x1 <= x0 or y1 <= y0:
            return

        # render into a detached patch; the page is only touched on success
        patch = work.crop((x0, y0, x1, y1))
        if opts.mask_original_regions:
            mask_layer = Image.new("RGBA", patch.size, (0, 0, 0, 0))
            ImageDraw.Draw(mask_layer).rectangle(
                (
                    block.bbox.x - x0,
                    block.bbox.y - y0,
                    block.bbox.right - x0 - 1,
                    block.bbox.bottom - y0 - 1,
                ),
                fill=tuple(opts.mask_color),
            )
            patch = Image.alpha_composite(patch, mask_layer)

        if result.lines:
            fill, stroke = tuple(opts.text_color), tuple(opts.stroke_color)
            if opts.auto_text_color:
                bx0, by0 = int(block.bbox.x) - x0, int(block.bbox.y) - y0
                region = np.asarray(patch.convert("RGB"))[
                    max(0, by0):max(0, by0) + int(block.bbox.height),
                    max(0, bx0):max(0, bx0) + int(block.bbox.width),
                ]
                fill, stroke = pick_text_colors(median_rgb(region))
            patch = Image.alpha_composite(
                patch, self._draw_text(patch.size, result, style, (x0, y0), fill, stroke, opts.stroke_width)
            )

        work.paste(patch, (x0, y0))

    def _draw_text(
        self,
        size: Tuple[int, int],
        result: LayoutResult,
        style: LayoutStyle,
        origin: Tuple[int, int],
        fill: RGB,
        stroke: RGB,
        stroke_width: int,
    ) -> Image.Image:
        font = self.fonts.get(style.font_family, result.font_size_px)
        layer = Image.new("RGBA", size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        ox, oy = origin
        try:
            for p in result.placements:
                # anchor "lm": x at the line start, y at the middle of its cell
                draw.text(
                    (p.x - ox, p.y + result.line_height / 2.0 - oy),
                    p.text,
                    font=font,
                    fill=fill + (255,),
                    anchor="lm",
                    stroke_width=max(0, stroke_width),
                    stroke_fill=stroke + (255,),
                )
        except (OSError, ValueError) as e:
            raise MeasurementBackendError(f"Failed to draw text: {e}") from e
        return layer
