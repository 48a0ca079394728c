"""Tests for page compositing."""

import pytest
from PIL import Image

from mangaflow.core.compositor import (
    BLACK,
    WHITE,
    CompositeOptions,
    PageCompositor,
    block_style,
    contrast_ratio,
    pick_text_colors,
)
from mangaflow.core.errors import ImageDecodeError, InvalidStyle
from mangaflow.core.layout import LayoutEngine, LayoutStyle
from mangaflow.core.measure import FixedWidthMeasurer

from tests.conftest import make_block

OPAQUE_WHITE = (255, 255, 255, 255)


class PickyMeasurer(FixedWidthMeasurer):
    """Fails on any text containing BOOM."""

    def measure_width(self, text, font_family, font_size_px):
        if "BOOM" in text:
            raise RuntimeError("glyph lookup failed")
        return super().measure_width(text, font_family, font_size_px)


def region_bytes(img, box):
    return img.crop(box).tobytes()


class TestComposite:
    """Masking, drawing and isolation."""

    def test_input_image_is_not_mutated(self, compositor, page_image):
        before = page_image.tobytes()
        blocks = [make_block("b1", 20, 20, 150, 60, translated_text="Hello there")]
        out = compositor.composite(page_image, blocks)
        assert page_image.tobytes() == before
        assert out is not page_image
        assert out.mode == "RGB"
        assert out.size == page_image.size
        assert out.tobytes() != before

    def test_transparent_page_keeps_alpha(self, compositor):
        page = Image.new("RGBA", (300, 200), (200, 60, 60, 0))
        blocks = [make_block("b1", 20, 20, 150, 60, translated_text="Hi")]
        out = compositor.composite(page, blocks)
        assert out.mode == "RGBA"
        assert out.getpixel((290, 190)) == (200, 60, 60, 0)
        assert out.getpixel((95, 50))[3] > 0

    def test_block_without_translation_is_untouched(self, compositor, page_image):
        blocks = [
            make_block("b1", 20, 20, 150, 60, translated_text=None, source_text="original"),
            make_block("b2", 20, 100, 150, 60, translated_text="   "),
        ]
        out, report = compositor.composite_with_report(page_image, blocks)
        assert out.tobytes() == page_image.tobytes()
        assert report.rendered == [] and report.skipped == []

    def test_mask_covers_region_and_leaves_rest(self, compositor, page_image):
        blocks = [make_block("b1", 20, 20, 150, 60, translated_text="Hi")]
        options = CompositeOptions(mask_color=OPAQUE_WHITE)
        out = compositor.composite(page_image, blocks, options)
        # inside the padding band there is only mask
        assert out.getpixel((22, 22)) == (255, 255, 255)
        assert out.getpixel((250, 150)) == page_image.getpixel((250, 150))

    def test_no_mask_option(self, compositor, page_image):
        blocks = [make_block("b1", 20, 20, 150, 60, translated_text="Hi")]
        out = compositor.composite(page_image, blocks, CompositeOptions(mask_original_regions=False))
        assert out.getpixel((22, 22)) == page_image.getpixel((22, 22))

    def test_failing_block_is_skipped(self, fonts, page_image):
        compositor = PageCompositor(LayoutEngine(PickyMeasurer()), fonts)
        blocks = [
            make_block("ok", 10, 10, 120, 60, translated_text="fine"),
            make_block("bad", 150, 100, 120, 60, translated_text="BOOM"),
        ]
        out, report = compositor.composite_with_report(page_image, blocks, CompositeOptions(mask_color=OPAQUE_WHITE))
        assert report.rendered == ["ok"]
        assert report.skipped == ["bad"]
        assert region_bytes(out, (150, 100, 270, 160)) == region_bytes(page_image, (150, 100, 270, 160))
        assert out.getpixel((12, 12)) == (255, 255, 255)

    def test_degenerate_block_gets_mask_only(self, compositor, page_image):
        blocks = [make_block("tiny", 10, 10, 20, 20, translated_text="text")]
        out, report = compositor.composite_with_report(page_image, blocks, CompositeOptions(mask_color=OPAQUE_WHITE))
        assert report.rendered == ["tiny"]
        assert out.getpixel((20, 20)) == (255, 255, 255)

    def test_invalid_style_aborts(self, compositor, page_image):
        options = CompositeOptions(style=LayoutStyle(min_font_px=50, max_font_px=10))
        with pytest.raises(InvalidStyle):
            compositor.composite(page_image, [make_block("b1", 0, 0, 50, 50, translated_text="x")], options)

    def test_rgba_input_returns_rgb(self, compositor):
        img = Image.new("RGBA", (100, 100), (0, 0, 255, 128))
        out = compositor.composite(img, [make_block("b1", 10, 10, 80, 80, translated_text="Yo")])
        assert out.mode == "RGB"


class TestCompositeBytes:
    """Decode / encode wrapper."""

    def test_returns_png(self, compositor, page_png):
        png = compositor.composite_bytes(page_png, [make_block("b1", 20, 20, 150, 60, translated_text="Hi")])
        assert png.startswith(b"\x89PNG")

    def test_bad_bytes_raise_decode_error(self, compositor):
        with pytest.raises(ImageDecodeError):
            compositor.composite_bytes(b"definitely not an image", [])


class TestColours:
    """Contrast-based text colour selection and per-block overrides."""

    def test_contrast_ratio_extremes(self):
        assert contrast_ratio(BLACK, WHITE) == pytest.approx(21.0)
        assert contrast_ratio(WHITE, WHITE) == pytest.approx(1.0)

    def test_pick_text_colors(self):
        assert pick_text_colors((250, 250, 250)) == (BLACK, WHITE)
        assert pick_text_colors((10, 10, 30)) == (WHITE, BLACK)

    def test_auto_text_color_on_dark_page(self, compositor):
        dark = Image.new("RGB", (200, 100), (0, 0, 0))
        options = CompositeOptions(mask_original_regions=False, auto_text_color=True, stroke_width=0)
        out = compositor.composite(dark, [make_block("b1", 0, 0, 200, 100, translated_text="HELLO")], options)
        # white glyphs appear on the black page
        assert max(px[0] for px in out.getdata()) > 200

    def test_block_style_overrides(self):
        base = LayoutStyle()
        block = make_block("b", 0, 0, 10, 10, font_family="serif", text_align="left")
        style = block_style(base, block)
        assert style.font_family == "serif"
        assert style.horizontal_align == "left"
        assert block_style(base, make_block("c", 0, 0, 10, 10, text_align="justify")) is base
