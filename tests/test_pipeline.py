"""Tests for the page pipeline with fake collaborators."""

import pytest

from mangaflow.config import Settings
from mangaflow.core.errors import ImageDecodeError, StageFailedError
from mangaflow.core.geometry import Box
from mangaflow.core.types import BlockStatus, OCRDetection
from mangaflow.services.pipeline import (
    BaseOCRProvider,
    BasePageStore,
    BaseTranslationProvider,
    ModerationResult,
    PagePipeline,
)


class FakeOCR(BaseOCRProvider):
    def __init__(self, detections, failures=0):
        self.detections = detections
        self.failures = failures
        self.calls = 0

    def name(self):
        return "fake"

    async def detect(self, image_bytes, lang):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("ocr backend unavailable")
        return list(self.detections)


class UpperTranslator(BaseTranslationProvider):
    def __init__(self):
        self.requests = []

    def name(self):
        return "upper"

    async def translate(self, texts, source_lang, target_lang):
        self.requests.append((dict(texts), source_lang, target_lang))
        return {k: v.upper() for k, v in texts.items()}


class MemoryStore(BasePageStore):
    def __init__(self):
        self.saved = []

    async def save_page(self, page):
        self.saved.append((page.id, page.rendered_image))


DETECTIONS = [
    OCRDetection("hello", Box(20, 20, 80, 20), 0.95),
    OCRDetection("there", Box(25, 45, 80, 20), 0.9),
    OCRDetection("far away", Box(180, 150, 100, 30), 0.4),
]


@pytest.fixture
def settings():
    return Settings(RETRY_DELAY_S=0, RETRY_MAX_ATTEMPTS=3, STAGE_TIMEOUT_S=5)


@pytest.mark.asyncio
class TestPagePipeline:
    """End-to-end page processing."""

    async def test_process_page(self, compositor, settings, page_png):
        store = MemoryStore()
        translator = UpperTranslator()
        pipeline = PagePipeline(FakeOCR(DETECTIONS), translator, compositor, store=store, settings=settings)

        result = await pipeline.process_page("page-1", page_png, "ja", "en")

        assert [b.id for b in result.blocks] == ["blk_0", "blk_1", "blk_2"]
        assert [b.translated_text for b in result.blocks] == ["HELLO", "THERE", "FAR AWAY"]
        assert [b.status for b in result.blocks] == [BlockStatus.TRANSLATED, BlockStatus.TRANSLATED, BlockStatus.FLAGGED]
        assert [b.member_block_ids for b in result.bubbles] == [["blk_0", "blk_1"], ["blk_2"]]
        assert result.rendered_png.startswith(b"\x89PNG")
        assert result.page.rendered_image == result.rendered_png
        assert result.skipped_block_ids == []
        assert {"ocr", "cluster", "translate", "render", "persist"} <= set(result.timings_ms)
        assert store.saved == [("page-1", result.rendered_png)]
        assert translator.requests[0][1:] == ("ja", "en")

    async def test_transient_ocr_failure_is_retried(self, compositor, settings, page_png):
        ocr = FakeOCR(DETECTIONS, failures=2)
        pipeline = PagePipeline(ocr, UpperTranslator(), compositor, settings=settings)
        result = await pipeline.process_page("page-1", page_png, "ja", "en")
        assert ocr.calls == 3
        assert len(result.blocks) == 3

    async def test_persistent_ocr_failure_raises(self, compositor, settings, page_png):
        pipeline = PagePipeline(FakeOCR(DETECTIONS, failures=99), UpperTranslator(), compositor, settings=settings)
        with pytest.raises(StageFailedError) as exc_info:
            await pipeline.process_page("page-1", page_png, "ja", "en")
        assert exc_info.value.stage == "ocr"

    async def test_undecodable_page_fails(self, compositor, settings):
        pipeline = PagePipeline(FakeOCR(DETECTIONS), UpperTranslator(), compositor, settings=settings)
        with pytest.raises(ImageDecodeError):
            await pipeline.process_page("page-1", b"not an image", "ja", "en")

    async def test_moderation_actions(self, compositor, settings, page_png):
        async def moderate(source, translated):
            if translated == "HELLO":
                return ModerationResult(action="mask")
            if translated == "THERE":
                return ModerationResult(action="block", reason="policy")
            return ModerationResult(action="flag")

        pipeline = PagePipeline(FakeOCR(DETECTIONS), UpperTranslator(), compositor, moderate=moderate, settings=settings)
        result = await pipeline.process_page("page-1", page_png, "ja", "en")
        hello, there, far = result.blocks
        assert hello.translated_text == "•••"
        assert there.translated_text is None and there.status == BlockStatus.FLAGGED
        assert far.translated_text == "FAR AWAY" and far.needs_review

    async def test_rerender_after_block_removal(self, compositor, settings, page_png):
        pipeline = PagePipeline(FakeOCR(DETECTIONS), UpperTranslator(), compositor, settings=settings)
        first = await pipeline.process_page("page-1", page_png, "ja", "en")
        page = first.page

        assert page.remove_block("blk_2")
        page.block_by_id("blk_0").translated_text = "EDITED"
        again = await pipeline.rerender_page(page)

        assert again.rendered_png.startswith(b"\x89PNG")
        assert page.rendered_image == again.rendered_png
        assert page.original_image == page_png
        assert [b.member_block_ids for b in again.bubbles] == [["blk_0", "blk_1"]]
