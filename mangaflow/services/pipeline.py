"""
Page pipeline: OCR -> ingest -> cluster -> translate -> moderate -> composite -> persist.

The external collaborators (OCR, translation, storage, moderation) are
abstract; every call to them runs under a per-stage timeout and the retry
policy from settings. Compositing is CPU-bound and runs in a worker thread.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from mangaflow.config import Settings, get_settings
from mangaflow.core.clustering import BaseClusterer, ProximityClusterer
from mangaflow.core.compositor import CompositeOptions, CompositeReport, PageCompositor
from mangaflow.core.ingest import ingest_detections
from mangaflow.core.types import BlockStatus, Bubble, OCRDetection, Page, TextBlock
from mangaflow.logging_config import page_context
from mangaflow.utils.image_utils import decode_image, encode_png
from mangaflow.utils.retry import with_retry, with_timeout

logger = logging.getLogger(__name__)

MASKED_TEXT = "\u2022\u2022\u2022"


# -----------------------------
# External collaborators
# -----------------------------
class BaseOCRProvider:
    def name(self) -> str:
        raise NotImplementedError

    async def detect(self, image_bytes: bytes, lang: str) -> List[OCRDetection]:
        raise NotImplementedError


class BaseTranslationProvider:
    def name(self) -> str:
        raise NotImplementedError

    async def translate(self, texts: Dict[str, str], source_lang: str, target_lang: str) -> Dict[str, str]:
        """Map of block id -> source text in, block id -> translated text out."""
        raise NotImplementedError


class BasePageStore:
    async def save_page(self, page: Page) -> None:
        raise NotImplementedError


@dataclass
class ModerationResult:
    """``action`` is one of allow / mask / flag / block."""
    action: str = "allow"
    reason: Optional[str] = None
    masked_text: Optional[str] = None


# (source text, translated text) -> verdict
ModerationFn = Callable[[str, str], Awaitable[ModerationResult]]


@dataclass
class PipelineResult:
    page: Page
    bubbles: List[Bubble]
    rendered_png: bytes
    skipped_block_ids: List[str] = field(default_factory=list)
    timings_ms: Dict[str, int] = field(default_factory=dict)

    @property
    def blocks(self) -> List[TextBlock]:
        return self.page.blocks


def apply_moderation(block: TextBlock, verdict: ModerationResult) -> None:
    if verdict.action == "mask":
        block.translated_text = verdict.masked_text or MASKED_TEXT
    elif verdict.action == "flag":
        block.needs_review = True
        block.status = BlockStatus.FLAGGED
    elif verdict.action == "block":
        block.translated_text = None
        block.needs_review = True
        block.status = BlockStatus.FLAGGED


class PagePipeline:
    """Runs one page through every stage and renders the result."""

    def __init__(
        self,
        ocr: BaseOCRProvider,
        translator: BaseTranslationProvider,
        compositor: PageCompositor,
        *,
        store: Optional[BasePageStore] = None,
        moderate: Optional[ModerationFn] = None,
        clusterer: Optional[BaseClusterer] = None,
        options: Optional[CompositeOptions] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.ocr = ocr
        self.translator = translator
        self.compositor = compositor
        self.store = store
        self.moderate = moderate
        self.clusterer = clusterer or ProximityClusterer(self.settings.cluster_params())
        self.options = options or CompositeOptions(style=self.settings.layout_style())

    async def _stage(self, stage: str, factory: Callable[[], Awaitable], timings: Dict[str, int]):
        s = self.settings
        start = time.perf_counter()
        try:
            return await with_retry(
                lambda: with_timeout(factory, s.STAGE_TIMEOUT_S, stage),
                max_attempts=s.RETRY_MAX_ATTEMPTS,
                delay_s=s.RETRY_DELAY_S,
                backoff=s.RETRY_BACKOFF,
                stage=stage,
            )
        finally:
            timings[stage] = timings.get(stage, 0) + int((time.perf_counter() - start) * 1000)

    def _render_sync(self, image_bytes: bytes, blocks: Sequence[TextBlock]) -> Tuple[bytes, CompositeReport]:
        image = decode_image(image_bytes)
        out, report = self.compositor.composite_with_report(image, blocks, self.options)
        return encode_png(out), report

    async def _render(self, image_bytes: bytes, blocks: Sequence[TextBlock], timings: Dict[str, int]):
        start = time.perf_counter()
        try:
            # decode and style errors are not transient; no retry
            return await with_timeout(
                lambda: asyncio.to_thread(self._render_sync, image_bytes, list(blocks)),
                self.settings.STAGE_TIMEOUT_S,
                "render",
            )
        finally:
            timings["render"] = int((time.perf_counter() - start) * 1000)

    async def process_page(
        self,
        page_id: str,
        image_bytes: bytes,
        source_lang: str,
        target_lang: str,
    ) -> PipelineResult:
        """
        Process one page end to end.

        Raises:
            ImageDecodeError: The page image cannot be decoded.
            StageFailedError: An external stage kept failing.
        """
        with page_context(page_id):
            return await self._process_page(page_id, image_bytes, source_lang, target_lang)

    async def _process_page(
        self,
        page_id: str,
        image_bytes: bytes,
        source_lang: str,
        target_lang: str,
    ) -> PipelineResult:
        timings: Dict[str, int] = {}
        logger.info(f"Processing page {source_lang} -> {target_lang}")

        image = await asyncio.to_thread(decode_image, image_bytes)

        detections = await self._stage(
            "ocr", lambda: self.ocr.detect(image_bytes, source_lang), timings
        )
        blocks = ingest_detections(
            detections,
            image.size,
            confidence_threshold=self.settings.OCR_CONFIDENCE_THRESHOLD,
        )
        page = Page(id=page_id, original_image=image_bytes, blocks=blocks)

        start = time.perf_counter()
        bubbles = self.clusterer.cluster(blocks)
        timings["cluster"] = int((time.perf_counter() - start) * 1000)

        texts = {b.id: b.source_text for b in blocks if b.source_text}
        if texts:
            translated = await self._stage(
                "translate",
                lambda: self.translator.translate(texts, source_lang, target_lang),
                timings,
            )
            for block in blocks:
                text = translated.get(block.id)
                if text and text.strip():
                    block.translated_text = text
                    if block.status != BlockStatus.FLAGGED:
                        block.status = BlockStatus.TRANSLATED

        if self.moderate is not None:
            for block in blocks:
                if not block.has_translation:
                    continue
                verdict = await self._stage(
                    "moderate",
                    lambda b=block: self.moderate(b.source_text or "", b.translated_text or ""),
                    timings,
                )
                if verdict.action != "allow":
                    logger.warning(f"Block {block.id} moderated: {verdict.action} ({verdict.reason})")
                apply_moderation(block, verdict)

        png, report = await self._render(image_bytes, blocks, timings)
        page.rendered_image = png

        if self.store is not None:
            await self._stage("persist", lambda: self.store.save_page(page), timings)

        logger.info(
            f"Page done: {len(blocks)} blocks, {len(bubbles)} bubbles, "
            f"{len(report.skipped)} skipped, timings={timings}"
        )
        return PipelineResult(
            page=page,
            bubbles=bubbles,
            rendered_png=png,
            skipped_block_ids=report.skipped,
            timings_ms=timings,
        )

    async def rerender_page(self, page: Page) -> PipelineResult:
        """Re-composite from the original image after blocks were edited or removed."""
        with page_context(page.id):
            return await self._rerender_page(page)

    async def _rerender_page(self, page: Page) -> PipelineResult:
        timings: Dict[str, int] = {}
        png, report = await self._render(page.original_image, page.blocks, timings)
        page.rendered_image = png
        bubbles = self.clusterer.cluster(page.blocks)

        if self.store is not None:
            await self._stage("persist", lambda: self.store.save_page(page), timings)

        logger.info(f"Page re-rendered: {len(report.rendered)} rendered, {len(report.skipped)} skipped")
        return PipelineResult(
            page=page,
            bubbles=bubbles,
            rendered_png=png,
            skipped_block_ids=report.skipped,
            timings_ms=timings,
        )
