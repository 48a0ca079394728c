"""
Render service wrapping the layout engine, clusterers and compositor.
Provides a process-wide instance with shared fonts and measurement caches.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from mangaflow.config import Settings, get_settings
from mangaflow.core.clustering import BaseClusterer, ClusterParams, ProximityClusterer
from mangaflow.core.compositor import CompositeOptions, CompositeReport, PageCompositor
from mangaflow.core.geometry import Box
from mangaflow.core.layout import LayoutEngine, LayoutResult, LayoutStyle
from mangaflow.core.measure import FontManager, PillowTextMeasurer
from mangaflow.core.raster_clustering import RasterBubbleClusterer
from mangaflow.core.types import Bubble, TextBlock
from mangaflow.utils.image_utils import decode_image, encode_png, fetch_image_bytes, image_to_bgr

logger = logging.getLogger(__name__)


class RenderService:
    """
    Lays out, clusters and renders text blocks.
    Fonts and the measurement backend are created once and shared.
    """

    _instance: Optional["RenderService"] = None

    def __new__(cls) -> "RenderService":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return

        self._settings: Settings = get_settings()
        self.fonts = FontManager(self._settings.font_paths)
        self.measurer = PillowTextMeasurer(self.fonts)
        self.engine = LayoutEngine(self.measurer)
        self.compositor = PageCompositor(self.engine, self.fonts)
        logger.info(f"Render service ready with {len(self.fonts.font_paths)} font file(s)")

        self._initialized = True

    @property
    def settings(self) -> Settings:
        return self._settings

    def default_style(self) -> LayoutStyle:
        return self._settings.layout_style()

    def default_composite_options(self, style: Optional[LayoutStyle] = None) -> CompositeOptions:
        s = self._settings
        return CompositeOptions(
            mask_original_regions=s.MASK_ORIGINAL_REGIONS,
            mask_color=s.mask_color,
            text_color=s.text_color,
            stroke_color=s.stroke_color,
            stroke_width=s.STROKE_WIDTH,
            style=style or self.default_style(),
        )

    def layout(
        self,
        text: Optional[str],
        box: Box,
        style: Optional[LayoutStyle] = None,
        orientation: str = "horizontal",
        font_size: Optional[int] = None,
    ) -> LayoutResult:
        return self.engine.layout(
            text, box, style or self.default_style(), orientation=orientation, font_size=font_size
        )

    def cluster(
        self,
        blocks: Sequence[TextBlock],
        params: Optional[ClusterParams] = None,
        image_bytes: Optional[bytes] = None,
    ) -> List[Bubble]:
        """Proximity clustering, or raster detection when the page image is given."""
        clusterer: BaseClusterer
        if image_bytes is not None:
            clusterer = RasterBubbleClusterer(image_to_bgr(decode_image(image_bytes)))
        else:
            clusterer = ProximityClusterer(params or self._settings.cluster_params())
        return clusterer.cluster(blocks)

    async def cluster_from_url(
        self,
        image_url: str,
        blocks: Sequence[TextBlock],
    ) -> List[Bubble]:
        image_bytes = await fetch_image_bytes(image_url, timeout=self._settings.HTTP_TIMEOUT_S)
        return self.cluster(blocks, image_bytes=image_bytes)

    def render(
        self,
        image_bytes: bytes,
        blocks: Sequence[TextBlock],
        options: Optional[CompositeOptions] = None,
    ) -> Tuple[bytes, CompositeReport]:
        """
        Composite ``blocks`` onto the decoded image.

        Returns:
            PNG bytes and the per-block report.
        """
        image = decode_image(image_bytes)
        out, report = self.compositor.composite_with_report(
            image, blocks, options or self.default_composite_options()
        )
        return encode_png(out), report

    async def render_from_url(
        self,
        image_url: str,
        blocks: Sequence[TextBlock],
        options: Optional[CompositeOptions] = None,
    ) -> Tuple[bytes, CompositeReport]:
        image_bytes = await fetch_image_bytes(image_url, timeout=self._settings.HTTP_TIMEOUT_S)
        return self.render(image_bytes, blocks, options)


# Singleton accessor
def get_render_service() -> RenderService:
    """Get singleton RenderService instance."""
    return RenderService()
