"""
Layout, clustering and render API endpoints.
"""

import json
import logging
import time
from typing import Annotated, List, Optional

import httpx
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter, ValidationError

from mangaflow.core.compositor import CompositeOptions, CompositeReport
from mangaflow.core.errors import ImageDecodeError, InvalidStyle, MangaFlowError
from mangaflow.models.render import (
    BubbleModel,
    ClusterRequest,
    ClusterResponse,
    ClusterResultData,
    HealthResponse,
    LayoutRequest,
    LayoutResponse,
    LayoutResultData,
    LayoutStyleModel,
    RenderResponse,
    RenderResultData,
    RenderUrlRequest,
    TextBlockModel,
)
from mangaflow.services.render_service import RenderService, get_render_service
from mangaflow.utils.image_utils import generate_thumbnail, to_base64

logger = logging.getLogger(__name__)

router = APIRouter()

_blocks_adapter = TypeAdapter(List[TextBlockModel])


def _client_error(response_cls, e: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content=response_cls(success=False, error=str(e)).model_dump())


def _composite_options(
    service: RenderService,
    style_model: Optional[LayoutStyleModel],
    mask_original_regions: Optional[bool],
    auto_text_color: bool,
) -> CompositeOptions:
    options = service.default_composite_options(style_model.to_style() if style_model else None)
    if mask_original_regions is not None:
        options.mask_original_regions = mask_original_regions
    options.auto_text_color = auto_text_color
    return options


def _render_data(png: bytes, report: CompositeReport, thumbnail: bool, start: float) -> RenderResultData:
    return RenderResultData(
        image_base64=to_base64(png),
        thumbnail_base64=to_base64(generate_thumbnail(png)) if thumbnail else None,
        rendered=report.rendered,
        skipped=report.skipped,
        time_ms=int((time.perf_counter() - start) * 1000),
    )


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint.
    Returns service status and version.
    """
    return HealthResponse(status="ok", version="0.1.0")


@router.post(
    "/api/v1/layout",
    response_model=LayoutResponse,
    tags=["Layout"],
    summary="Fit text into a box",
)
async def layout_text(
    request: LayoutRequest,
    service: RenderService = Depends(get_render_service),
):
    """
    Compute font size, wrapped lines and line placements for one text box.
    """
    style = request.style.to_style() if request.style else service.default_style()
    try:
        result = service.layout(
            request.text,
            request.box.to_box(),
            style,
            orientation=request.orientation,
            font_size=request.font_size,
        )
    except InvalidStyle as e:
        return _client_error(LayoutResponse, e)
    except MangaFlowError as e:
        logger.error(f"Layout failed: {e}")
        return LayoutResponse(success=False, error=str(e))
    return LayoutResponse(success=True, data=LayoutResultData.from_result(result))


@router.post(
    "/api/v1/cluster",
    response_model=ClusterResponse,
    tags=["Layout"],
    summary="Group text blocks into bubbles",
)
async def cluster_blocks(
    request: ClusterRequest,
    service: RenderService = Depends(get_render_service),
):
    """
    Group blocks into bubbles by proximity, or by the bubble outlines found in
    the page image when ``image_url`` is given.
    """
    blocks = [b.to_block() for b in request.blocks]
    params = request.params.to_params() if request.params else None
    if request.image_url:
        try:
            bubbles = await service.cluster_from_url(request.image_url, blocks)
        except ImageDecodeError as e:
            return _client_error(ClusterResponse, e)
        except httpx.HTTPError as e:
            logger.error(f"Image download failed: {e}")
            return ClusterResponse(success=False, error=f"Image download failed: {e}")
    else:
        bubbles = service.cluster(blocks, params)
    return ClusterResponse(
        success=True,
        data=ClusterResultData(bubbles=[BubbleModel.from_bubble(b) for b in bubbles]),
    )


@router.post(
    "/api/v1/render",
    response_model=RenderResponse,
    tags=["Render"],
    summary="Render translated blocks onto an image (multipart upload)",
    description="Upload a page image plus its text blocks (JSON) and get the composited page as base64 PNG.",
)
async def render_page(
    file: Annotated[UploadFile, File(description="Page image")],
    blocks: Annotated[str, Form(description="JSON array of text blocks")],
    style: Annotated[Optional[str], Form(description="JSON layout style")] = None,
    mask_original_regions: Annotated[Optional[bool], Form()] = None,
    auto_text_color: Annotated[bool, Form()] = False,
    thumbnail: Annotated[bool, Form()] = False,
    service: RenderService = Depends(get_render_service),
):
    """
    Composite translated text onto an uploaded page.

    Blocks without ``translated_text`` are left as they are. Blocks that fail
    to render are listed in ``skipped``; the rest of the page still renders.
    """
    if file.content_type and not file.content_type.startswith("image/"):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type: {file.content_type}. Expected image/*"
        )

    try:
        block_models = _blocks_adapter.validate_json(blocks)
        style_model = LayoutStyleModel(**json.loads(style)) if style else None
    except (ValidationError, ValueError, TypeError) as e:
        return _client_error(RenderResponse, e)

    options = _composite_options(service, style_model, mask_original_regions, auto_text_color)

    start = time.perf_counter()
    image_bytes = await file.read()
    try:
        png, report = service.render(image_bytes, [b.to_block() for b in block_models], options)
    except (InvalidStyle, ImageDecodeError) as e:
        return _client_error(RenderResponse, e)
    except MangaFlowError as e:
        logger.error(f"Render failed: {e}")
        return RenderResponse(success=False, error=str(e))

    return RenderResponse(success=True, data=_render_data(png, report, thumbnail, start))


@router.post(
    "/api/v1/render/url",
    response_model=RenderResponse,
    tags=["Render"],
    summary="Render translated blocks onto an image from URL",
    description="Provide a page image URL plus its text blocks and get the composited page as base64 PNG.",
)
async def render_page_from_url(
    request: RenderUrlRequest,
    service: RenderService = Depends(get_render_service),
):
    """
    Composite translated text onto a page downloaded from ``image_url``.
    """
    options = _composite_options(service, request.style, request.mask_original_regions, request.auto_text_color)

    start = time.perf_counter()
    try:
        png, report = await service.render_from_url(
            request.image_url, [b.to_block() for b in request.blocks], options
        )
    except (InvalidStyle, ImageDecodeError) as e:
        return _client_error(RenderResponse, e)
    except httpx.HTTPError as e:
        logger.error(f"Image download failed: {e}")
        return RenderResponse(success=False, error=f"Image download failed: {e}")
    except MangaFlowError as e:
        logger.error(f"Render failed: {e}")
        return RenderResponse(success=False, error=str(e))

    return RenderResponse(success=True, data=_render_data(png, report, request.thumbnail, start))
