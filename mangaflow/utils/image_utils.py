"""
Image helpers: decoding, PNG/JPEG encoding, thumbnails and OpenCV bridges.
"""

import base64
import io
import logging

import cv2
import httpx
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from mangaflow.core.errors import ImageDecodeError

logger = logging.getLogger(__name__)

# AVIF/HEIF support is optional
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
    logger.info("AVIF/HEIF decoding enabled")
except ImportError:
    logger.debug("pillow-heif not installed, AVIF/HEIF decoding unavailable")


def decode_image(image_bytes: bytes) -> Image.Image:
    """
    Decode raw bytes into an RGB(A) Pillow image.

    Raises:
        ImageDecodeError: The bytes are empty or not a readable image.
    """
    if not image_bytes:
        raise ImageDecodeError("Empty image buffer")
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Failed to decode image: {e}") from e

    img = ImageOps.exif_transpose(img)
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA" if "A" in img.getbands() or img.mode == "P" else "RGB")
    logger.debug(f"Decoded image: format={img.format}, size={img.size}, mode={img.mode}")
    return img


def encode_png(img: Image.Image) -> bytes:
    output = io.BytesIO()
    img.save(output, format="PNG")
    return output.getvalue()


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def generate_thumbnail(image_bytes: bytes, max_width: int = 300) -> bytes:
    """JPEG thumbnail no wider than ``max_width``; never enlarges."""
    img = decode_image(image_bytes)
    if img.width > max_width:
        height = max(1, round(img.height * max_width / img.width))
        img = img.resize((max_width, height), Image.LANCZOS)
    if img.mode != "RGB":
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.getchannel("A") if img.mode == "RGBA" else None)
        img = background
    output = io.BytesIO()
    img.save(output, format="JPEG", quality=80)
    return output.getvalue()


def image_to_bgr(img: Image.Image) -> np.ndarray:
    return cv2.cvtColor(np.array(img.convert("RGB")), cv2.COLOR_RGB2BGR)


async def fetch_image_bytes(url: str, timeout: float = 30.0) -> bytes:
    """Download a source raster."""
    logger.info(f"Downloading image: {url}")
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()
    logger.info(f"Downloaded {len(response.content)} bytes")
    return response.content
