"""Shared fixtures for the mangaflow test suite."""

import logging

import pytest
from PIL import Image

from mangaflow.core.compositor import PageCompositor
from mangaflow.core.geometry import Box
from mangaflow.core.layout import LayoutEngine
from mangaflow.core.measure import FixedWidthMeasurer, FontManager
from mangaflow.core.types import TextBlock
from mangaflow.utils.image_utils import encode_png


@pytest.fixture
def measurer():
    return FixedWidthMeasurer()


@pytest.fixture
def engine(measurer):
    return LayoutEngine(measurer)


@pytest.fixture(scope="session")
def fonts():
    return FontManager()


@pytest.fixture
def compositor(engine, fonts):
    return PageCompositor(engine, fonts)


@pytest.fixture
def page_image():
    return Image.new("RGB", (300, 200), (200, 60, 60))


@pytest.fixture
def page_png(page_image):
    return encode_png(page_image)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for h in root.handlers:
        if h not in handlers:
            h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def make_block(block_id, x, y, w, h, **kwargs) -> TextBlock:
    return TextBlock(id=block_id, bbox=Box(x, y, w, h), **kwargs)
