"""Tests for the HTTP router."""

import base64
import io
import json

import cv2
import httpx
import numpy as np
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from PIL import Image

from mangaflow.api.render import router
from mangaflow.services import render_service as render_service_module


@pytest.fixture
def client():
    app = FastAPI()
    app.include_router(router)
    return TestClient(app)


BLOCKS = [
    {"id": "a", "bbox": {"x": 10, "y": 10, "width": 50, "height": 20}},
    {"id": "b", "bbox": {"x": 15, "y": 35, "width": 55, "height": 20}},
]


def fetch_page(monkeypatch, image_bytes):
    requested = []

    async def fake_fetch(url, timeout):
        requested.append(url)
        return image_bytes

    monkeypatch.setattr(render_service_module, "fetch_image_bytes", fake_fetch)
    return requested


class TestHealth:
    """Service liveness."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": "0.1.0"}


class TestLayoutEndpoint:
    """POST /api/v1/layout."""

    def test_layout_success(self, client):
        response = client.post("/api/v1/layout", json={
            "text": "Hello there",
            "box": {"x": 0, "y": 0, "width": 200, "height": 100},
        })
        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["data"]["font_size_px"] > 0
        assert body["data"]["lines"]
        assert len(body["data"]["placements"]) == len(body["data"]["lines"])

    def test_degenerate_box(self, client):
        response = client.post("/api/v1/layout", json={
            "text": "Hello",
            "box": {"x": 0, "y": 0, "width": 0, "height": 100},
        })
        data = response.json()["data"]
        assert data["degenerate"] is True
        assert data["lines"] == []

    def test_invalid_style_is_client_error(self, client):
        response = client.post("/api/v1/layout", json={
            "text": "Hello",
            "box": {"x": 0, "y": 0, "width": 200, "height": 100},
            "style": {"min_font_px": 50, "max_font_px": 10},
        })
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "min_font_px" in response.json()["error"]

    def test_unknown_alignment_rejected(self, client):
        response = client.post("/api/v1/layout", json={
            "text": "Hello",
            "box": {"x": 0, "y": 0, "width": 200, "height": 100},
            "style": {"horizontal_align": "justify"},
        })
        assert response.status_code == 422


class TestClusterEndpoint:
    """POST /api/v1/cluster."""

    def test_adjacent_blocks_cluster_together(self, client):
        response = client.post("/api/v1/cluster", json={"blocks": BLOCKS})
        bubbles = response.json()["data"]["bubbles"]
        assert len(bubbles) == 1
        assert sorted(bubbles[0]["member_block_ids"]) == ["a", "b"]

    def test_params_override(self, client):
        response = client.post("/api/v1/cluster", json={"blocks": BLOCKS, "params": {"merge_ratio": 0.1}})
        assert len(response.json()["data"]["bubbles"]) == 2

    def test_image_url_uses_bubble_outlines(self, client, monkeypatch):
        page = np.full((400, 600, 3), 255, dtype=np.uint8)
        cv2.ellipse(page, (300, 200), (120, 80), 0, 0, 360, (0, 0, 0), 2)
        buf = io.BytesIO()
        Image.fromarray(page).save(buf, format="PNG")
        fetch_page(monkeypatch, buf.getvalue())

        blocks = [{"id": "inside", "bbox": {"x": 270, "y": 190, "width": 60, "height": 20}}]
        response = client.post("/api/v1/cluster", json={"blocks": blocks, "image_url": "https://cdn.test/p1.png"})
        bubbles = response.json()["data"]["bubbles"]
        assert any("inside" in b["member_block_ids"] for b in bubbles)

    def test_image_url_on_blank_page_finds_no_bubbles(self, client, monkeypatch, page_png):
        fetch_page(monkeypatch, page_png)
        response = client.post("/api/v1/cluster", json={"blocks": BLOCKS, "image_url": "https://cdn.test/p1.png"})
        assert response.json()["success"] is True
        assert response.json()["data"]["bubbles"] == []

    def test_image_download_failure(self, client, monkeypatch):
        async def refuse(url, timeout):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(render_service_module, "fetch_image_bytes", refuse)
        response = client.post("/api/v1/cluster", json={"blocks": BLOCKS, "image_url": "https://cdn.test/p1.png"})
        assert response.json()["success"] is False
        assert "connection refused" in response.json()["error"]


class TestRenderEndpoint:
    """POST /api/v1/render."""

    def _post(self, client, image_bytes, blocks, **form):
        data = {"blocks": json.dumps(blocks)}
        data.update({k: str(v).lower() if isinstance(v, bool) else v for k, v in form.items()})
        return client.post(
            "/api/v1/render",
            files={"file": ("page.png", image_bytes, "image/png")},
            data=data,
        )

    def test_render_returns_png(self, client, page_png):
        blocks = [dict(BLOCKS[0], translated_text="Hi"), BLOCKS[1]]
        response = self._post(client, page_png, blocks)
        body = response.json()
        assert body["success"] is True
        assert base64.b64decode(body["data"]["image_base64"]).startswith(b"\x89PNG")
        assert body["data"]["rendered"] == ["a"]
        assert body["data"]["skipped"] == []
        assert body["data"]["thumbnail_base64"] is None

    def test_render_with_thumbnail(self, client, page_png):
        response = self._post(client, page_png, [dict(BLOCKS[0], translated_text="Hi")], thumbnail=True)
        thumb = base64.b64decode(response.json()["data"]["thumbnail_base64"])
        assert thumb.startswith(b"\xff\xd8")

    def test_render_with_style(self, client, page_png):
        style = json.dumps({"padding_px": 0, "horizontal_align": "left"})
        response = self._post(client, page_png, [dict(BLOCKS[0], translated_text="Hi")], style=style)
        assert response.json()["success"] is True

    def test_bad_image_is_client_error(self, client):
        response = self._post(client, b"garbage", [dict(BLOCKS[0], translated_text="Hi")])
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_bad_blocks_json_is_client_error(self, client, page_png):
        response = client.post(
            "/api/v1/render",
            files={"file": ("page.png", page_png, "image/png")},
            data={"blocks": "[{not json"},
        )
        assert response.status_code == 400

    def test_non_image_upload_rejected(self, client):
        response = client.post(
            "/api/v1/render",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            data={"blocks": "[]"},
        )
        assert response.status_code == 400


class TestRenderFromUrlEndpoint:
    """POST /api/v1/render/url."""

    def test_render_from_url(self, client, monkeypatch, page_png):
        requested = fetch_page(monkeypatch, page_png)
        payload = {
            "image_url": "https://cdn.test/p1.png",
            "blocks": [dict(BLOCKS[0], translated_text="Hi"), BLOCKS[1]],
            "thumbnail": True,
        }
        response = client.post("/api/v1/render/url", json=payload)
        body = response.json()
        assert requested == ["https://cdn.test/p1.png"]
        assert body["success"] is True
        assert body["data"]["rendered"] == ["a"]
        assert base64.b64decode(body["data"]["image_base64"]).startswith(b"\x89PNG")
        assert base64.b64decode(body["data"]["thumbnail_base64"]).startswith(b"\xff\xd8")

    def test_undecodable_download_is_client_error(self, client, monkeypatch):
        fetch_page(monkeypatch, b"<html>not found</html>")
        payload = {"image_url": "https://cdn.test/p1.png", "blocks": [dict(BLOCKS[0], translated_text="Hi")]}
        response = client.post("/api/v1/render/url", json=payload)
        assert response.status_code == 400
        assert response.json()["success"] is False
