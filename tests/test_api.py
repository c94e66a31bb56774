"""Tests for the Thumbforge HTTP API."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import cv2
import httpx
import numpy as np
import pytest
from fastapi import FastAPI, status

from thumbforge.config import get_settings
from thumbforge.engine.executor import ThumbnailPool
from thumbforge.main import create_app, lifespan


def _init_app_state(app: FastAPI, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    with patch.dict(os.environ, env_overrides):
        settings = get_settings()
    app.state.settings = settings
    app.state.thumbnail_pool = ThumbnailPool(settings)


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: ThumbnailPool = app.state.thumbnail_pool
    pool.shutdown()


def _png_bytes(height: int = 60, width: int = 80) -> bytes:
    ok, encoded = cv2.imencode(".png", np.full((height, width, 3), 90, dtype=np.uint8))
    assert ok
    return encoded.tobytes()


def _upload(params: dict[str, object] | str, data: bytes | None = None) -> dict[str, object]:
    return {
        "files": {"file": ("source.png", data if data is not None else _png_bytes(), "image/png")},
        "data": {"params": params if isinstance(params, str) else json.dumps(params)},
    }


@pytest.fixture()
def app() -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application)
    return application


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Async HTTP client for testing the app."""
    async for ac in _make_client(app):
        yield ac


class TestHealthEndpoint:
    async def test_health_returns_ok(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "ok"
        assert data["concurrent_requests"] == 0
        assert data["queue_depth"] == 0


class TestFormatsEndpoint:
    async def test_lists_all_formats(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/formats")
        assert response.status_code == status.HTTP_200_OK
        formats = {f["name"]: f for f in response.json()["formats"]}
        assert set(formats) == {"jpeg", "png", "webp", "jpeg2000"}
        assert formats["jpeg"]["available"] is True
        assert formats["png"]["media_type"] == "image/png"


class TestResizeEndpoint:
    async def test_returns_encoded_image(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/resize?format=png",
            **_upload({"type": "fill", "height": 20, "width": 30}),
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/png"
        decoded = cv2.imdecode(np.frombuffer(response.content, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
        assert decoded.shape[:2] == (20, 30)

    async def test_defaults_to_jpeg(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/resize", **_upload({"type": "square", "height": 10, "width": 10}))
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "image/jpeg"
        assert response.content.startswith(b"\xff\xd8")

    async def test_failed_run_returns_422(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/resize", **_upload({"type": "fill", "height": 0, "width": 10}))
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["detail"] == "Height cannot be 0"

    async def test_undecodable_upload_returns_422(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/resize",
            **_upload({"type": "fill", "height": 10, "width": 10}, data=b"not an image"),
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["detail"] == "Failed to extract image"

    async def test_bad_params_json(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/resize", **_upload("{not json"))
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert "JSON object" in response.json()["detail"]

    async def test_local_paths_rejected_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/resize",
            **_upload({"type": "fill", "height": 10, "width": 10, "watermark_url": "/etc/mark.png"}),
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_upload_size_limit(self) -> None:
        app = create_app()
        _init_app_state(app, THUMBFORGE_MAX_FILE_SIZE="10")
        async for ac in _make_client(app):
            response = await ac.post("/api/v1/resize", **_upload({"type": "fill", "height": 10, "width": 10}))
            assert response.status_code == status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class TestPipelinesEndpoint:
    async def test_disabled_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/pipelines", json={"input_url": "/tmp/x.jpg", "operations": []})
        assert response.status_code == status.HTTP_403_FORBIDDEN

    async def test_runs_against_local_files(self, tmp_path: Path) -> None:
        source = tmp_path / "source.png"
        source.write_bytes(_png_bytes())
        output = tmp_path / "thumb.jpg"

        app = create_app()
        _init_app_state(app, THUMBFORGE_LOCAL_FILES_ENABLED="true")
        async for ac in _make_client(app):
            response = await ac.post(
                "/api/v1/pipelines",
                json={
                    "input_url": f"file://{source}",
                    "operations": [
                        {
                            "type": "resize",
                            "params": {"type": "fill", "height": 16, "width": 16, "output_url": f"file://{output}"},
                        },
                        {"type": "resize", "params": {"type": "fill", "height": 0, "width": 16}},
                    ],
                },
            )
            assert response.status_code == status.HTTP_200_OK
            data = response.json()
            assert data["result"] is False
            assert data["total_operations"] == 2
            assert data["failed_operations"] == 1
            assert data["error_message"] == "Height cannot be 0"
            first, second = data["operations"]
            assert first["result"] is True
            assert first["output_url"] == f"file://{output}"
            assert (first["output_height"], first["output_width"]) == (16, 16)
            assert second["error_message"] == "Height cannot be 0"
            assert output.exists()

    async def test_setup_error_returns_422(self) -> None:
        app = create_app()
        _init_app_state(app, THUMBFORGE_LOCAL_FILES_ENABLED="true")
        async for ac in _make_client(app):
            response = await ac.post(
                "/api/v1/pipelines",
                json={"input_url": "/tmp/in.jpg", "operations": [{"type": "rotate", "params": {}}]},
            )
            assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
            assert response.json()["detail"] == "Could not parse operation 1 - Operation not supported"


class TestAuthentication:
    async def test_no_auth_required_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_auth_required_when_api_key_set(self) -> None:
        app = create_app()
        _init_app_state(app, THUMBFORGE_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health")
            assert response.status_code in (
                status.HTTP_401_UNAUTHORIZED,
                status.HTTP_403_FORBIDDEN,
            )

    async def test_auth_passes_with_correct_key(self) -> None:
        app = create_app()
        _init_app_state(app, THUMBFORGE_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer test-secret-key"},
            )
            assert response.status_code == status.HTTP_200_OK

    async def test_auth_fails_with_wrong_key(self) -> None:
        app = create_app()
        _init_app_state(app, THUMBFORGE_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer wrong-key"},
            )
            assert response.status_code in (
                status.HTTP_401_UNAUTHORIZED,
                status.HTTP_403_FORBIDDEN,
            )


class TestLifespan:
    async def test_starts_pool_and_reports_codecs(self, caplog: pytest.LogCaptureFixture) -> None:
        app = create_app()
        with caplog.at_level(logging.INFO, logger="thumbforge.main"):
            async with lifespan(app):
                assert app.state.thumbnail_pool.active_count == 0
        assert "encoders: JPEG, PNG" in caplog.text
        assert "Draining thumbnail workers" in caplog.text

    async def test_warns_when_local_files_are_unauthenticated(self, caplog: pytest.LogCaptureFixture) -> None:
        app = create_app()
        with (
            patch.dict(os.environ, {"THUMBFORGE_LOCAL_FILES_ENABLED": "true"}),
            caplog.at_level(logging.INFO, logger="thumbforge.main"),
        ):
            async with lifespan(app):
                pass
        assert "open to any client" in caplog.text
