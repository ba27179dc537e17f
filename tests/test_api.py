"""Tests for the HTTP surface of the plugin."""

from __future__ import annotations

import io
import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import httpx
import pytest
from conftest import FakeNet, install_model_files
from fastapi import FastAPI, status
from huggingface_hub.errors import LocalEntryNotFoundError
from PIL import Image

from infer_inception_v3.config import get_settings
from infer_inception_v3.main import create_app, init_state
from infer_inception_v3.ml.inference import InferencePool


def _init_app_state(app: FastAPI, plugin_dir: Path, **env_overrides: str) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    env = {"INFER_INCEPTION_V3_PLUGIN_DIR": str(plugin_dir), **env_overrides}
    with patch.dict(os.environ, env):
        settings = get_settings()
    init_state(app, settings)
    install_model_files(app.state.model_manager)
    app.state.model_manager.get_net = MagicMock(return_value=FakeNet([0.1, 0.7, 0.2]))


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    pool: InferencePool = app.state.inference_pool
    pool.shutdown()


def _png() -> io.BytesIO:
    buffer = io.BytesIO()
    Image.new("RGB", (64, 48), color=(120, 60, 30)).save(buffer, format="PNG")
    buffer.seek(0)
    return buffer


@pytest.fixture()
def app(tmp_path: Path) -> FastAPI:
    """Create a fresh app instance with default settings."""
    application = create_app()
    _init_app_state(application, tmp_path)
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
        assert data["gpu"] is False
        assert data["models_loaded"] == []
        assert isinstance(data["concurrent_requests"], int)
        assert isinstance(data["queue_depth"], int)

    async def test_health_gpu_true_when_cuda(self, tmp_path: Path) -> None:
        cuda_app = create_app()
        _init_app_state(cuda_app, tmp_path, INFER_INCEPTION_V3_BACKEND="cuda")
        async for ac in _make_client(cuda_app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["gpu"] is True


class TestClassifyImageEndpoint:
    async def test_classify_whole_image(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify-image",
            files={"file": ("test.png", _png(), "image/png")},
        )
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [tag["label"] for tag in data["tags"]] == ["dog", "bird", "cat"]
        assert data["graphics"]["name"] == "InceptionV3"
        assert data["graphics"]["texts"][0]["text"] == "dog : 0.700000"
        assert len(data["measures"]) == 3
        assert data["measures"][0]["name"] == "Confidence"

    async def test_top_k_limits_tags(self, tmp_path: Path) -> None:
        app = create_app()
        _init_app_state(app, tmp_path, INFER_INCEPTION_V3_TOP_K="1")
        async for ac in _make_client(app):
            response = await ac.post(
                "/api/v1/classify-image",
                files={"file": ("test.png", _png(), "image/png")},
            )
            data = response.json()
            assert [tag["label"] for tag in data["tags"]] == ["dog"]
            assert len(data["measures"]) == 3

    async def test_classify_regions(self, client: httpx.AsyncClient) -> None:
        regions = [{"id": 4, "x": 0, "y": 0, "width": 16, "height": 16}]
        response = await client.post(
            "/api/v1/classify-image",
            files={"file": ("test.png", _png(), "image/png")},
            data={"regions": json.dumps(regions)},
        )
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert len(data["tags"]) == 1
        rectangle = data["graphics"]["rectangles"][0]
        assert rectangle["graphics_id"] == 4
        assert rectangle["label"] == "dog : 0.700000"
        assert data["measures"][0]["graphics_id"] == 4

    async def test_invalid_regions_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify-image",
            files={"file": ("test.png", _png(), "image/png")},
            data={"regions": '[{"id": 1}]'},
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    async def test_undecodable_image_returns_400(self, client: httpx.AsyncClient) -> None:
        fake_image = io.BytesIO(b"fake image data")
        response = await client.post(
            "/api/v1/classify-image",
            files={"file": ("test.jpg", fake_image, "image/jpeg")},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "cannot decode" in response.json()["detail"].lower()

    async def test_task_error_returns_422(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        app.state.model_manager.model_dir("infer_inception_v3").joinpath("tensorflow_inception_graph.pb").unlink()
        with patch(
            "infer_inception_v3.ml.model_manager.hf_hub_download",
            side_effect=LocalEntryNotFoundError("offline"),
        ):
            response = await client.post(
                "/api/v1/classify-image",
                files={"file": ("test.png", _png(), "image/png")},
            )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert "Failed to download" in response.json()["detail"]


class TestModelsEndpoint:
    async def test_models_returns_list(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/models")
        assert response.status_code == status.HTTP_200_OK
        models = {m["framework"]: m for m in response.json()["models"]}
        assert models["tensorflow"]["status"] == "active"
        assert models["tensorflow"]["name"] == "tensorflow_inception_graph.pb"
        assert models["onnx"]["status"] == "available"


class TestPluginEndpoint:
    async def test_plugin_descriptor(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/plugin")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["name"] == "infer_inception_v3"
        assert data["article"] == "Rethinking the Inception Architecture for Computer Vision"


class TestParamsEndpoint:
    async def test_get_params(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/params")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["params"]["backend"] == "default"
        assert {f["key"] for f in data["form"]} == {"framework", "backend", "target"}

    async def test_update_params(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        response = await client.put("/api/v1/params", json={"backend": "opencv", "target": "opencl"})
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["params"]["backend"] == "opencv"
        assert app.state.task.param.update is True

        health = await client.get("/api/v1/health")
        assert health.json()["gpu"] is False

    async def test_update_params_invalid(self, client: httpx.AsyncClient) -> None:
        response = await client.put("/api/v1/params", json={"backend": "tpu"})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert "Invalid backend" in response.json()["detail"]

    async def test_update_params_framework_without_model(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        response = await client.put("/api/v1/params", json={"framework": "caffe"})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert "Invalid framework" in response.json()["detail"]
        assert app.state.task.param.framework == "tensorflow"


class TestAuthentication:
    async def test_no_auth_required_by_default(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/health")
        assert response.status_code == status.HTTP_200_OK

    async def test_auth_required_when_api_key_set(self, tmp_path: Path) -> None:
        app = create_app()
        _init_app_state(app, tmp_path, INFER_INCEPTION_V3_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get("/api/v1/health")
            assert response.status_code in (
                status.HTTP_401_UNAUTHORIZED,
                status.HTTP_403_FORBIDDEN,
            )

    async def test_auth_passes_with_correct_key(self, tmp_path: Path) -> None:
        app = create_app()
        _init_app_state(app, tmp_path, INFER_INCEPTION_V3_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer test-secret-key"},
            )
            assert response.status_code == status.HTTP_200_OK

    async def test_auth_fails_with_wrong_key(self, tmp_path: Path) -> None:
        app = create_app()
        _init_app_state(app, tmp_path, INFER_INCEPTION_V3_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            response = await ac.get(
                "/api/v1/health",
                headers={"Authorization": "Bearer wrong-key"},
            )
            assert response.status_code in (
                status.HTTP_401_UNAUTHORIZED,
                status.HTTP_403_FORBIDDEN,
            )

    async def test_rejection_is_logged(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        app = create_app()
        _init_app_state(app, tmp_path, INFER_INCEPTION_V3_API_KEY="test-secret-key")
        async for ac in _make_client(app):
            with caplog.at_level(logging.WARNING, logger="infer_inception_v3.api.middleware"):
                response = await ac.get("/api/v1/models")
            assert response.status_code == status.HTTP_401_UNAUTHORIZED
            assert response.json()["detail"] == "Missing API key"
            assert "Missing API key for GET /api/v1/models" in caplog.text


class TestOversizedUpload:
    async def test_decompression_bomb_returns_400(
        self, client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        response = await client.post(
            "/api/v1/classify-image",
            files={"file": ("test.png", _png(), "image/png")},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "too large" in response.json()["detail"].lower()
