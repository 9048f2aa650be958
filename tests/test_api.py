"""Tests for the cardinfer HTTP API."""

from __future__ import annotations

import io
import os
from typing import TYPE_CHECKING
from unittest.mock import patch

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import cv2
import httpx
import numpy as np
import pytest
from fastapi import FastAPI, status

from cardinfer.api.routes import ResultRecorder
from cardinfer.cards import CardResult, Rank, Suit
from cardinfer.config import get_settings
from cardinfer.main import create_app
from cardinfer.service import CardInference
from conftest import FakeClassifier, FakeFrameSource


def _png_bytes() -> bytes:
    ok, encoded = cv2.imencode(".png", np.zeros((16, 16, 3), dtype=np.uint8))
    assert ok
    return encoded.tobytes()


def _init_app_state(
    app: FastAPI,
    suit: FakeClassifier | None = None,
    rank: FakeClassifier | None = None,
    **env_overrides: str,
) -> None:
    """Manually initialize app state (ASGITransport does not trigger lifespan)."""
    with patch.dict(os.environ, env_overrides):
        settings = get_settings()
    service = CardInference(
        settings,
        frame_source=FakeFrameSource(),
        suit_classifier=suit or FakeClassifier([("spade", 0.995), ("club", 0.003)], model_name="suit_classifier"),
        rank_classifier=rank or FakeClassifier([("ace", 0.97)], model_name="rank_classifier"),
    )
    recorder = ResultRecorder()
    service.inference_callback = recorder
    service.setup()
    app.state.settings = settings
    app.state.card_inference = service
    app.state.result_recorder = recorder


async def _make_client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac
    service: CardInference = app.state.card_inference
    service.shutdown()


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
        assert data["gpu"] is False
        assert data["models_ready"] is True
        assert sorted(data["models_loaded"]) == ["rank_classifier", "suit_classifier"]
        assert data["camera_opened"] is True
        assert isinstance(data["inflight_classifications"], int)
        assert isinstance(data["queue_depth"], int)
        assert data["frames_received"] == 0

    async def test_health_gpu_true_when_cuda(self) -> None:
        cuda_app = create_app()
        _init_app_state(cuda_app, CARDINFER_DEVICE="cuda")
        async for ac in _make_client(cuda_app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_200_OK
            assert response.json()["gpu"] is True


class TestClassifyImageEndpoint:
    async def test_recognizes_card(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify-image",
            files={"file": ("card.png", io.BytesIO(_png_bytes()), "image/png")},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"card": {"suit": "spade", "rank": "ace", "card_string": "acespade"}}

    async def test_no_card_returns_null(self) -> None:
        low_app = create_app()
        _init_app_state(low_app, suit=FakeClassifier([("spade", 0.80)]))
        async for ac in _make_client(low_app):
            response = await ac.post(
                "/api/v1/classify-image",
                files={"file": ("card.png", io.BytesIO(_png_bytes()), "image/png")},
            )
            assert response.status_code == status.HTTP_200_OK
            assert response.json() == {"card": None}

    async def test_undecodable_image_returns_400(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/classify-image",
            files={"file": ("test.jpg", io.BytesIO(b"fake image data"), "image/jpeg")},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "decode" in response.json()["detail"]

    async def test_missing_file_returns_422(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/classify-image")
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    async def test_does_not_update_latest_result(self, client: httpx.AsyncClient) -> None:
        await client.post(
            "/api/v1/classify-image",
            files={"file": ("card.png", io.BytesIO(_png_bytes()), "image/png")},
        )
        response = await client.get("/api/v1/results/latest")
        assert response.json() == {"card": None, "frames_processed": 0}


class TestLatestResultEndpoint:
    async def test_reports_last_sink_outcome(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        recorder: ResultRecorder = app.state.result_recorder
        recorder(None)
        recorder(CardResult(Suit.HEART, Rank.QUEEN))

        response = await client.get("/api/v1/results/latest")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "card": {"suit": "heart", "rank": "queen", "card_string": "queenheart"},
            "frames_processed": 2,
        }


class TestThresholdsEndpoint:
    async def test_get_defaults(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/thresholds")
        assert response.json() == {"suit": 0.99, "rank": 0.95}

    async def test_partial_update(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        response = await client.put("/api/v1/thresholds", json={"rank": 0.5})
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"suit": 0.99, "rank": 0.5}
        service: CardInference = app.state.card_inference
        assert service.rank_confidence_threshold == 0.5

    async def test_out_of_range_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.put("/api/v1/thresholds", json={"suit": 1.5})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestCaptureEndpoints:
    async def test_start_and_stop(self, app: FastAPI, client: httpx.AsyncClient) -> None:
        service: CardInference = app.state.card_inference

        response = await client.post("/api/v1/capture/start")
        assert response.status_code == status.HTTP_202_ACCEPTED
        service.worker.call(lambda: None)
        assert service.is_running

        response = await client.post("/api/v1/capture/stop")
        assert response.status_code == status.HTTP_202_ACCEPTED
        service.worker.call(lambda: None)
        assert not service.is_running


class TestModelsEndpoint:
    async def test_list_models(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/models")
        assert response.status_code == status.HTTP_200_OK
        models = {m["name"]: m for m in response.json()["models"]}
        assert set(models) == {"suit_classifier", "rank_classifier"}
        assert models["suit_classifier"]["status"] == "active"
        assert models["suit_classifier"]["labels"] == ["heart", "diamond", "club", "spade"]
        assert len(models["rank_classifier"]["labels"]) == 13


class TestApiKey:
    async def test_control_requires_key_when_configured(self) -> None:
        auth_app = create_app()
        _init_app_state(auth_app, CARDINFER_API_KEY="test-secret-key")
        async for ac in _make_client(auth_app):
            response = await ac.put("/api/v1/thresholds", json={"suit": 0.9})
            assert response.status_code == status.HTTP_401_UNAUTHORIZED
            assert response.headers["WWW-Authenticate"] == "Bearer"

            response = await ac.put(
                "/api/v1/thresholds",
                json={"suit": 0.9},
                headers={"X-API-Key": "test-secret-key"},
            )
            assert response.status_code == status.HTTP_401_UNAUTHORIZED

            response = await ac.put(
                "/api/v1/thresholds",
                json={"suit": 0.9},
                headers={"Authorization": "Bearer wrong"},
            )
            assert response.status_code == status.HTTP_401_UNAUTHORIZED

            response = await ac.put(
                "/api/v1/thresholds",
                json={"suit": 0.9},
                headers={"Authorization": "Bearer test-secret-key"},
            )
            assert response.status_code == status.HTTP_200_OK

    async def test_reads_open_without_key(self) -> None:
        auth_app = create_app()
        _init_app_state(auth_app, CARDINFER_API_KEY="test-secret-key")
        async for ac in _make_client(auth_app):
            response = await ac.get("/api/v1/health")
            assert response.status_code == status.HTTP_200_OK

    async def test_no_key_configured_allows_control(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/capture/stop")
        assert response.status_code == status.HTTP_202_ACCEPTED
