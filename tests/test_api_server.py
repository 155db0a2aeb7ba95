import io

import numpy as np
import pytest
from PIL import Image as PILImage

import api_server
from models.errors import ModelLoadFailure
from services.segmentation_service import SegmentationService


def _png_bytes(size=(6, 6)) -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", size, (120, 60, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def client(monkeypatch, fake_repository, no_dotenv):
    def factory(**kwargs):
        return SegmentationService(repository_factory=lambda path, delegate: fake_repository(),
                                   **{k: v for k, v in kwargs.items() if v is not None})

    monkeypatch.setattr(api_server, "SEGMENTATION_SERVICE_FACTORY", factory)
    api_server.clear_segmentation_services()
    api_server.app.config["TESTING"] = True
    with api_server.app.test_client() as client:
        yield client
    api_server.clear_segmentation_services()


def test_segment_returns_masked_png(client):
    response = client.post("/api/segment", data={
        "image": (io.BytesIO(_png_bytes()), "photo.png"),
        "model": "SELFIE_SEGMENTER",
    }, content_type="multipart/form-data")

    body = response.get_json()
    assert response.status_code == 200
    assert body["success"]
    assert (body["mask_width"], body["mask_height"]) == (3, 3)
    assert body["model"] == "SELFIE_SEGMENTER"
    assert body["image"].startswith("data:image/png;base64,")


def test_segment_requires_image(client):
    response = client.post("/api/segment", data={}, content_type="multipart/form-data")

    assert response.status_code == 400
    assert not response.get_json()["success"]


def test_segment_rejects_unsupported_type(client):
    response = client.post("/api/segment", data={
        "image": (io.BytesIO(b"hello"), "notes.txt"),
    }, content_type="multipart/form-data")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Unsupported data type."


def test_segment_rejects_unknown_model(client):
    response = client.post("/api/segment", data={
        "image": (io.BytesIO(_png_bytes()), "photo.png"),
        "model": "NOPE",
    }, content_type="multipart/form-data")

    assert response.status_code == 400


def test_segment_reports_model_load_failure(monkeypatch, client):
    def factory(**kwargs):
        def fail(path, delegate):
            raise ModelLoadFailure(f"Model asset not found: {path}")
        return SegmentationService(repository_factory=fail, on_error=kwargs.get("on_error"))

    monkeypatch.setattr(api_server, "SEGMENTATION_SERVICE_FACTORY", factory)
    api_server.clear_segmentation_services()

    response = client.post("/api/segment", data={
        "image": (io.BytesIO(_png_bytes()), "photo.png"),
    }, content_type="multipart/form-data")

    assert response.status_code == 500
    assert "Model asset not found" in response.get_json()["message"]


def test_models_and_health(client):
    models = client.get("/api/models").get_json()
    health = client.get("/api/health").get_json()

    assert "DEEPLABV3" in models["models"]
    assert "NNAPI" in models["delegates"]["interpreter"]
    assert health["status"] == "healthy"
