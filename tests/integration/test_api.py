"""Integration tests for arqia.api.main — relay REST endpoints.

All tests use the FastAPI TestClient with the offline echo backend, so no
inference provider is contacted.  Tests cover every endpoint:

- ``GET /health`` — Liveness check.
- ``GET /api/styles`` — Style listing.
- ``POST /api/generate`` — Async and sync generation, request validation.
- ``GET /api/status/{id}`` — Job status polling.
- ``POST /api/cancel/{id}`` — Cancellation.
"""

from __future__ import annotations

import base64
import time

import pytest
from fastapi.testclient import TestClient

from arqia.api.main import create_app
from arqia.core.backends import EchoBackend
from arqia.core.errors import TransportError
from arqia.core.jobs import Prediction
from arqia.core.service import RedesignService
from arqia.core.tracker import JobTracker
from conftest import ScriptedBackend, make_image_bytes, processing


def data_url(data: bytes, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


def wait_for_status(client: TestClient, job_id: str, wanted: str, attempts: int = 100) -> dict:
    """Poll the status endpoint until the job reports *wanted*."""
    body = {}
    for _ in range(attempts):
        body = client.get(f"/api/status/{job_id}").json()
        if body.get("status") == wanted:
            return body
        time.sleep(0.01)
    raise AssertionError(f"Job {job_id} never reached {wanted}: {body}")


@pytest.fixture
def photo() -> str:
    return data_url(make_image_bytes("JPEG"))


# ---------------------------------------------------------------------------
# Health and styles.
# ---------------------------------------------------------------------------


class TestHealth:
    """Test GET /health — liveness."""

    def test_health(self, test_client):
        resp = test_client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "timestamp" in data


class TestStyles:
    """Test GET /api/styles — style catalog."""

    def test_lists_all_styles(self, test_client):
        resp = test_client.get("/api/styles")
        assert resp.status_code == 200
        ids = [style["id"] for style in resp.json()["styles"]]
        assert ids == ["minimalista", "industrial", "biofilico", "contemporaneo"]

    def test_style_fields(self, test_client):
        style = test_client.get("/api/styles").json()["styles"][0]
        assert style["name"] == "Minimalista Lux"
        assert style["prompt"].startswith("Minimalist modern interior")


# ---------------------------------------------------------------------------
# Generation endpoint tests.
# ---------------------------------------------------------------------------


class TestGenerate:
    """Test POST /api/generate — async and sync redesigns."""

    def test_async_returns_job_id(self, test_client, photo):
        resp = test_client.post("/api/generate", json={"image": photo, "style": "minimalista"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "submitted"
        assert data["jobId"].startswith("echo_")

    def test_async_job_completes(self, test_client, photo):
        job_id = test_client.post(
            "/api/generate", json={"image": photo, "style": "industrial"}
        ).json()["jobId"]
        data = wait_for_status(test_client, job_id, "succeeded")
        assert data["imageUrl"] == photo
        assert data["progress"] == 100.0
        assert data["error"] is None

    def test_sync_returns_image(self, test_client, photo):
        resp = test_client.post(
            "/api/generate", json={"image": photo, "style": "biofilico", "mode": "sync"}
        )
        assert resp.status_code == 200
        assert resp.json()["imageUrl"] == photo

    def test_missing_image(self, test_client):
        resp = test_client.post("/api/generate", json={"style": "minimalista"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Image is required"

    @pytest.mark.parametrize("style", [None, "unknown"])
    def test_invalid_style(self, test_client, photo, style):
        resp = test_client.post("/api/generate", json={"image": photo, "style": style})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid style"

    def test_not_a_data_url(self, test_client):
        resp = test_client.post(
            "/api/generate", json={"image": "https://example.com/room.jpg", "style": "minimalista"}
        )
        assert resp.status_code == 400
        assert resp.json()["kind"] == "invalid_image"

    def test_declared_type_mismatch(self, test_client):
        png_as_jpeg = data_url(make_image_bytes("PNG"), "image/jpeg")
        resp = test_client.post(
            "/api/generate", json={"image": png_as_jpeg, "style": "minimalista"}
        )
        assert resp.status_code == 400
        assert resp.json()["kind"] == "invalid_image"

    def test_invalid_mode(self, test_client, photo):
        resp = test_client.post(
            "/api/generate", json={"image": photo, "style": "minimalista", "mode": "later"}
        )
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Status and cancellation.
# ---------------------------------------------------------------------------


class TestStatusAndCancel:
    """Test GET /api/status/{id} and POST /api/cancel/{id}."""

    def test_cancel_running_job(self, test_config, photo):
        backend = EchoBackend(processing_polls=10_000)
        tracker = JobTracker(backend, poll_interval=0.05, max_attempts=1000)
        app = create_app(test_config, RedesignService(backend, tracker))

        with TestClient(app) as client:
            job_id = client.post(
                "/api/generate", json={"image": photo, "style": "minimalista"}
            ).json()["jobId"]

            resp = client.post(f"/api/cancel/{job_id}")
            assert resp.status_code == 200
            assert resp.json() == {"jobId": job_id, "status": "canceled"}

            data = wait_for_status(client, job_id, "canceled")
            assert data["imageUrl"] is None

    def test_status_after_cancel_stays_canceled(self, test_config, photo):
        backend = ScriptedBackend([processing()], cancel_error=TransportError("lost"))
        tracker = JobTracker(backend, poll_interval=0.05, max_attempts=1000)
        app = create_app(test_config, RedesignService(backend, tracker))

        with TestClient(app) as client:
            job_id = client.post(
                "/api/generate", json={"image": photo, "style": "minimalista"}
            ).json()["jobId"]
            assert client.post(f"/api/cancel/{job_id}").json()["status"] == "canceled"

            data = client.get(f"/api/status/{job_id}").json()

        assert data["status"] == "canceled"
        assert data["error"] == "Generation was canceled"
        assert data["imageUrl"] is None

    def test_status_after_timeout_stays_timed_out(self, test_config, photo):
        backend = ScriptedBackend([processing()])
        tracker = JobTracker(backend, poll_interval=0, max_attempts=3)
        app = create_app(test_config, RedesignService(backend, tracker))

        with TestClient(app) as client:
            job_id = client.post(
                "/api/generate", json={"image": photo, "style": "minimalista"}
            ).json()["jobId"]
            data = wait_for_status(client, job_id, "timed_out")

        assert data["error"] == "Generation timed out"
        assert backend.cancel_calls == [job_id]
        assert len(backend.get_calls) == 3

    def test_cancel_unknown_job_is_noop(self, test_client):
        resp = test_client.post("/api/cancel/does-not-exist")
        assert resp.status_code == 200
        assert resp.json()["status"] == "canceled"

    def test_status_of_unknown_job(self, test_client):
        resp = test_client.get("/api/status/does-not-exist")
        assert resp.status_code == 500
        assert resp.json()["kind"] == "transport_error"

    def test_sync_failure_maps_to_500(self, test_config, photo):
        backend = ScriptedBackend(
            run_result=Prediction(id="job_1", status="failed", error="NSFW content detected")
        )
        app = create_app(test_config, RedesignService(backend, JobTracker(backend)))
        with TestClient(app) as client:
            resp = client.post(
                "/api/generate", json={"image": photo, "style": "industrial", "mode": "sync"}
            )
        assert resp.status_code == 500
        assert resp.json() == {"detail": "NSFW content detected", "kind": "generation_failed"}
        assert backend.closed
