"""
Tests for the HTTP adapter.

Runs the v1 routers against an in-process service and checks that job
errors map to 400/404/409.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1 import jobs as jobs_api
from app.api.v1.router import v1_router
from app.jobs.scheduler import Scheduler
from app.jobs.service import JobService

from conftest import TENANT

HEADERS = {"X-Tenant-ID": TENANT, "X-User-ID": "user-1"}


@pytest.fixture
def client(store, subjects, worker_factory, coordinator_factory):
    worker, _ = worker_factory()
    coordinator = coordinator_factory(worker)
    service = JobService(store, subjects, coordinator, scheduler=Scheduler(store, coordinator))
    app = FastAPI()
    app.include_router(v1_router)
    jobs_api.set_service(service)
    with TestClient(app) as test_client:
        yield test_client
    jobs_api.set_service(None)


def _create(client, **fields):
    body = {"name": "Ground floor", "subject_id": "plan-1", "model_type": "yolo_v8"}
    body.update(fields)
    return client.post("/api/v1/jobs", json=body, headers=HEADERS)


class TestJobsApi:

    def test_create_and_get(self, client):
        created = _create(client)
        assert created.status_code == 201
        job_id = created.json()["id"]

        response = client.get(f"/api/v1/jobs/{job_id}", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "queued"
        assert data["initiated_by"] == "user-1"
        assert data["can_execute"] is True

    def test_missing_tenant_header_rejected(self, client):
        response = client.post(
            "/api/v1/jobs",
            json={"name": "x", "subject_id": "plan-1", "model_type": "yolo_v8"},
        )
        assert response.status_code == 422

    def test_unsupported_format_is_400(self, client):
        response = _create(client, subject_id="plan-cad")

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "ValidationError"

    def test_unknown_job_is_404(self, client):
        assert client.get("/api/v1/jobs/missing", headers=HEADERS).status_code == 404

    def test_cancel_twice_is_409(self, client):
        job_id = _create(client).json()["id"]

        first = client.post(f"/api/v1/jobs/{job_id}/cancel", json={"reason": "dup"}, headers=HEADERS)
        second = client.post(f"/api/v1/jobs/{job_id}/cancel", headers=HEADERS)

        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"
        assert second.status_code == 409

    def test_execute_returns_outcome(self, client):
        job_id = _create(client).json()["id"]

        response = client.post(f"/api/v1/jobs/{job_id}/execute", json={}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["status"] in ("started", "queued")

    def test_list_with_filters(self, client):
        _create(client, name="Fire exits", priority=1)
        _create(client, name="Furniture", priority=4)

        response = client.get(
            "/api/v1/jobs", params={"search": "fire", "status": ["queued"]}, headers=HEADERS
        )

        data = response.json()
        assert response.status_code == 200
        assert data["total"] == 1
        assert data["data"][0]["name"] == "Fire exits"

    def test_batch(self, client):
        response = client.post(
            "/api/v1/jobs/batch",
            json={"subject_ids": ["plan-1", "plan-2"], "model_type": "yolo_v8"},
            headers=HEADERS,
        )

        assert response.status_code == 201
        assert response.json()["count"] == 2

    def test_update_priority(self, client):
        job_id = _create(client).json()["id"]

        response = client.patch(f"/api/v1/jobs/{job_id}", json={"priority": 1}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["priority"] == 1

    def test_update_null_priority_is_400(self, client):
        job_id = _create(client).json()["id"]

        response = client.patch(f"/api/v1/jobs/{job_id}", json={"priority": None}, headers=HEADERS)

        assert response.status_code == 400
        assert client.get("/api/v1/jobs/queue", headers=HEADERS).status_code == 200

    def test_queue_statistics_and_report(self, client):
        _create(client)

        queue = client.get("/api/v1/jobs/queue", headers=HEADERS)
        stats = client.get("/api/v1/jobs/statistics", headers=HEADERS)
        report = client.post("/api/v1/jobs/report", json={"model_types": ["yolo_v8"]}, headers=HEADERS)

        assert queue.status_code == 200
        assert stats.status_code == 200
        assert stats.json()["total"] >= 1
        assert report.status_code == 200
        assert report.json()["summary"]["total_jobs"] >= 1

    def test_recommended_models(self, client):
        response = client.get("/api/v1/subjects/plan-1/recommended-models", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["primary"] == ["floor_plan_ai", "detectron2_cad"]


class TestCatalogApi:

    def test_list_models_by_format(self, client):
        response = client.get("/api/v1/models", params={"file_format": "dwg"})

        models = {m["model_type"] for m in response.json()["models"]}
        assert "layer_analyzer" in models
        assert "yolo_v8" not in models

    def test_get_model(self, client):
        response = client.get("/api/v1/models/tesseract")

        assert response.status_code == 200
        assert response.json()["default_config"]["preprocessing"] == {"grayscale": True}

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
