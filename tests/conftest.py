"""
Shared fixtures for the job lifecycle tests.

- store / subjects: in-process backends seeded with one tenant's plan documents
- worker_factory: RecognitionWorkerClient over an httpx MockTransport
- coordinator_factory: ExecutionCoordinator wired to the fixtures above
- make_job: builds Job records without going through the service
"""

import asyncio
from typing import Any, Callable, Dict, List

import httpx
import pytest

from app.jobs.coordinator import ExecutionCoordinator
from app.jobs.gate import ConcurrencyGate
from app.jobs.models import Job, JobStatus
from app.jobs.retry import RetryPolicy
from app.jobs.store import InMemoryJobStore
from app.jobs.worker_client import RecognitionWorkerClient
from app.models.base import MB, ModelType
from app.subjects.repository import InMemorySubjectRepository, Subject

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
WORKER_URL = "http://worker.test"


def recognition_response(**overrides) -> Dict[str, Any]:
    body = {
        "detected_objects": [
            {"id": "d1", "type": "door", "category": "architectural", "confidence": 0.9,
             "boundingBox": {"x": 10, "y": 20, "width": 30, "height": 40}},
            {"id": "d2", "type": "extinguisher", "category": "fire_safety", "confidence": 0.7,
             "bbox": [1, 2, 3, 4]},
        ],
        "extracted_text": [{"text": "SALA 01", "confidence": 0.95}],
        "layer_analysis": [{"layer_name": "A-WALL", "objectCount": 12, "object_types": ["wall"]}],
        "processing_time_ms": 1530,
        "model_version": "yolo-8.1",
    }
    body.update(overrides)
    return body


@pytest.fixture
def subjects() -> InMemorySubjectRepository:
    return InMemorySubjectRepository([
        Subject(
            id="plan-1",
            tenant_id=TENANT,
            original_name="ground-floor.pdf",
            file_ref="tenant-a/ground-floor.pdf",
            mime_type="application/pdf",
            subject_type="planta_baixa",
            size_bytes=2 * MB,
        ),
        Subject(
            id="plan-2",
            tenant_id=TENANT,
            original_name="escape-routes.png",
            file_ref="tenant-a/escape-routes.png",
            mime_type="image/png",
            subject_type="rotas_fuga",
            size_bytes=1 * MB,
        ),
        Subject(
            id="plan-cad",
            tenant_id=TENANT,
            original_name="electrical.dwg",
            file_ref="tenant-a/electrical.dwg",
            subject_type="instalacao_eletrica",
            size_bytes=3 * MB,
        ),
        Subject(
            id="plan-huge",
            tenant_id=TENANT,
            original_name="site.jpg",
            file_ref="tenant-a/site.jpg",
            subject_type="planta_baixa",
            size_bytes=80 * MB,
        ),
        Subject(
            id="plan-other",
            tenant_id=OTHER_TENANT,
            original_name="other.pdf",
            file_ref="tenant-b/other.pdf",
            subject_type="planta_baixa",
            size_bytes=1 * MB,
        ),
    ])


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def make_job() -> Callable[..., Job]:
    def _make(**fields) -> Job:
        defaults = {
            "tenant_id": TENANT,
            "name": "Ground floor detection",
            "subject_id": "plan-1",
            "model_type": ModelType.YOLO_V8,
            "status": JobStatus.QUEUED,
        }
        defaults.update(fields)
        return Job(**defaults)

    return _make


class RecordingHandler:
    """MockTransport handler that records requests and plays back scripted responses.

    Each script item is a dict (JSON 200), an httpx.Response, or an exception
    instance to raise. The last item repeats once the script runs out.
    """

    def __init__(self, script: List[Any]):
        self.script = list(script)
        self.requests: List[httpx.Request] = []
        self.hold = None

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.hold is not None:
            await self.hold.wait()
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)

    def block(self) -> asyncio.Event:
        """Hold every call until the returned event is set."""
        self.hold = asyncio.Event()
        return self.hold


@pytest.fixture
def worker_factory():
    def _make(*script) -> tuple:
        handler = RecordingHandler(list(script) or [recognition_response()])
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        worker = RecognitionWorkerClient(base_url=WORKER_URL, token="worker-secret", client=client)
        return worker, handler

    return _make


@pytest.fixture
def coordinator_factory(store, subjects):
    def _make(worker: RecognitionWorkerClient, max_concurrent_jobs: int = 3) -> ExecutionCoordinator:
        return ExecutionCoordinator(
            store,
            subjects,
            worker,
            gate=ConcurrencyGate(max_concurrent_jobs=max_concurrent_jobs),
            retry_policy=RetryPolicy(base_delay_seconds=30.0, max_delay_seconds=3600.0),
        )

    return _make


async def settle(rounds: int = 20) -> None:
    """Let background execution tasks advance to their next await point."""
    for _ in range(rounds):
        await asyncio.sleep(0)
