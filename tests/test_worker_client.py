"""
Tests for the recognition worker HTTP client.

Every failure mode surfaces as TransientExecutionError with a distinct cause.
"""

import json

import httpx
import pytest

from app.jobs.errors import TransientExecutionError
from app.jobs.worker_client import RecognitionWorkerClient

from conftest import WORKER_URL, recognition_response


class TestRecognize:

    @pytest.mark.asyncio
    async def test_posts_payload_with_bearer_token(self, worker_factory):
        worker, handler = worker_factory(recognition_response())

        body = await worker.recognize("/api/v1/ai/yolo/detect", {"jobId": "job-1", "fileRef": "a.pdf"}, 30)

        request = handler.requests[0]
        assert str(request.url) == f"{WORKER_URL}/api/v1/ai/yolo/detect"
        assert request.method == "POST"
        assert request.headers["Authorization"] == "Bearer worker-secret"
        assert json.loads(request.content) == {"jobId": "job-1", "fileRef": "a.pdf"}
        assert body["model_version"] == "yolo-8.1"

    @pytest.mark.asyncio
    async def test_no_authorization_header_without_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        worker = RecognitionWorkerClient(base_url=WORKER_URL, token="", client=client)
        await worker.recognize("/detect", {}, 5)

        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_non_2xx_is_http_status_failure(self, worker_factory):
        worker, _ = worker_factory(httpx.Response(503, text="overloaded"))

        with pytest.raises(TransientExecutionError) as exc:
            await worker.recognize("/detect", {"jobId": "job-1"}, 5)

        assert exc.value.cause == "http_status"
        assert exc.value.status_code == 503
        assert exc.value.detail == "overloaded"
        assert exc.value.job_id == "job-1"

    @pytest.mark.asyncio
    async def test_timeout_failure(self, worker_factory):
        worker, _ = worker_factory(httpx.ReadTimeout("timed out"))

        with pytest.raises(TransientExecutionError) as exc:
            await worker.recognize("/detect", {}, 5)

        assert exc.value.cause == "timeout"

    @pytest.mark.asyncio
    async def test_connection_failure(self, worker_factory):
        worker, _ = worker_factory(httpx.ConnectError("refused"))

        with pytest.raises(TransientExecutionError) as exc:
            await worker.recognize("/detect", {}, 5)

        assert exc.value.cause == "network"

    @pytest.mark.asyncio
    async def test_non_json_body_is_invalid_response(self, worker_factory):
        worker, _ = worker_factory(httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(TransientExecutionError) as exc:
            await worker.recognize("/detect", {}, 5)

        assert exc.value.cause == "invalid_response"

    @pytest.mark.asyncio
    async def test_close_keeps_injected_client_open(self, worker_factory):
        worker, _ = worker_factory()
        await worker.close()

        assert not worker._client.is_closed
