"""HTTP client for the external recognition worker."""

import logging
from typing import Any, Dict, Optional

import httpx

from app.config import settings
from app.jobs.errors import TransientExecutionError

logger = logging.getLogger(__name__)


class RecognitionWorkerClient:
    """Posts recognition requests to ``<base_url><model endpoint>``.

    Every failure mode (timeout, non-2xx, transport error, non-JSON body) is
    raised as TransientExecutionError with a ``cause`` so the job's error
    history can tell them apart.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.worker_base_url).rstrip("/")
        self.token = settings.worker_token if token is None else token
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def recognize(
        self,
        endpoint: str,
        payload: Dict[str, Any],
        timeout: float,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        job_id = payload.get("jobId")
        client = await self._get_client()

        try:
            response = await client.post(
                url,
                json=payload,
                headers=self._headers(),
                timeout=httpx.Timeout(timeout),
            )
        except httpx.TimeoutException as e:
            raise TransientExecutionError(
                f"Recognition worker timed out after {timeout:.0f}s",
                cause="timeout",
                job_id=job_id,
                detail=repr(e),
            ) from e
        except httpx.HTTPError as e:
            raise TransientExecutionError(
                f"Recognition worker unreachable: {type(e).__name__}",
                cause="network",
                job_id=job_id,
                detail=str(e),
            ) from e

        if not response.is_success:
            raise TransientExecutionError(
                f"Recognition worker returned HTTP {response.status_code}",
                cause="http_status",
                job_id=job_id,
                status_code=response.status_code,
                detail=response.text[:2000],
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransientExecutionError(
                "Recognition worker returned a non-JSON body",
                cause="invalid_response",
                job_id=job_id,
                detail=response.text[:2000],
            ) from e

        logger.debug(
            "Recognition worker responded",
            extra={"job_id": job_id, "url": url, "status_code": response.status_code},
        )
        return body
