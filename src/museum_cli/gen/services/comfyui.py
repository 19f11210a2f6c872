from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx

from ..errors import NoAssetProducedError, ResolutionError, SubmissionError, FetchError
from ..service import GenerationService
from ..types import AssetLocator, JobHandle
from ..workflow import GenerationRequest

if TYPE_CHECKING:
    from ..config import ComfyUIServiceConfig

logger = logging.getLogger(__name__)

_HTTP_TIMEOUT = httpx.Timeout(30.0, read=120.0)


def _error_detail(response: httpx.Response) -> str:
    text = response.text.strip()
    if len(text) > 200:
        text = text[:200] + "..."
    return text or response.reason_phrase


def extract_locator(job: JobHandle, record: Any, output_stage: str) -> AssetLocator:
    """Pick the first image of the output stage out of one history record."""
    if not isinstance(record, dict):
        raise ResolutionError(f"History record for job {job.prompt_id} is not an object")

    status = record.get("status") or {}
    if isinstance(status, dict) and status.get("status_str") == "error":
        raise ResolutionError(f"Job {job.prompt_id} failed on the service")

    outputs = record.get("outputs") or {}
    stage_output = outputs.get(output_stage) if isinstance(outputs, dict) else None
    images = stage_output.get("images") if isinstance(stage_output, dict) else None
    if not isinstance(images, list) or not images or not isinstance(images[0], dict):
        raise NoAssetProducedError(job.prompt_id, output_stage)

    return AssetLocator.from_image_entry(images[0])


class ComfyUIService(GenerationService):
    def __init__(
        self,
        config: ComfyUIServiceConfig,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config
        self._client = client
        self._owns_client = client is None

    @property
    def service_id(self) -> str:
        return "comfyui"

    @property
    def base_url(self) -> str:
        return self._config.base_url

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=_HTTP_TIMEOUT)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def submit(self, request: GenerationRequest) -> JobHandle:
        payload = {"prompt": request.to_payload(), "client_id": self._config.client_id}
        try:
            response = await self._get_client().post(f"{self.base_url}/prompt", json=payload)
        except httpx.HTTPError as e:
            raise SubmissionError(f"Transport failure submitting job: {e}") from e

        if response.is_error:
            raise SubmissionError(_error_detail(response), status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise SubmissionError("Submission response is not JSON") from e

        if not isinstance(data, dict) or not data.get("prompt_id"):
            raise SubmissionError("Submission response has no prompt_id")
        if data.get("node_errors"):
            raise SubmissionError(f"Service rejected stages: {sorted(data['node_errors'])}")

        job = JobHandle(prompt_id=str(data["prompt_id"]), number=data.get("number"))
        logger.info(f"Submitted job {job.prompt_id} to {self.base_url}")
        return job

    async def _history(self, job: JobHandle) -> Optional[dict[str, Any]]:
        url = f"{self.base_url}/history/{job.prompt_id}"
        try:
            response = await self._get_client().get(url)
        except httpx.HTTPError as e:
            raise ResolutionError(f"Transport failure reading history: {e}") from e

        if response.is_error:
            raise ResolutionError(_error_detail(response), status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise ResolutionError("History response is not JSON") from e

        if not isinstance(data, dict):
            raise ResolutionError("History response is not an object")
        if not data:
            return None
        if len(data) > 1:
            raise ResolutionError(
                f"History response for job {job.prompt_id} has {len(data)} root entries"
            )

        (key, record), = data.items()
        if key != job.prompt_id:
            raise ResolutionError(f"History response is keyed by '{key}', expected '{job.prompt_id}'")
        return record

    async def resolve(self, job: JobHandle, output_stage: str) -> AssetLocator:
        while True:
            record = await self._history(job)
            if record is not None:
                break
            logger.debug(f"Job {job.prompt_id} not finished, polling again")
            await asyncio.sleep(self._config.poll_interval_sec)

        locator = extract_locator(job, record, output_stage)
        logger.info(f"Job {job.prompt_id} produced {locator.kind}/{locator.subfolder}/{locator.name}")
        return locator

    async def download(self, locator: AssetLocator) -> tuple[bytes, str]:
        try:
            response = await self._get_client().get(
                f"{self.base_url}/view", params=locator.as_query()
            )
        except httpx.HTTPError as e:
            raise FetchError(f"Transport failure fetching '{locator.name}': {e}") from e

        if response.is_error:
            raise FetchError(_error_detail(response), status_code=response.status_code)

        content_type = response.headers.get("content-type", "application/octet-stream")
        return response.content, content_type
