from __future__ import annotations

import asyncio
import hashlib
import io
import uuid
from typing import TYPE_CHECKING, Optional

from ..errors import FetchError, NoAssetProducedError, ResolutionError
from ..service import GenerationService
from ..types import AssetLocator, JobHandle
from ..workflow import SAMPLER_KINDS, GenerationRequest

if TYPE_CHECKING:
    from ..config import PlaceholderServiceConfig

try:
    from PIL import Image, ImageDraw
except ImportError:
    Image = None  # type: ignore
    ImageDraw = None  # type: ignore


def _require_pillow() -> None:
    if Image is None:
        raise RuntimeError(
            "Pillow is required for the placeholder service. "
            "Install with: uv pip install -e '.[placeholders]'"
        )


def _describe(request: GenerationRequest) -> tuple[str, int, int, int]:
    """Pull prompt text, seed and canvas size out of a request graph."""
    text, seed, width, height = "", 0, 512, 512
    for stage in request.stages.values():
        if stage.class_type in SAMPLER_KINDS:
            seed = int(stage.inputs.get("seed", stage.inputs.get("noise_seed", 0)))
            positive = stage.inputs.get("positive")
            if isinstance(positive, list) and positive[0] in request.stages:
                text = str(request.stages[positive[0]].inputs.get("text", ""))
        elif stage.class_type == "EmptyLatentImage":
            width = int(stage.inputs.get("width", width))
            height = int(stage.inputs.get("height", height))
    return text, seed, width, height


class PlaceholderService(GenerationService):
    """Offline service drawing a labelled card for each request."""

    def __init__(self, config: Optional[PlaceholderServiceConfig] = None):
        self._config = config
        self._jobs: dict[str, GenerationRequest] = {}
        self._images: dict[str, bytes] = {}
        self._submitted = 0

    @property
    def service_id(self) -> str:
        return "placeholder"

    async def _simulate_latency(self) -> None:
        latency = self._config.latency_sec if self._config else 0.0
        await asyncio.sleep(latency)

    async def submit(self, request: GenerationRequest) -> JobHandle:
        await self._simulate_latency()
        job = JobHandle(prompt_id=uuid.uuid4().hex, number=self._submitted)
        self._submitted += 1
        self._jobs[job.prompt_id] = request
        return job

    async def resolve(self, job: JobHandle, output_stage: str) -> AssetLocator:
        _require_pillow()
        request = self._jobs.pop(job.prompt_id, None)
        if request is None:
            raise ResolutionError(f"Unknown job {job.prompt_id}")
        await self._simulate_latency()
        if output_stage != request.output_stage:
            raise NoAssetProducedError(job.prompt_id, output_stage)

        text, seed, width, height = _describe(request)
        digest = hashlib.sha256(f"{seed}:{text}".encode()).digest()
        color = (digest[0], digest[1], digest[2], 255)

        img = Image.new("RGBA", (width, height), color)
        d = ImageDraw.Draw(img)
        margin = min(width, height) // 16
        d.rectangle(
            [margin, margin, width - margin, height - margin],
            outline=(0, 0, 0, 255),
            width=4,
        )
        label = "\n".join([text[:60], f"Seed: {seed}", f"Size: {width}x{height}"])
        d.text((margin * 2, margin * 2), label, fill=(0, 0, 0, 255))

        buf = io.BytesIO()
        img.save(buf, format="PNG")
        name = f"placeholder_{job.prompt_id[:8]}.png"
        self._images[name] = buf.getvalue()
        return AssetLocator(name=name)

    async def download(self, locator: AssetLocator) -> tuple[bytes, str]:
        data = self._images.pop(locator.name, None)
        if data is None:
            raise FetchError(f"No placeholder asset named '{locator.name}'", status_code=404)
        await self._simulate_latency()
        return data, "image/png"
