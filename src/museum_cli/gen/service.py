from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from .errors import FetchError
from .types import AssetHandle, AssetLocator, JobHandle
from .workflow import GenerationRequest

if TYPE_CHECKING:
    from .assets import AssetStore


class GenerationService(ABC):
    @property
    @abstractmethod
    def service_id(self) -> str: ...

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> JobHandle:
        """Submit a request and return the service-issued job handle."""
        raise NotImplementedError

    @abstractmethod
    async def resolve(self, job: JobHandle, output_stage: str) -> AssetLocator:
        """Wait for the job's result record and locate its output image."""
        raise NotImplementedError

    @abstractmethod
    async def download(self, locator: AssetLocator) -> tuple[bytes, str]:
        """Return the raw asset bytes and their content type."""
        raise NotImplementedError

    async def fetch(self, locator: AssetLocator, assets: AssetStore) -> AssetHandle:
        data, content_type = await self.download(locator)
        if not data:
            raise FetchError(f"Asset '{locator.name}' came back empty")
        return assets.put(data, name=locator.name, content_type=content_type)

    async def aclose(self) -> None:
        pass
