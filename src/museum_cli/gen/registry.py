from __future__ import annotations

from pathlib import Path
from typing import Optional

import httpx

from .config import ConfigError, MuseumConfig, PlaceholderServiceConfig, resolve_config
from .service import GenerationService
from .services.comfyui import ComfyUIService
from .services.placeholder import PlaceholderService


class ServiceRegistry:
    def __init__(self, config: MuseumConfig, client: Optional[httpx.AsyncClient] = None):
        self._config = config
        self._client = client
        self._services: dict[str, GenerationService] = {}

    @classmethod
    def from_config_file(cls, config_path: Optional[Path] = None) -> "ServiceRegistry":
        return cls(resolve_config(config_path))

    @property
    def config(self) -> MuseumConfig:
        return self._config

    def get_service(self, name: str) -> GenerationService:
        if name in self._services:
            return self._services[name]

        service = self._instantiate_service(name)
        self._services[name] = service
        return service

    def get_default_service(self) -> GenerationService:
        return self.get_service(self._config.default_service)

    async def aclose(self) -> None:
        for service in self._services.values():
            await service.aclose()
        self._services.clear()

    def _instantiate_service(self, name: str) -> GenerationService:
        if name == "placeholder":
            return PlaceholderService(
                self._config.services.placeholder or PlaceholderServiceConfig()
            )

        if name == "comfyui":
            if self._config.services.comfyui is None:
                raise ConfigError(
                    "Service 'comfyui' is not configured in museum.toml. "
                    "Add a [services.comfyui] section."
                )
            return ComfyUIService(self._config.services.comfyui, client=self._client)

        raise ConfigError(
            f"Unknown service: '{name}'. "
            f"Available services: {sorted(self._config.configured_services())}"
        )
