from __future__ import annotations

import tomllib
import uuid
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CONFIG_FILENAME = "museum.toml"


class PlaceholderServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    latency_sec: float = Field(default=0.0, ge=0.0)


class ComfyUIServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    base_url: str = "http://127.0.0.1:8188"
    client_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    poll_interval_sec: float = Field(default=1.0, gt=0.0)

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got '{v}'")
        return v


class ServicesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    placeholder: Optional[PlaceholderServiceConfig] = None
    comfyui: Optional[ComfyUIServiceConfig] = None


class WorkflowSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    checkpoint: str = "v1-5-pruned-emaonly.safetensors"
    width: int = Field(default=512, ge=64, le=4096)
    height: int = Field(default=512, ge=64, le=4096)
    steps: int = Field(default=20, ge=1, le=200)
    cfg: float = Field(default=8.0, gt=0.0)
    sampler_name: str = "euler"
    scheduler: str = "normal"
    denoise: float = Field(default=1.0, gt=0.0, le=1.0)
    negative_prompt: str = "text, watermark, blurry"
    output_stage: str = "9"
    filename_prefix: str = "museum"

    @field_validator("output_stage")
    @classmethod
    def validate_output_stage(cls, v: str) -> str:
        # stage ids 3-8 are taken by the txt2img graph
        if not v or v in {"3", "4", "5", "6", "7", "8"}:
            raise ValueError(f"output_stage '{v}' collides with a built-in stage id")
        return v


class TimeoutSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    submit_sec: float = Field(default=30.0, gt=0.0)
    resolve_sec: float = Field(default=300.0, gt=0.0)
    fetch_sec: float = Field(default=60.0, gt=0.0)


class TargetSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    contains: str = "Frame"

    @field_validator("contains")
    @classmethod
    def validate_contains(cls, v: str) -> str:
        if not v:
            raise ValueError("targets.contains cannot be empty")
        return v


class MuseumConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    default_service: str = "placeholder"
    services: ServicesConfig = ServicesConfig()
    workflow: WorkflowSettings = WorkflowSettings()
    timeouts: TimeoutSettings = TimeoutSettings()
    targets: TargetSettings = TargetSettings()
    log_dir: Optional[Path] = None

    @field_validator("default_service")
    @classmethod
    def validate_default_service(cls, v: str) -> str:
        if not v:
            raise ValueError("default_service cannot be empty")
        return v

    @model_validator(mode="after")
    def check_default_service_exists(self) -> "MuseumConfig":
        names = self.configured_services()
        if self.default_service not in names:
            raise ValueError(
                f"default_service '{self.default_service}' is not configured. "
                f"Available services: {sorted(names)}"
            )
        return self

    def configured_services(self) -> set[str]:
        names = set()
        if self.services.placeholder is not None:
            names.add("placeholder")
        if self.services.comfyui is not None:
            names.add("comfyui")
        if not names:
            names.add("placeholder")
        return names


class ConfigError(Exception):
    def __init__(self, message: str, path: Optional[Path] = None, line: Optional[int] = None):
        self.path = path
        self.line = line
        if path:
            loc = f"{path}"
            if line:
                loc += f":{line}"
            message = f"{loc}: {message}"
        super().__init__(message)


def load_config(config_path: Path) -> MuseumConfig:
    if not config_path.exists():
        raise ConfigError(
            f"Config file not found: {config_path}\n"
            "Run 'museum init' to write a starter museum.toml",
            path=config_path,
        )

    try:
        data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse TOML: {e}", path=config_path) from e

    try:
        config = MuseumConfig.model_validate(data)
    except ValueError as e:
        raise ConfigError(f"Invalid configuration: {e}", path=config_path) from e

    if config.log_dir is not None and not config.log_dir.is_absolute():
        config = config.model_copy(update={"log_dir": config_path.parent / config.log_dir})
    return config


def find_config(start_dir: Optional[Path] = None) -> Optional[Path]:
    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()
    while current != current.parent:
        candidate = current / CONFIG_FILENAME
        if candidate.exists():
            return candidate
        current = current.parent

    return None


def resolve_config(config_path: Optional[Path] = None) -> MuseumConfig:
    """Load an explicit config file, else the nearest museum.toml, else defaults."""
    if config_path is not None:
        return load_config(config_path)
    found = find_config()
    if found is None:
        return MuseumConfig()
    return load_config(found)


STARTER_CONFIG = """\
default_service = "comfyui"
log_dir = "logs"

[services.comfyui]
base_url = "http://127.0.0.1:8188"
poll_interval_sec = 1.0

[services.placeholder]

[workflow]
checkpoint = "v1-5-pruned-emaonly.safetensors"
width = 512
height = 512
steps = 20
cfg = 8.0
negative_prompt = "text, watermark, blurry"

[timeouts]
submit_sec = 30
resolve_sec = 300
fetch_sec = 60

[targets]
contains = "Frame"
"""
