from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_ASSET_NAME = "ComfyUI_00001_.png"
DEFAULT_ASSET_KIND = "output"


@dataclass(frozen=True)
class JobHandle:
    prompt_id: str
    number: Optional[int] = None


@dataclass(frozen=True)
class AssetLocator:
    name: str
    subfolder: str = ""
    kind: str = DEFAULT_ASSET_KIND

    @classmethod
    def from_image_entry(cls, entry: dict) -> "AssetLocator":
        """Build a locator from one ``images`` entry of a history record.

        Missing or empty fields fall back to documented defaults.
        """
        return cls(
            name=entry.get("filename") or DEFAULT_ASSET_NAME,
            subfolder=entry.get("subfolder") or "",
            kind=entry.get("type") or DEFAULT_ASSET_KIND,
        )

    def as_query(self) -> dict[str, str]:
        return {"filename": self.name, "subfolder": self.subfolder, "type": self.kind}


@dataclass
class AssetHandle:
    handle_id: str
    path: Path
    size: int
    content_type: str
    revoked: bool = False

    @property
    def uri(self) -> str:
        return self.path.as_uri()
