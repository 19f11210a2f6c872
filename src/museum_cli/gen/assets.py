from __future__ import annotations

import logging
import mimetypes
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Iterable, Optional

from museum_cli.io import write_atomic

from .types import AssetHandle

logger = logging.getLogger(__name__)


class AssetStore:
    """Session-scoped owner of fetched asset bytes.

    Every handle points at a file in a private temporary directory. Handles
    are released when no scene node references them any more, and all
    remaining handles are released when the store is closed.
    """

    def __init__(self, root: Optional[Path] = None):
        self._owns_root = root is None
        self.root = Path(tempfile.mkdtemp(prefix="museum-assets-")) if root is None else root
        self.root.mkdir(parents=True, exist_ok=True)
        self._handles: dict[str, AssetHandle] = {}
        self._bound: set[str] = set()
        self._closed = False

    def __enter__(self) -> "AssetStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def live_handles(self) -> list[AssetHandle]:
        return list(self._handles.values())

    def put(self, data: bytes, name: str, content_type: str = "application/octet-stream") -> AssetHandle:
        if self._closed:
            raise RuntimeError("Asset store is closed")

        handle_id = uuid.uuid4().hex
        suffix = Path(name).suffix or mimetypes.guess_extension(content_type.split(";")[0]) or ".bin"
        path = self.root / f"{handle_id}{suffix}"

        write_atomic(path, data)

        handle = AssetHandle(handle_id=handle_id, path=path, size=len(data), content_type=content_type)
        self._handles[handle_id] = handle
        logger.debug(f"Stored asset {name} as {path}")
        return handle

    def release(self, handle: AssetHandle) -> None:
        if handle.revoked:
            return
        handle.revoked = True
        self._handles.pop(handle.handle_id, None)
        self._bound.discard(handle.handle_id)
        try:
            handle.path.unlink()
        except FileNotFoundError:
            pass
        logger.debug(f"Released asset {handle.handle_id}")

    def mark_bound(self, handle: AssetHandle) -> None:
        self._bound.add(handle.handle_id)

    def release_superseded(self, referenced_uris: Iterable[str]) -> list[AssetHandle]:
        """Release bound handles whose URI no scene node references any more.

        Handles fetched but not yet bound belong to in-flight runs and are kept.
        """
        keep = set(referenced_uris)
        stale = [
            h for h in self._handles.values()
            if h.handle_id in self._bound and h.uri not in keep
        ]
        for handle in stale:
            self.release(handle)
        return stale

    def close(self) -> None:
        if self._closed:
            return
        for handle in list(self._handles.values()):
            self.release(handle)
        self._closed = True
        if self._owns_root:
            shutil.rmtree(self.root, ignore_errors=True)
