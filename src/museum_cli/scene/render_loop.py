from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .graph import SceneSnapshot, SceneStore

logger = logging.getLogger(__name__)

FrameCallback = Callable[[SceneSnapshot], None]


class RenderLoop:
    """Reads one scene snapshot per frame on the running event loop."""

    def __init__(self, scene: SceneStore, fps: float = 30.0, on_frame: Optional[FrameCallback] = None):
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.scene = scene
        self.fps = fps
        self.on_frame = on_frame
        self.frames = 0
        self.last_snapshot: Optional[SceneSnapshot] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def render_frame(self) -> SceneSnapshot:
        snapshot = self.scene.snapshot()
        if self.last_snapshot is not None and snapshot.version != self.last_snapshot.version:
            logger.debug(f"Scene changed: version {self.last_snapshot.version} -> {snapshot.version}")
        self.last_snapshot = snapshot
        self.frames += 1
        if self.on_frame is not None:
            self.on_frame(snapshot)
        return snapshot

    async def run(self, max_frames: Optional[int] = None) -> int:
        interval = 1.0 / self.fps
        while True:
            self.render_frame()
            if self._stopping or (max_frames is not None and self.frames >= max_frames):
                break
            await asyncio.sleep(interval)
        return self.frames

    def start(self) -> asyncio.Task:
        if self.running:
            raise RuntimeError("Render loop already running")
        self._stopping = False
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> int:
        self._stopping = True
        if self._task is not None:
            await self._task
            self._task = None
        return self.frames
