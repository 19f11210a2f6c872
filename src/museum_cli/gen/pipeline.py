from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from museum_cli.scene.binder import TargetSelector, apply_to_targets
from museum_cli.scene.graph import SceneStore

from .assets import AssetStore
from .config import TimeoutSettings
from .errors import PipelineError, StageTimeoutError
from .provenance import log_pipeline_run
from .service import GenerationService
from .types import AssetHandle, AssetLocator, JobHandle
from .workflow import GenerationRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunStatus(str, Enum):
    PENDING = "pending"
    SUBMITTING = "submitting"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    BINDING = "binding"
    COMPLETED = "completed"
    FAILED = "failed"


_STAGE_OF_STATUS = {
    RunStatus.PENDING: "submit",
    RunStatus.SUBMITTING: "submit",
    RunStatus.RESOLVING: "resolve",
    RunStatus.FETCHING: "fetch",
    RunStatus.BINDING: "bind",
}


@dataclass
class PipelineRun:
    run_id: str
    service_id: str
    status: RunStatus = RunStatus.PENDING
    job: Optional[JobHandle] = None
    locator: Optional[AssetLocator] = None
    handle: Optional[AssetHandle] = None
    bound: int = 0
    error: Optional[Exception] = None
    failed_stage: Optional[str] = None
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def in_progress(self) -> bool:
        return self.status not in (RunStatus.COMPLETED, RunStatus.FAILED)

    @property
    def duration_sec(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at


FinishedListener = Callable[[PipelineRun], None]


class PipelineOrchestrator:
    """Runs submit -> resolve -> fetch -> bind for one request at a time per call.

    A failing stage ends its run without touching the scene. Runs started
    while others are in flight proceed independently; for nodes matched by
    several runs, the run that binds last wins. Only the latest
    `history_limit` finished runs are kept in `runs`.
    """

    def __init__(
        self,
        service: GenerationService,
        scene: SceneStore,
        assets: AssetStore,
        selector: Optional[TargetSelector] = None,
        timeouts: Optional[TimeoutSettings] = None,
        log_dir: Optional[Path] = None,
        history_limit: int = 100,
    ):
        self.service = service
        self.scene = scene
        self.assets = assets
        self.selector = selector or TargetSelector()
        self.timeouts = timeouts or TimeoutSettings()
        self.log_dir = log_dir
        self.history_limit = history_limit
        self._runs: dict[str, PipelineRun] = {}
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[FinishedListener] = []

    @property
    def runs(self) -> list[PipelineRun]:
        return list(self._runs.values())

    @property
    def active_runs(self) -> list[PipelineRun]:
        return [r for r in self._runs.values() if r.in_progress]

    def add_listener(self, listener: FinishedListener) -> None:
        self._listeners.append(listener)

    def run(self, request: GenerationRequest) -> asyncio.Task:
        """Start a run in the background and return its task."""
        task = asyncio.create_task(self.execute(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def execute(self, request: GenerationRequest) -> PipelineRun:
        run = PipelineRun(run_id=uuid.uuid4().hex[:12], service_id=self.service.service_id)
        self._runs[run.run_id] = run
        others = [r for r in self.active_runs if r is not run]
        if others:
            logger.info(f"Run {run.run_id} started while {len(others)} other run(s) in flight")

        try:
            run.status = RunStatus.SUBMITTING
            run.job = await self._stage("submit", self.service.submit(request), self.timeouts.submit_sec)

            run.status = RunStatus.RESOLVING
            run.locator = await self._stage(
                "resolve",
                self.service.resolve(run.job, request.output_stage),
                self.timeouts.resolve_sec,
            )

            run.status = RunStatus.FETCHING
            run.handle = await self._stage(
                "fetch", self.service.fetch(run.locator, self.assets), self.timeouts.fetch_sec
            )

            run.status = RunStatus.BINDING
            self._bind(run)
        except PipelineError as e:
            self._fail(run, e, e.stage)
            logger.error(f"Run {run.run_id} failed at {e.stage}: {e}")
        except Exception as e:
            stage = _STAGE_OF_STATUS.get(run.status, "pipeline")
            self._fail(run, e, stage)
            logger.exception(f"Run {run.run_id} failed unexpectedly at {stage}")
        else:
            run.status = RunStatus.COMPLETED
            logger.info(f"Run {run.run_id} completed, {run.bound} node(s) rebound")
        finally:
            run.finished_at = time.monotonic()
            self._finish(run)

        return run

    async def _stage(self, name: str, work: Awaitable[T], timeout_sec: float) -> T:
        logger.debug(f"Stage {name} started")
        try:
            return await asyncio.wait_for(work, timeout_sec)
        except asyncio.TimeoutError:
            raise StageTimeoutError(name, timeout_sec) from None

    def _bind(self, run: PipelineRun) -> None:
        handle = run.handle
        run.bound = apply_to_targets(self.scene, handle, self.selector)
        if not run.bound:
            self.assets.release(handle)
            return

        # The scene shows this asset from here on; cleanup errors are only logged.
        self.assets.mark_bound(handle)
        try:
            released = self.assets.release_superseded(self.scene.referenced_maps())
        except OSError as e:
            logger.warning(f"Could not release superseded assets: {e}")
        else:
            if released:
                logger.debug(f"Released {len(released)} superseded asset(s)")

    def _prune(self) -> None:
        finished = [r for r in self._runs.values() if not r.in_progress]
        for old in finished[: max(0, len(finished) - self.history_limit)]:
            del self._runs[old.run_id]

    def _fail(self, run: PipelineRun, error: Exception, stage: str) -> None:
        run.status = RunStatus.FAILED
        run.error = error
        run.failed_stage = stage
        handle = run.handle
        if handle is not None and run.bound == 0 and handle.uri not in self.scene.referenced_maps():
            self.assets.release(handle)

    def _finish(self, run: PipelineRun) -> None:
        if self.log_dir is not None:
            try:
                log_pipeline_run(self.log_dir, run)
            except OSError as e:
                logger.warning(f"Could not write generation log: {e}")
        self._prune()
        for listener in self._listeners:
            try:
                listener(run)
            except Exception:
                logger.exception(f"Listener failed for run {run.run_id}")
