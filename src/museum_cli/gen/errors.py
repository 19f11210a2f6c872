from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for failures of one generation pipeline stage."""

    stage = "pipeline"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        if status_code is not None:
            message = f"[HTTP {status_code}] {message}"
        super().__init__(message)


class SubmissionError(PipelineError):
    stage = "submit"


class ResolutionError(PipelineError):
    stage = "resolve"


class NoAssetProducedError(PipelineError):
    """The job finished but its output stage produced no image."""

    stage = "resolve"

    def __init__(self, prompt_id: str, output_stage: str):
        self.prompt_id = prompt_id
        self.output_stage = output_stage
        super().__init__(f"Job {prompt_id} produced no image on output stage '{output_stage}'")


class FetchError(PipelineError):
    stage = "fetch"


class StageTimeoutError(PipelineError, TimeoutError):
    def __init__(self, stage: str, timeout_sec: float):
        self.stage = stage
        self.timeout_sec = timeout_sec
        super().__init__(f"Stage '{stage}' did not finish within {timeout_sec}s")
