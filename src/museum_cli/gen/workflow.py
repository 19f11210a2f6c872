from __future__ import annotations

import json
import random
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator, Optional

if TYPE_CHECKING:
    from .config import WorkflowSettings

MAX_SEED = 2**32 - 1
OUTPUT_KINDS = frozenset({"SaveImage"})
SAMPLER_KINDS = frozenset({"KSampler", "KSamplerAdvanced"})


class WorkflowError(Exception):
    """Raised when a generation request graph is malformed."""

    pass


def draw_seed(rng: Optional[random.Random] = None) -> int:
    """Draw a sampler seed uniformly from [0, MAX_SEED]."""
    rng = rng or random.Random()
    return rng.randint(0, MAX_SEED)


def _is_reference(value: Any) -> bool:
    return (
        isinstance(value, list)
        and len(value) == 2
        and isinstance(value[0], str)
        and isinstance(value[1], int)
        and not isinstance(value[1], bool)
    )


@dataclass(frozen=True)
class Stage:
    class_type: str
    inputs: dict[str, Any] = field(default_factory=dict)

    def references(self) -> Iterator[tuple[str, str, int]]:
        for key, value in self.inputs.items():
            if _is_reference(value):
                yield key, value[0], value[1]

    def with_inputs(self, **updates: Any) -> "Stage":
        return replace(self, inputs={**self.inputs, **updates})


@dataclass(frozen=True)
class GenerationRequest:
    stages: dict[str, Stage]
    output_stage: str

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if not self.stages:
            raise WorkflowError("Generation request has no stages")

        for stage_id, stage in self.stages.items():
            for key, ref_id, slot in stage.references():
                if ref_id not in self.stages:
                    raise WorkflowError(
                        f"Stage '{stage_id}' input '{key}' references unknown stage '{ref_id}'"
                    )
                if slot < 0:
                    raise WorkflowError(
                        f"Stage '{stage_id}' input '{key}' has negative output slot {slot}"
                    )

        outputs = sorted(sid for sid, s in self.stages.items() if s.class_type in OUTPUT_KINDS)
        if len(outputs) != 1:
            raise WorkflowError(
                f"Generation request must contain exactly one output stage, found {outputs}"
            )
        if self.output_stage != outputs[0]:
            raise WorkflowError(
                f"Designated output stage '{self.output_stage}' is not the request's "
                f"output stage '{outputs[0]}'"
            )

    def to_payload(self) -> dict[str, Any]:
        return {
            stage_id: {"class_type": stage.class_type, "inputs": dict(stage.inputs)}
            for stage_id, stage in self.stages.items()
        }

    def with_prompt(self, positive: str, seed: int) -> "GenerationRequest":
        """Return a copy whose sampler seeds and positive encoder text are replaced."""
        stages = dict(self.stages)
        samplers = [sid for sid, s in stages.items() if s.class_type in SAMPLER_KINDS]
        if not samplers:
            raise WorkflowError("Generation request has no sampler stage to seed")

        for sid in samplers:
            sampler = stages[sid]
            seed_key = "noise_seed" if "noise_seed" in sampler.inputs else "seed"
            stages[sid] = sampler.with_inputs(**{seed_key: seed})

            positive_ref = sampler.inputs.get("positive")
            if not _is_reference(positive_ref):
                raise WorkflowError(f"Sampler stage '{sid}' has no positive prompt reference")
            encoder_id = positive_ref[0]
            stages[encoder_id] = stages[encoder_id].with_inputs(text=positive)

        return GenerationRequest(stages=stages, output_stage=self.output_stage)

    @classmethod
    def from_payload(
        cls, data: dict[str, Any], output_stage: Optional[str] = None
    ) -> "GenerationRequest":
        if not isinstance(data, dict):
            raise WorkflowError("Workflow root must be a mapping of stage id to stage")

        stages: dict[str, Stage] = {}
        for stage_id, raw in data.items():
            if not isinstance(raw, dict) or "class_type" not in raw:
                raise WorkflowError(f"Stage '{stage_id}' is missing 'class_type'")
            stages[str(stage_id)] = Stage(
                class_type=raw["class_type"], inputs=dict(raw.get("inputs") or {})
            )

        if output_stage is None:
            candidates = [sid for sid, s in stages.items() if s.class_type in OUTPUT_KINDS]
            output_stage = candidates[0] if len(candidates) == 1 else ""
        return cls(stages=stages, output_stage=output_stage)


def load_workflow_file(path: Path, output_stage: Optional[str] = None) -> GenerationRequest:
    """Load a workflow saved in the service's API JSON format."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise WorkflowError(f"Failed to read workflow {path}: {e}") from e
    return GenerationRequest.from_payload(data, output_stage=output_stage)


def build_txt2img_workflow(
    settings: WorkflowSettings,
    positive: str,
    seed: int,
) -> GenerationRequest:
    out = settings.output_stage
    stages = {
        "3": Stage("KSampler", {
            "seed": seed,
            "steps": settings.steps,
            "cfg": settings.cfg,
            "sampler_name": settings.sampler_name,
            "scheduler": settings.scheduler,
            "denoise": settings.denoise,
            "model": ["4", 0],
            "positive": ["6", 0],
            "negative": ["7", 0],
            "latent_image": ["5", 0],
        }),
        "4": Stage("CheckpointLoaderSimple", {"ckpt_name": settings.checkpoint}),
        "5": Stage("EmptyLatentImage", {
            "width": settings.width,
            "height": settings.height,
            "batch_size": 1,
        }),
        "6": Stage("CLIPTextEncode", {"text": positive, "clip": ["4", 1]}),
        "7": Stage("CLIPTextEncode", {"text": settings.negative_prompt, "clip": ["4", 1]}),
        "8": Stage("VAEDecode", {"samples": ["3", 0], "vae": ["4", 2]}),
        out: Stage("SaveImage", {"filename_prefix": settings.filename_prefix, "images": ["8", 0]}),
    }
    return GenerationRequest(stages=stages, output_stage=out)
