from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import httpx

from museum_cli.scene.binder import TargetSelector
from museum_cli.scene.loaders import load_scene
from museum_cli.scene.preview import render_contact_sheet, require_pillow
from museum_cli.scene.render_loop import RenderLoop

from .assets import AssetStore
from .config import MuseumConfig
from .pipeline import PipelineOrchestrator, PipelineRun
from .prompting import PromptResolver, ResolvedPrompt, log_resolved_prompt
from .registry import ServiceRegistry
from .workflow import GenerationRequest, build_txt2img_workflow, draw_seed, load_workflow_file


@dataclass
class GenerationResult:
    run: PipelineRun
    request: GenerationRequest
    prompt: ResolvedPrompt
    seed: int
    bound_nodes: list[str] = field(default_factory=list)
    frames_rendered: int = 0
    preview_path: Optional[Path] = None


def prepare_request(
    config: MuseumConfig,
    subject: str,
    style: Optional[str] = None,
    medium: Optional[str] = None,
    seed: Optional[int] = None,
    templates_dir: Optional[Path] = None,
    workflow_path: Optional[Path] = None,
) -> tuple[GenerationRequest, ResolvedPrompt, int]:
    """Resolve the prompt, pick a seed and build the request graph."""
    resolved = PromptResolver(templates_dir).resolve_artwork(subject, style=style, medium=medium)
    if seed is None:
        seed = draw_seed()

    if workflow_path is not None:
        request = load_workflow_file(workflow_path).with_prompt(resolved.resolved_text, seed)
    else:
        request = build_txt2img_workflow(config.workflow, resolved.resolved_text, seed)
    return request, resolved, seed


async def generate_artwork(
    scene_path: Path,
    subject: str,
    config: MuseumConfig,
    service_override: Optional[str] = None,
    style: Optional[str] = None,
    medium: Optional[str] = None,
    seed: Optional[int] = None,
    templates_dir: Optional[Path] = None,
    workflow_path: Optional[Path] = None,
    preview_path: Optional[Path] = None,
    fps: float = 30.0,
    client: Optional[httpx.AsyncClient] = None,
) -> GenerationResult:
    """Run one generation session against a scene while a render loop reads it.

    Raises ConfigError, SceneError, WorkflowError, PromptResolutionError or
    PreviewError for bad input before anything is submitted; stage failures
    are reported on the returned run instead. PreviewError is also raised if
    the preview cannot be written after the run.
    """
    if preview_path is not None:
        require_pillow()
    scene = load_scene(scene_path)
    request, resolved, seed = prepare_request(
        config,
        subject,
        style=style,
        medium=medium,
        seed=seed,
        templates_dir=templates_dir,
        workflow_path=workflow_path,
    )

    registry = ServiceRegistry(config, client=client)
    service = registry.get_service(service_override or config.default_service)

    with AssetStore() as assets:
        orchestrator = PipelineOrchestrator(
            service,
            scene,
            assets,
            selector=TargetSelector(config.targets.contains),
            timeouts=config.timeouts,
            log_dir=config.log_dir,
        )
        render_loop = RenderLoop(scene, fps=fps)
        render_loop.start()
        try:
            run = await orchestrator.execute(request)
        finally:
            frames = await render_loop.stop()
            await registry.aclose()

        result = GenerationResult(
            run=run, request=request, prompt=resolved, seed=seed, frames_rendered=frames
        )

        if config.log_dir is not None:
            log_resolved_prompt(config.log_dir, run.run_id, resolved)

        snapshot = scene.snapshot()
        if run.ok and run.handle is not None:
            result.bound_nodes = [
                n.name for n in snapshot.meshes()
                if n.material is not None and n.material.map == run.handle.uri
            ]

        if preview_path is not None:
            result.preview_path = render_contact_sheet(snapshot, preview_path)

    return result
