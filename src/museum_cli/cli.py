from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .gen.config import CONFIG_FILENAME, STARTER_CONFIG, ConfigError, MuseumConfig, resolve_config
from .gen.generate import generate_artwork, prepare_request
from .gen.prompting import PromptResolutionError
from .gen.workflow import WorkflowError
from .scene.binder import TargetSelector
from .scene.loaders import SceneError, load_scene
from .scene.preview import PreviewError

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()

INPUT_ERRORS = (ConfigError, SceneError, WorkflowError, PromptResolutionError, PreviewError)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config_or_exit(config_path: Optional[Path]) -> MuseumConfig:
    try:
        return resolve_config(config_path)
    except ConfigError as e:
        console.print(f"[bold red]Config error:[/bold red] {e}")
        raise typer.Exit(code=2) from e


@app.command()
def init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing museum.toml"),
):
    """Write a starter museum.toml in the current directory."""
    path = Path(CONFIG_FILENAME)
    if path.exists() and not force:
        console.print(f"[bold yellow]{path} already exists[/bold yellow] (use --force to overwrite)")
        raise typer.Exit(code=2)
    path.write_text(STARTER_CONFIG, encoding="utf-8")
    console.print(f"[bold green]Wrote[/bold green] {path}")


@app.command()
def generate(
    subject: str = typer.Argument(..., help="What the artwork should show"),
    scene: Path = typer.Option(..., "--scene", exists=True, dir_okay=False, help="Scene manifest or mesh file"),
    style: Optional[str] = typer.Option(None, "--style"),
    medium: Optional[str] = typer.Option(None, "--medium"),
    seed: Optional[int] = typer.Option(None, "--seed", min=0, help="Fixed sampler seed"),
    service: Optional[str] = typer.Option(None, "--service", help="Override default service"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Path to museum.toml"),
    templates: Optional[Path] = typer.Option(None, "--templates", help="Custom prompt templates directory"),
    workflow: Optional[Path] = typer.Option(None, "--workflow", exists=True, dir_okay=False, help="Workflow JSON in API format"),
    preview: Optional[Path] = typer.Option(None, "--preview", help="Write a contact sheet PNG of the result"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Generate an artwork and hang it on every matching frame in the scene."""
    _setup_logging(verbose)
    config = _load_config_or_exit(config_path)

    try:
        result = asyncio.run(generate_artwork(
            scene,
            subject,
            config,
            service_override=service,
            style=style,
            medium=medium,
            seed=seed,
            templates_dir=templates,
            workflow_path=workflow,
            preview_path=preview,
        ))
    except INPUT_ERRORS as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=2) from e

    run = result.run
    table = Table(title="Artwork Generation")
    table.add_column("Run")
    table.add_column("Service")
    table.add_column("Status")
    table.add_column("Seed")
    table.add_column("Bound", style="green")
    status = "[green]completed[/green]" if run.ok else f"[red]failed at {run.failed_stage}[/red]"
    table.add_row(run.run_id, run.service_id, status, str(result.seed), str(run.bound))
    console.print(table)

    if result.bound_nodes:
        console.print("\n[bold green]Rebound:[/bold green]")
        for name in result.bound_nodes:
            console.print(f"  - {name}")
    elif run.ok:
        console.print(f"[bold yellow]No nodes matched '{config.targets.contains}'[/bold yellow]")

    if result.preview_path:
        console.print(f"Preview: {result.preview_path}")

    if not run.ok:
        console.print(f"\n[bold red]Generation failed:[/bold red] {run.error}")
        raise typer.Exit(code=1)


@app.command("workflow")
def workflow_cmd(
    subject: str = typer.Argument(...),
    style: Optional[str] = typer.Option(None, "--style"),
    medium: Optional[str] = typer.Option(None, "--medium"),
    seed: Optional[int] = typer.Option(None, "--seed", min=0),
    config_path: Optional[Path] = typer.Option(None, "--config"),
    templates: Optional[Path] = typer.Option(None, "--templates"),
):
    """Print the request graph that would be submitted."""
    config = _load_config_or_exit(config_path)
    try:
        request, _, _ = prepare_request(
            config, subject, style=style, medium=medium, seed=seed, templates_dir=templates
        )
    except INPUT_ERRORS as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=2) from e
    console.print_json(json.dumps({"prompt": request.to_payload()}))


@app.command()
def targets(
    scene: Path = typer.Option(..., "--scene", exists=True, dir_okay=False),
    contains: Optional[str] = typer.Option(None, "--contains", help="Override targets.contains"),
    config_path: Optional[Path] = typer.Option(None, "--config"),
):
    """List the scene nodes an artwork would be bound to."""
    config = _load_config_or_exit(config_path)
    selector = TargetSelector(contains or config.targets.contains)
    try:
        store = load_scene(scene)
    except SceneError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=2) from e

    table = Table(title=f"Nodes matching '{selector.contains}'")
    table.add_column("Path")
    table.add_column("Texture")
    count = 0
    for path, node in store.walk():
        if node.is_mesh and selector.matches(node.name):
            texture = node.material.map if node.material and node.material.map else "-"
            table.add_row(path, texture)
            count += 1
    console.print(table)
    console.print(f"{count} target(s)")


if __name__ == "__main__":
    app()
