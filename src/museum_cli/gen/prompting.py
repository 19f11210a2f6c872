from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound, UndefinedError

from museum_cli.gen.provenance import now_utc_iso
from museum_cli.io import write_atomic

DEFAULT_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
DEFAULT_TEMPLATE = "artwork.j2"


class PromptResolutionError(Exception):
    """Raised when a prompt template cannot be resolved."""


@dataclass
class ResolvedPrompt:
    template_name: str
    params: dict[str, Any]
    resolved_text: str


class PromptResolver:
    """Renders positive prompt text from jinja2 templates; undefined variables raise."""

    def __init__(self, templates_dir: Optional[Path] = None):
        self.templates_dir = templates_dir or DEFAULT_TEMPLATES_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def resolve(self, template_name: str, params: dict[str, Any]) -> ResolvedPrompt:
        try:
            text = self.env.get_template(template_name).render(**params).strip()
        except TemplateNotFound as e:
            raise PromptResolutionError(
                f"Template '{template_name}' not found in {self.templates_dir}"
            ) from e
        except UndefinedError as e:
            raise PromptResolutionError(
                f"Undefined variable in template '{template_name}': {e}"
            ) from e
        return ResolvedPrompt(template_name=template_name, params=params, resolved_text=text)

    def resolve_artwork(
        self,
        subject: str,
        style: Optional[str] = None,
        medium: Optional[str] = None,
        template_name: str = DEFAULT_TEMPLATE,
    ) -> ResolvedPrompt:
        if not subject.strip():
            raise PromptResolutionError("Prompt subject cannot be empty")
        params = {"subject": subject.strip(), "style": style or "", "medium": medium or ""}
        return self.resolve(template_name, params)


def log_resolved_prompt(log_dir: Path, run_id: str, resolved: ResolvedPrompt) -> Path:
    """Record the prompt a run used at ``<log_dir>/prompts/<run_id>.json``."""
    prompts_dir = log_dir / "prompts"
    prompts_dir.mkdir(parents=True, exist_ok=True)
    log_path = prompts_dir / f"{run_id}.json"

    entry = {
        "run_id": run_id,
        "template_name": resolved.template_name,
        "params": resolved.params,
        "resolved_prompt": resolved.resolved_text,
        "timestamp": now_utc_iso(),
    }
    write_atomic(log_path, json.dumps(entry, indent=2, ensure_ascii=False).encode("utf-8"))
    return log_path
