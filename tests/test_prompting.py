from __future__ import annotations

import json
from pathlib import Path

import pytest

from museum_cli.gen.prompting import (
    PromptResolutionError,
    PromptResolver,
    ResolvedPrompt,
    log_resolved_prompt,
)


@pytest.fixture
def resolver() -> PromptResolver:
    return PromptResolver()


class TestPromptResolver:
    def test_resolve_artwork_prompt_successfully(self, resolver: PromptResolver) -> None:
        result = resolver.resolve_artwork("a lighthouse in a storm", style="impressionist", medium="oil")

        assert isinstance(result, ResolvedPrompt)
        assert result.template_name == "artwork.j2"
        assert result.resolved_text.startswith("a lighthouse in a storm")
        assert "Style: impressionist" in result.resolved_text
        assert "Medium: oil" in result.resolved_text

    def test_optional_variables_omitted(self, resolver: PromptResolver) -> None:
        result = resolver.resolve_artwork("a fox")

        assert "a fox" in result.resolved_text
        assert "Style:" not in result.resolved_text
        assert "Medium:" not in result.resolved_text

    def test_empty_subject_rejected(self, resolver: PromptResolver) -> None:
        with pytest.raises(PromptResolutionError):
            resolver.resolve_artwork("   ")

    def test_missing_variable_raises_clear_error(self, resolver: PromptResolver) -> None:
        with pytest.raises(PromptResolutionError) as exc_info:
            resolver.resolve("artwork.j2", {"style": "cubist"})

        error_msg = str(exc_info.value)
        assert "Undefined variable" in error_msg
        assert "artwork.j2" in error_msg

    def test_missing_template_raises_clear_error(self, resolver: PromptResolver) -> None:
        with pytest.raises(PromptResolutionError) as exc_info:
            resolver.resolve("nonexistent.j2", {})

        error_msg = str(exc_info.value)
        assert "not found" in error_msg
        assert "nonexistent.j2" in error_msg

    def test_custom_templates_dir(self, tmp_path: Path) -> None:
        (tmp_path / "artwork.j2").write_text("{{ subject }} as a mosaic", encoding="utf-8")
        resolver = PromptResolver(tmp_path)

        assert resolver.resolve_artwork("a whale").resolved_text == "a whale as a mosaic"


class TestLogResolvedPrompt:
    def test_logged_prompt_contains_all_required_fields(
        self, tmp_path: Path, resolver: PromptResolver
    ) -> None:
        resolved = resolver.resolve_artwork("a windmill", style="ukiyo-e")

        log_path = log_resolved_prompt(tmp_path / "logs", "run42", resolved)
        logged = json.loads(log_path.read_text())

        assert log_path == tmp_path / "logs" / "prompts" / "run42.json"
        assert logged["run_id"] == "run42"
        assert logged["template_name"] == "artwork.j2"
        assert logged["params"]["subject"] == "a windmill"
        assert "ukiyo-e" in logged["resolved_prompt"]
        assert logged["timestamp"].endswith("Z")
