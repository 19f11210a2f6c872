from __future__ import annotations

import datetime as _dt
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from museum_cli.gen.pipeline import PipelineRun


def now_utc_iso() -> str:
    return _dt.datetime.now(tz=_dt.timezone.utc).isoformat().replace("+00:00", "Z")


def append_jsonl(log_path: Path, payload: dict[str, Any]) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(payload, ensure_ascii=False) + "\n")


def log_pipeline_run(log_dir: Path, run: PipelineRun) -> Path:
    log_path = log_dir / "gen.jsonl"
    payload = {
        "event": "pipeline_finished",
        "run_id": run.run_id,
        "service_id": run.service_id,
        "status": run.status.value,
        "stage": run.failed_stage,
        "prompt_id": run.job.prompt_id if run.job else None,
        "asset": run.locator.name if run.locator else None,
        "bound": run.bound,
        "error": str(run.error) if run.error else None,
        "duration_sec": round(run.duration_sec, 3),
        "timestamp": now_utc_iso(),
    }
    append_jsonl(log_path, payload)
    return log_path
