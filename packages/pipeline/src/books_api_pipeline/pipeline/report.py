from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

from books_api_pipeline.core import atomic_write_json

from .stage import StageResult
from .types import StageStatus


@dataclass(slots=True)
class RunReport:
    run_id: str
    started_at_utc: str
    finished_at_utc: str
    status: str  # "success" | "failed" | "aborted"
    duration_ms: int

    stages: list[StageResult] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    # everything published before the run ended, kept for diagnostics
    variables: dict[str, dict[str, str]] = field(default_factory=dict)
    action_status: dict[str, str] = field(default_factory=dict)
    events_jsonl: Optional[str] = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        return d

    def write_json(self, path: Path) -> None:
        atomic_write_json(Path(path), self.to_dict())

    def stage(self, name: str) -> StageResult | None:
        for s in self.stages:
            if s.stage == name:
                return s
        return None


def build_run_report(
    *,
    run_id: str,
    started_at_utc: str,
    finished_at_utc: str,
    duration_ms: int,
    stage_results: list[StageResult],
    skipped_stages: list[str],
    aborted: bool,
    variables: dict[str, dict[str, str]],
    action_status: dict[str, str],
    events_jsonl: str | None,
    meta: dict[str, Any] | None = None,
) -> RunReport:
    if aborted:
        status = "aborted"
    elif all(s.status == StageStatus.SUCCEEDED for s in stage_results) and not skipped_stages:
        status = "success"
    else:
        status = "failed"
    return RunReport(
        run_id=run_id,
        started_at_utc=started_at_utc,
        finished_at_utc=finished_at_utc,
        status=status,
        duration_ms=duration_ms,
        stages=stage_results,
        skipped_stages=skipped_stages,
        variables=variables,
        action_status=action_status,
        events_jsonl=events_jsonl,
        meta=meta or {},
    )
