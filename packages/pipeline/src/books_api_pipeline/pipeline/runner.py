from __future__ import annotations

import threading
import uuid
from pathlib import Path
from typing import Any, Sequence

from books_api_pipeline.core import (
    ILogger,
    configure_logging,
    format_duration_ms,
    get_logger,
    monotonic_ms,
    utc_now_iso,
)

from .context import AbortSignal, RunContext
from .events import EventSink, EventType, make_event
from .planner import PlannedStage, StageSpec, plan_pipeline
from .report import RunReport, build_run_report
from .stage import StageResult, run_stage
from .types import ActionStatus, StageStatus


def default_logger() -> ILogger:
    """
    Provide a structlog BoundLogger that satisfies ILogger.
    """
    configure_logging()
    return get_logger("pipeline")


class PipelineRunner:
    """
    Sequential state machine over stages.

    The declaration is validated in the constructor, so a runner that exists
    is a runner whose variable and artifact wiring is sound.
    """

    def __init__(
        self,
        *,
        stages: Sequence[StageSpec],
        logger: ILogger | None = None,
        artifact_store: Any = None,
        name: str = "pipeline",
    ) -> None:
        self.name = name
        self.plan: list[PlannedStage] = plan_pipeline(stages)
        self.logger: ILogger = logger or default_logger()
        self.artifact_store = artifact_store

        self._lock = threading.Lock()
        self._active: AbortSignal | None = None
        self.last_report: RunReport | None = None
        self.last_context: RunContext | None = None

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.plan]

    def abort(self, reason: str = "aborted by operator") -> bool:
        """
        Abort the active run. Suspended actions are notified through their
        abort callbacks; no further stage starts.
        """
        with self._lock:
            active = self._active
        if active is None:
            return False
        self.logger.warning("Pipeline abort requested", reason=reason)
        return active.trigger(reason)

    def run(
        self,
        *,
        run_root: Path,
        run_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> tuple[int, Path]:
        """
        Execute the pipeline and write:
          - events.jsonl
          - run_report.json

        Returns: (exit_code, report_path)
        """
        meta = meta or {}
        rid = run_id or uuid.uuid4().hex
        run_root = Path(run_root) / rid
        run_root.mkdir(parents=True, exist_ok=True)

        events_path = run_root / "events.jsonl"
        with EventSink(events_path) as sink:
            return self._execute(rid=rid, run_root=run_root, meta=meta, sink=sink)

    def _execute(
        self, *, rid: str, run_root: Path, meta: dict[str, Any], sink: EventSink
    ) -> tuple[int, Path]:
        ctx = RunContext(
            run_id=rid,
            run_root=run_root,
            logger=self.logger,
            events=sink,
            artifact_store=self.artifact_store,
            meta=meta,
        )
        for st in self.plan:
            for a in st.actions:
                ctx.set_status(st.name, a.name, ActionStatus.PENDING)

        with self._lock:
            self._active = ctx.abort
        self.last_context = ctx
        ctx.abort.subscribe(
            lambda reason: ctx.emit(EventType.RUN_ABORT, reason=reason)
        )

        started_at = utc_now_iso()
        t0 = monotonic_ms()

        self.logger.info(
            "Pipeline starting",
            pipeline=self.name,
            run_id=rid,
            stages=self.stage_names,
            run_root=str(run_root),
            meta_keys=sorted(meta.keys()),
        )
        ctx.events.emit(
            make_event(event_type=EventType.RUN_START, run_id=rid, stage=None, **meta)
        )

        results: list[StageResult] = []
        skipped: list[str] = []

        total = len(self.plan)
        try:
            for idx, st in enumerate(self.plan, start=1):
                halted = ctx.abort.triggered or any(
                    r.status != StageStatus.SUCCEEDED for r in results
                )
                if halted:
                    skipped.append(st.name)
                    ctx.emit(EventType.STAGE_SKIPPED, stage=st.name)
                    continue

                res = run_stage(ctx=ctx, stage=st, index=idx, total=total)
                results.append(res)

                if res.status != StageStatus.SUCCEEDED:
                    self.logger.error("Stopping on first failure", stage=st.name)
        finally:
            with self._lock:
                self._active = None

        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        report = build_run_report(
            run_id=rid,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            stage_results=results,
            skipped_stages=skipped,
            aborted=ctx.abort.triggered,
            variables=ctx.variables.snapshot(),
            action_status={k: v.value for k, v in ctx.action_status.items()},
            events_jsonl=str(sink.path),
            meta=meta,
        )

        report_json = run_root / "run_report.json"
        report.write_json(report_json)
        self.last_report = report

        ctx.events.emit(
            make_event(
                event_type=EventType.RUN_FINISH,
                run_id=rid,
                stage=None,
                status=report.status,
                duration_ms=duration,
                report_json=str(report_json),
            )
        )

        self.logger.info(
            "Run Complete",
            duration_ms=duration,
            duration=format_duration_ms(duration),
            report=str(report_json),
            events=str(sink.path),
            status=report.status,
            skipped=skipped,
        )

        exit_code = 0 if report.status == "success" else 1
        return exit_code, report_json
