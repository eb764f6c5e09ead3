from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from books_api_pipeline.core import (
    ActionExecutionError,
    action_error_from_exc,
    format_duration_ms,
    monotonic_ms,
    utc_now_iso,
)

from .action import Action, ActionContext, ActionResult
from .context import AbortSignal, RunContext
from .events import EventType
from .planner import ActionGroup, PlannedStage
from .types import ActionStatus, StageStatus


@dataclass(slots=True)
class StageResult:
    stage: str
    status: StageStatus
    started_at_utc: str
    finished_at_utc: str
    duration_ms: int

    actions: list[ActionResult] = field(default_factory=list)

    @property
    def failed_action(self) -> ActionResult | None:
        for a in self.actions:
            if a.status == ActionStatus.FAILED:
                return a
        return None


def run_action(
    *,
    ctx: RunContext,
    stage: str,
    action: Action,
    abort: AbortSignal,
) -> ActionResult:
    """
    Run one action; never raises. Exceptions become a failed ActionResult.
    """
    log = ctx.stage_logger(stage, action.name)
    t0 = monotonic_ms()
    started_at = utc_now_iso()

    ctx.set_status(stage, action.name, ActionStatus.RUNNING)
    ctx.emit(
        EventType.ACTION_START, stage=stage, action=action.name, run_order=action.run_order
    )
    log.info("Action starting", run_order=action.run_order)

    try:
        # Bindings are resolved here, not earlier: producers publish on success.
        env = ctx.variables.resolve_env(action.env)
        actx = ActionContext(
            run=ctx, stage=stage, action=action, env=env, abort=abort, logger=log
        )
        out = action.fn(actx) or {}
        if not hasattr(out, "items"):
            raise TypeError(
                f"Action {action.name} returned {type(out).__name__}, expected mapping or None"
            )

        published: dict[str, str] = {}
        if out and action.namespace is None:
            raise ActionExecutionError(
                f"Action {action.name} returned variables but declares no namespace"
            )
        if action.namespace is not None:
            missing = [k for k in action.variables if k not in out]
            if missing:
                raise ActionExecutionError(
                    f"Action {action.name} did not publish declared variables {missing}"
                )
            published = ctx.variables.publish(action.namespace, out)
            ctx.emit(
                EventType.VARIABLES_PUBLISHED,
                stage=stage,
                action=action.name,
                namespace=action.namespace,
                keys=sorted(published),
            )

        duration = monotonic_ms() - t0
        ctx.set_status(stage, action.name, ActionStatus.SUCCEEDED)
        ctx.emit(
            EventType.ACTION_SUCCESS, stage=stage, action=action.name, duration_ms=duration
        )
        log.info(
            "Action succeeded",
            duration_ms=duration,
            duration=format_duration_ms(duration),
            variables=sorted(published),
        )
        return ActionResult(
            action=action.name,
            status=ActionStatus.SUCCEEDED,
            run_order=action.run_order,
            started_at_utc=started_at,
            finished_at_utc=utc_now_iso(),
            duration_ms=duration,
            variables=published,
            artifacts=[
                ref
                for name in action.output_artifacts
                if (ref := ctx.artifact(name)) is not None
            ],
        )

    except Exception as e:
        duration = monotonic_ms() - t0
        ctx.set_status(stage, action.name, ActionStatus.FAILED)
        ctx.emit(
            EventType.ACTION_FAILED,
            stage=stage,
            action=action.name,
            duration_ms=duration,
            exc_type=type(e).__name__,
            message=str(e),
        )
        log.error(
            "Action failed",
            duration_ms=duration,
            duration=format_duration_ms(duration),
            error=str(e),
        )
        log.exception("Action exception")
        return ActionResult(
            action=action.name,
            status=ActionStatus.FAILED,
            run_order=action.run_order,
            started_at_utc=started_at,
            finished_at_utc=utc_now_iso(),
            duration_ms=duration,
            error=action_error_from_exc(e),
        )


def _run_group(
    *,
    ctx: RunContext,
    stage: str,
    group: ActionGroup,
    abort: AbortSignal,
) -> list[ActionResult]:
    if len(group.actions) == 1:
        return [run_action(ctx=ctx, stage=stage, action=group.actions[0], abort=abort)]

    results: dict[str, ActionResult] = {}
    with ThreadPoolExecutor(
        max_workers=len(group.actions), thread_name_prefix=f"{stage}-{group.run_order}"
    ) as pool:
        futures = {
            pool.submit(run_action, ctx=ctx, stage=stage, action=a, abort=abort): a
            for a in group.actions
        }
        # Siblings are told to stop on the first failure, but the group still
        # waits for every action to terminate before returning.
        for fut in as_completed(futures):
            res = fut.result()
            results[res.action] = res
            if res.status == ActionStatus.FAILED:
                abort.trigger(f"{stage}/{res.action} failed")

    return [results[a.name] for a in group.actions]


def run_stage(
    *,
    ctx: RunContext,
    stage: PlannedStage,
    index: int | None = None,
    total: int | None = None,
) -> StageResult:
    log = ctx.stage_logger(stage.name)

    t0 = monotonic_ms()
    started_at = utc_now_iso()
    position = f"{index}/{total}" if index is not None and total is not None else None

    ctx.emit(EventType.STAGE_START, stage=stage.name)
    log.info(
        "Stage starting",
        position=position,
        groups=[[a.name for a in g.actions] for g in stage.groups],
    )

    abort = ctx.abort.child()
    results: list[ActionResult] = []
    status = StageStatus.SUCCEEDED
    try:
        for group in stage.groups:
            if abort.triggered:
                status = StageStatus.ABORTED
                break
            group_results = _run_group(ctx=ctx, stage=stage.name, group=group, abort=abort)
            results.extend(group_results)
            if any(r.status == ActionStatus.FAILED for r in group_results):
                status = StageStatus.FAILED
                break
    finally:
        abort.detach()

    duration = monotonic_ms() - t0
    log_fields: dict[str, object] = {
        "status": status.value,
        "position": position,
        "duration_ms": duration,
        "duration": format_duration_ms(duration),
        "actions": len(results),
    }
    if status == StageStatus.SUCCEEDED:
        ctx.emit(EventType.STAGE_SUCCESS, stage=stage.name, duration_ms=duration)
        log.info("Stage succeeded", **log_fields)
    else:
        ctx.emit(
            EventType.STAGE_FAILED,
            stage=stage.name,
            duration_ms=duration,
            status=status.value,
        )
        log.error("Stage failed", **log_fields)

    return StageResult(
        stage=stage.name,
        status=status,
        started_at_utc=started_at,
        finished_at_utc=utc_now_iso(),
        duration_ms=duration,
        actions=results,
    )
