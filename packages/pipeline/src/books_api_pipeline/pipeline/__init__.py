from .action import Action, ActionContext, ActionResult
from .context import AbortSignal, RunContext
from .events import EventSink, EventType
from .planner import ActionGroup, PlannedStage, StageSpec, group_by_run_order, plan_pipeline
from .report import RunReport
from .runner import PipelineRunner
from .stage import StageResult, run_action, run_stage
from .types import ActionStatus, ArtifactRef, StageStatus, VariableRef
from .variables import VariableStore

__all__ = [
    "Action",
    "ActionContext",
    "ActionResult",
    "AbortSignal",
    "RunContext",
    "EventSink",
    "EventType",
    "ActionGroup",
    "PlannedStage",
    "StageSpec",
    "group_by_run_order",
    "plan_pipeline",
    "RunReport",
    "PipelineRunner",
    "StageResult",
    "run_action",
    "run_stage",
    "ActionStatus",
    "ArtifactRef",
    "StageStatus",
    "VariableRef",
    "VariableStore",
]
