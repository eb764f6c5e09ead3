from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from books_api_pipeline.core import (
    ActionError,
    ActionExecutionError,
    ConfigurationError,
    ILogger,
    UnknownReferenceError,
)

from .context import AbortSignal, RunContext
from .events import EventType
from .types import ActionStatus, ArtifactRef, VariableRef
from .variables import EnvValue


@dataclass(slots=True)
class ActionContext:
    """
    What a running action sees: its resolved environment, its input artifact
    and an abort signal shared with the other actions of its stage.
    """

    run: RunContext
    stage: str
    action: "Action"
    env: dict[str, str]
    abort: AbortSignal
    logger: ILogger

    @property
    def run_id(self) -> str:
        return self.run.run_id

    def emit(self, event: EventType | str, **kw: object) -> None:
        self.run.emit(event, stage=self.stage, action=self.action.name, **kw)

    def on_abort(self, cb: Callable[[str], None]) -> Callable[[], None]:
        return self.abort.subscribe(cb)

    def input_artifact(self) -> ArtifactRef:
        name = self.action.input_artifact
        if name is None:
            raise ActionExecutionError(f"Action {self.action.name} has no input artifact")
        ref = self.run.artifact(name)
        if ref is None:
            raise ActionExecutionError(f"Input artifact not available: {name}")
        return ref

    def read_input(self) -> bytes:
        ref = self.input_artifact()
        return self.run.artifact_store.get_bytes(ref.key)

    def store_artifact(
        self,
        name: str,
        data: bytes,
        *,
        key: str | None = None,
        content_type: str | None = None,
    ) -> ArtifactRef:
        if name not in self.action.output_artifacts:
            raise ActionExecutionError(
                f"Action {self.action.name} does not declare output artifact {name}"
            )
        if self.run.artifact_store is None:
            raise ActionExecutionError("No artifact store configured for this run")
        ref = self.run.artifact_store.put_bytes(
            name=name,
            key=key or f"{self.run_id}/{name}",
            data=data,
            content_type=content_type,
        )
        self.run.record_artifact(ref)
        self.emit(
            EventType.ARTIFACT_WRITTEN,
            name=ref.name,
            key=ref.key,
            bytes=ref.bytes,
            sha256=ref.sha256,
        )
        return ref


ActionFn = Callable[[ActionContext], Optional[Mapping[str, object]]]


@dataclass(frozen=True, slots=True)
class Action:
    """
    A unit of work inside a stage.

    Actions with the same `run_order` run concurrently; groups run in ascending
    `run_order`. Whatever mapping `fn` returns is published under `namespace`
    once the action succeeds.
    """

    name: str
    fn: ActionFn
    run_order: int = 1
    input_artifact: Optional[str] = None
    output_artifacts: tuple[str, ...] = ()
    namespace: Optional[str] = None
    env: Mapping[str, EnvValue] = field(default_factory=dict)
    # keys the action promises to publish; empty means "not declared"
    variables: tuple[str, ...] = ()

    def variable(self, key: str) -> VariableRef:
        if self.namespace is None:
            raise ConfigurationError(
                f"Action {self.name} has no variables namespace; cannot reference {key}"
            )
        if self.variables and key not in self.variables:
            raise UnknownReferenceError(
                f"Action {self.name} does not publish {self.namespace}.{key}"
            )
        return VariableRef(namespace=self.namespace, key=key)

    def references(self) -> list[VariableRef]:
        return [v for v in self.env.values() if isinstance(v, VariableRef)]


@dataclass(slots=True)
class ActionResult:
    action: str
    status: ActionStatus
    run_order: int
    started_at_utc: str
    finished_at_utc: str
    duration_ms: int

    variables: dict[str, str] = field(default_factory=dict)
    artifacts: list[ArtifactRef] = field(default_factory=list)
    error: Optional[ActionError] = None
