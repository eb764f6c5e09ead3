"""
Deploy action: provision a candidate, hold it behind pre-traffic validation,
then either shift traffic to it or roll it back.

    Provisioning -> AwaitingValidation -> TrafficShifting -> Live
                         |                      |
                         +------> RolledBack <--+

A failed provision or traffic shift also ends in RolledBack. Outputs are
published only from Live. A rolled back deploy raises, so the action (and its
stage) fails and the previous version stays in service.
"""

from __future__ import annotations

import threading
from typing import Mapping, Protocol

import structlog

from books_api_pipeline.core import (
    ConfigurationError,
    DeploymentRolledBackError,
    HookConfig,
    ILogger,
    PipelineAbortedError,
    PipelineError,
)
from books_api_pipeline.pipeline import Action, ActionContext, EventType
from books_api_pipeline.pipeline.variables import EnvValue

from .models import CandidateVersion, Deployment, DeploymentState, Verdict
from .orchestrator import DeploymentOrchestrator
from .traffic import ALL_AT_ONCE, TrafficDecision, TrafficShiftPolicy, decide

OUTPUT_KEYS: tuple[str, ...] = ("API_ENDPOINT", "USER_POOL_ID", "USER_POOL_CLIENT_ID", "TABLE")

_TRANSITIONS: dict[DeploymentState | None, set[DeploymentState]] = {
    None: {DeploymentState.PROVISIONING},
    DeploymentState.PROVISIONING: {
        DeploymentState.AWAITING_VALIDATION,
        DeploymentState.ROLLED_BACK,
    },
    DeploymentState.AWAITING_VALIDATION: {
        DeploymentState.TRAFFIC_SHIFTING,
        DeploymentState.ROLLED_BACK,
    },
    DeploymentState.TRAFFIC_SHIFTING: {DeploymentState.LIVE, DeploymentState.ROLLED_BACK},
    DeploymentState.LIVE: set(),
    DeploymentState.ROLLED_BACK: set(),
}


class ServiceProvisioner(Protocol):
    def provision(
        self, *, environment: str, stack_name: str, artifacts_path: str
    ) -> CandidateVersion: ...

    def live_version(self, environment: str) -> str | None: ...

    def shift_traffic(self, candidate: CandidateVersion, percent: int) -> None: ...

    def rollback(self, candidate: CandidateVersion) -> None: ...


class DeployStage:
    def __init__(
        self,
        *,
        environment: str,
        provisioner: ServiceProvisioner,
        orchestrator: DeploymentOrchestrator,
        config: HookConfig,
        traffic_policy: TrafficShiftPolicy = ALL_AT_ONCE,
        logger: ILogger | None = None,
    ) -> None:
        self.environment = environment
        self.provisioner = provisioner
        self.orchestrator = orchestrator
        self.config = config
        self.traffic_policy = traffic_policy
        self.logger: ILogger = logger or structlog.get_logger(__name__)

        self._lock = threading.Lock()
        self._state: DeploymentState | None = None
        self._outputs: dict[str, str] = {}
        self.history: list[DeploymentState] = []
        self.deployment: Deployment | None = None

    @property
    def state(self) -> DeploymentState | None:
        with self._lock:
            return self._state

    @property
    def outputs(self) -> dict[str, str]:
        """Empty unless the last deploy reached Live."""
        with self._lock:
            if self._state != DeploymentState.LIVE:
                return {}
            return dict(self._outputs)

    def _transition(self, new: DeploymentState, actx: ActionContext | None = None) -> None:
        with self._lock:
            if new not in _TRANSITIONS[self._state]:
                raise PipelineError(
                    f"Invalid deploy transition {self._state} -> {new.value}"
                )
            self._state = new
            self.history.append(new)
        if actx is not None:
            actx.emit(EventType.DEPLOY_STATE, environment=self.environment, state=new.value)
        self.logger.info("deploy.state", environment=self.environment, state=new.value)

    def _reset(self) -> None:
        with self._lock:
            self._state = None
            self._outputs = {}
            self.history = []
            self.deployment = None

    def run(self, actx: ActionContext) -> Mapping[str, str] | None:
        self._reset()
        env = actx.env
        bound = env.get("ENVIRONMENT")
        if bound is not None and bound != self.environment:
            raise ConfigurationError(
                f"Deploy action for {self.environment} is bound to ENVIRONMENT={bound}"
            )
        stack_name = env.get("STACK_NAME") or f"BooksApi-{self.environment}"
        artifacts_path = env.get("ARTIFACTS_PATH", "")

        self._transition(DeploymentState.PROVISIONING, actx)
        live = self.provisioner.live_version(self.environment)
        try:
            candidate = self.provisioner.provision(
                environment=self.environment,
                stack_name=stack_name,
                artifacts_path=artifacts_path,
            )
        except Exception:
            self._transition(DeploymentState.ROLLED_BACK, actx)
            raise

        self._transition(DeploymentState.AWAITING_VALIDATION, actx)
        try:
            deployment = self.orchestrator.create_deployment(
                environment=self.environment, candidate=candidate, live_version=live
            )
        except Exception:
            self.provisioner.rollback(candidate)
            self._transition(DeploymentState.ROLLED_BACK, actx)
            raise
        self.deployment = deployment

        event = deployment.event
        unsubscribe = actx.on_abort(lambda reason: self.orchestrator.expire(event, reason))
        try:
            verdict = self.orchestrator.wait_for_verdict(event, self.config.hook_timeout_s)
        finally:
            unsubscribe()
        actx.emit(
            EventType.HOOK_VERDICT,
            deployment_id=deployment.deployment_id,
            verdict=verdict.value,
        )

        if actx.abort.triggered:
            verdict = Verdict.FAILED

        if decide(verdict) == TrafficDecision.ROLLBACK:
            self._roll_back(candidate, deployment, actx)
            if actx.abort.triggered:
                raise PipelineAbortedError(
                    f"{self.environment}: deployment {deployment.deployment_id} aborted "
                    f"({actx.abort.reason}); version {live} stays live"
                )
            raise DeploymentRolledBackError(
                f"{self.environment}: candidate {candidate.version} failed pre-traffic "
                f"validation; version {live} stays live"
            )

        self._transition(DeploymentState.TRAFFIC_SHIFTING, actx)
        try:
            self._shift(candidate, actx)
        except Exception as e:
            self.logger.warning(
                "deploy.shift.failed",
                environment=self.environment,
                deployment_id=deployment.deployment_id,
                error=str(e),
            )
            self._roll_back(candidate, deployment, actx)
            raise

        with self._lock:
            self._outputs = {k: str(v) for k, v in candidate.outputs.items()}
        self._transition(DeploymentState.LIVE, actx)
        self.orchestrator.complete(deployment.deployment_id, DeploymentState.LIVE)
        if actx.action.namespace is None:
            return None
        return self.outputs

    def _shift(self, candidate: CandidateVersion, actx: ActionContext) -> None:
        steps = self.traffic_policy.steps()
        for i, percent in enumerate(steps):
            self.provisioner.shift_traffic(candidate, percent)
            actx.emit(
                EventType.DEPLOY_TRAFFIC,
                environment=self.environment,
                version=candidate.version,
                percent=percent,
            )
            last = i == len(steps) - 1
            if not last and actx.abort.wait(self.traffic_policy.interval_s):
                raise PipelineAbortedError(
                    f"{self.environment}: aborted while shifting traffic at {percent}%"
                )

    def _roll_back(
        self, candidate: CandidateVersion, deployment: Deployment, actx: ActionContext
    ) -> None:
        # The environment is released even when the provisioner cannot roll back.
        try:
            self.provisioner.rollback(candidate)
        finally:
            self._transition(DeploymentState.ROLLED_BACK, actx)
            self.orchestrator.complete(deployment.deployment_id, DeploymentState.ROLLED_BACK)

    def action(
        self,
        *,
        name: str = "Deploy",
        run_order: int = 1,
        namespace: str | None = None,
        env: Mapping[str, EnvValue] | None = None,
        input_artifact: str | None = None,
    ) -> Action:
        return Action(
            name=name,
            fn=self.run,
            run_order=run_order,
            input_artifact=input_artifact,
            namespace=namespace,
            env=dict(env or {}),
            variables=OUTPUT_KEYS if namespace is not None else (),
        )

