"""
The deployment orchestrator owns lifecycle events: it issues one per
deployment, hands it to the registered pre-traffic hook and accepts exactly
one verdict for it. Once a verdict is recorded (reported, expired on timeout
or expired on abort) the event is closed and any later report is refused.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Protocol

import httpx
import structlog

from books_api_pipeline.core import (
    DeploymentInProgressError,
    ILogger,
    LifecycleEventResolvedError,
    UnknownLifecycleEventError,
)
from books_api_pipeline.core.http import make_http_client, request_with_retries

from .models import (
    CandidateVersion,
    Deployment,
    DeploymentState,
    LifecycleEvent,
    StatusReport,
    Verdict,
)

PreTrafficHookFn = Callable[[LifecycleEvent, str], object]
Dispatch = Callable[[Callable[[], None]], None]


class StatusReporter(Protocol):
    def put_lifecycle_event_hook_execution_status(self, report: StatusReport) -> None: ...


class DeploymentOrchestrator(StatusReporter, Protocol):
    def create_deployment(
        self, *, environment: str, candidate: CandidateVersion, live_version: str | None = None
    ) -> Deployment: ...

    def wait_for_verdict(self, event: LifecycleEvent, timeout: float) -> Verdict: ...

    def expire(self, event: LifecycleEvent, reason: str) -> bool: ...

    def complete(self, deployment_id: str, state: DeploymentState) -> None: ...


def _thread_dispatch(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, name="pre-traffic-hook", daemon=True).start()


@dataclass(slots=True)
class _EventRecord:
    deployment: Deployment
    done: threading.Event = field(default_factory=threading.Event)
    verdict: Verdict | None = None
    source: str | None = None


class InMemoryDeploymentOrchestrator:
    """
    Local deployment service.

    One deployment per environment may be in flight; a second request for the
    same environment is refused until the first one completes.
    """

    def __init__(
        self,
        *,
        logger: ILogger | None = None,
        dispatch: Dispatch | None = None,
    ) -> None:
        self.logger: ILogger = logger or structlog.get_logger(__name__)
        self._dispatch = dispatch or _thread_dispatch
        self._lock = threading.Lock()
        self._hooks: dict[str | None, PreTrafficHookFn] = {}
        self._events: dict[tuple[str, str], _EventRecord] = {}
        self._deployments: dict[str, Deployment] = {}
        self._active: dict[str, str] = {}
        self.reports: list[StatusReport] = []
        self.rejected_reports: list[StatusReport] = []

    def register_hook(self, hook: PreTrafficHookFn, *, environment: str | None = None) -> None:
        """`environment=None` registers the hook for every environment."""
        with self._lock:
            self._hooks[environment] = hook

    def _hook_for(self, environment: str) -> PreTrafficHookFn | None:
        with self._lock:
            return self._hooks.get(environment) or self._hooks.get(None)

    def create_deployment(
        self,
        *,
        environment: str,
        candidate: CandidateVersion,
        live_version: str | None = None,
    ) -> Deployment:
        event = LifecycleEvent(
            deployment_id=f"d-{uuid.uuid4().hex[:9].upper()}",
            lifecycle_event_hook_execution_id=uuid.uuid4().hex,
        )
        deployment = Deployment(
            deployment_id=event.deployment_id,
            environment=environment,
            candidate=candidate,
            event=event,
            live_version=live_version,
        )
        with self._lock:
            if environment in self._active:
                raise DeploymentInProgressError(
                    f"Deployment {self._active[environment]} is already in progress "
                    f"for {environment}"
                )
            self._active[environment] = deployment.deployment_id
            self._deployments[deployment.deployment_id] = deployment
            self._events[event.key] = _EventRecord(deployment=deployment)

        self.logger.info(
            "deploy.lifecycle_event.issued",
            environment=environment,
            deployment_id=event.deployment_id,
            candidate=candidate.version,
            live_version=live_version,
        )

        hook = self._hook_for(environment)
        if hook is None:
            self.logger.warning(
                "deploy.hook.missing",
                environment=environment,
                deployment_id=event.deployment_id,
            )
        else:
            target = candidate.invocation_target
            self._dispatch(lambda: self._run_hook(hook, event, target))
        return deployment

    def _run_hook(self, hook: PreTrafficHookFn, event: LifecycleEvent, target: str) -> None:
        try:
            hook(event, target)
        except LifecycleEventResolvedError as e:
            self.logger.warning(
                "deploy.hook.late_report",
                deployment_id=event.deployment_id,
                error=str(e),
            )
        except Exception as e:
            # The event stays open; the waiting side expires it on timeout.
            self.logger.error(
                "deploy.hook.crashed",
                deployment_id=event.deployment_id,
                error=str(e),
            )

    def _record(self, key: tuple[str, str]) -> _EventRecord:
        rec = self._events.get(key)
        if rec is None:
            raise UnknownLifecycleEventError(
                f"Unknown lifecycle event {key[1]} for deployment {key[0]}"
            )
        return rec

    def _resolve(self, key: tuple[str, str], verdict: Verdict, source: str) -> _EventRecord:
        with self._lock:
            rec = self._record(key)
            if rec.verdict is not None:
                raise LifecycleEventResolvedError(
                    f"Lifecycle event {key[1]} already resolved as {rec.verdict.value} "
                    f"({rec.source})"
                )
            rec.verdict = verdict
            rec.source = source
            rec.deployment.verdict = verdict
        rec.done.set()
        self.logger.info(
            "deploy.lifecycle_event.resolved",
            deployment_id=key[0],
            verdict=verdict.value,
            source=source,
        )
        return rec

    def put_lifecycle_event_hook_execution_status(self, report: StatusReport) -> None:
        try:
            self._resolve(report.key, report.status, "hook")
        except LifecycleEventResolvedError:
            with self._lock:
                self.rejected_reports.append(report)
            raise
        with self._lock:
            self.reports.append(report)

    def expire(self, event: LifecycleEvent, reason: str) -> bool:
        """Close an open event as Failed. Returns False if it was already resolved."""
        try:
            self._resolve(event.key, Verdict.FAILED, f"expired: {reason}")
        except LifecycleEventResolvedError:
            return False
        return True

    def wait_for_verdict(self, event: LifecycleEvent, timeout: float) -> Verdict:
        with self._lock:
            rec = self._record(event.key)
        if not rec.done.wait(timeout):
            self.expire(event, f"no verdict within {timeout:g}s")
            rec.done.wait()
        assert rec.verdict is not None
        return rec.verdict

    def verdict_of(self, event: LifecycleEvent) -> Verdict | None:
        with self._lock:
            return self._record(event.key).verdict

    def complete(self, deployment_id: str, state: DeploymentState) -> None:
        with self._lock:
            deployment = self._deployments[deployment_id]
            deployment.state = state
            if self._active.get(deployment.environment) == deployment_id:
                del self._active[deployment.environment]
        self.logger.info(
            "deploy.completed",
            deployment_id=deployment_id,
            environment=deployment.environment,
            state=state.value,
        )

    def get_deployment(self, deployment_id: str) -> Deployment:
        with self._lock:
            return self._deployments[deployment_id]

    def in_progress(self, environment: str) -> str | None:
        with self._lock:
            return self._active.get(environment)


class HttpStatusReporter:
    """Reports verdicts to a remote deployment service over HTTP."""

    def __init__(
        self,
        endpoint: str,
        *,
        client: httpx.Client | None = None,
        max_attempts: int = 3,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.client = client or make_http_client()
        self.max_attempts = max_attempts
        self._sleep = sleep

    def put_lifecycle_event_hook_execution_status(self, report: StatusReport) -> None:
        request_with_retries(
            self.client,
            method="PUT",
            url=self.endpoint,
            json=report.to_payload(),
            allowed_statuses=(200, 204),
            max_attempts=self.max_attempts,
            sleep=self._sleep,
        )
