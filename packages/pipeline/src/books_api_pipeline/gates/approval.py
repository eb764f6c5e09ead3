from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Callable, Mapping

import structlog

from books_api_pipeline.core import (
    ApprovalRejectedError,
    ILogger,
    PipelineAbortedError,
    PipelineError,
    utc_now_iso,
)
from books_api_pipeline.pipeline import Action, ActionContext, EventType


class ApprovalDecision(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True, slots=True)
class ApprovalRequest:
    gate: str
    run_id: str
    stage: str
    additional_information: str
    requested_at_utc: str


@dataclass(frozen=True, slots=True)
class ApprovalOutcome:
    decision: ApprovalDecision
    reviewer: str
    comment: str
    decided_at_utc: str


ApprovalListener = Callable[[ApprovalRequest], None]


class ManualApprovalGate:
    """
    Suspends its action until a reviewer decides.

    The waiting action holds no polling loop: it blocks on an event that is
    set by `approve`, `reject` or the run's abort signal, whichever comes
    first. Each request takes exactly one decision.
    """

    def __init__(
        self,
        name: str = "Review",
        *,
        additional_information: str = "",
        logger: ILogger | None = None,
    ) -> None:
        self.name = name
        self.additional_information = additional_information
        self.logger: ILogger = logger or structlog.get_logger(__name__)

        self._lock = threading.Lock()
        self._listeners: list[ApprovalListener] = []
        self._pending: ApprovalRequest | None = None
        self._decided = threading.Event()
        self._outcome: ApprovalOutcome | None = None
        self.history: list[tuple[ApprovalRequest, ApprovalOutcome]] = []

    def add_listener(self, listener: ApprovalListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    @property
    def pending(self) -> ApprovalRequest | None:
        with self._lock:
            return self._pending

    def approve(self, reviewer: str, comment: str = "") -> ApprovalOutcome:
        return self._decide(ApprovalDecision.APPROVED, reviewer, comment)

    def reject(self, reviewer: str, comment: str = "") -> ApprovalOutcome:
        return self._decide(ApprovalDecision.REJECTED, reviewer, comment)

    def _decide(self, decision: ApprovalDecision, reviewer: str, comment: str) -> ApprovalOutcome:
        outcome = ApprovalOutcome(
            decision=decision,
            reviewer=reviewer,
            comment=comment,
            decided_at_utc=utc_now_iso(),
        )
        with self._lock:
            if self._pending is None:
                raise PipelineError(f"Approval {self.name} has no pending request")
            if self._outcome is not None:
                raise PipelineError(f"Approval {self.name} was already decided")
            self._outcome = outcome
        self._decided.set()
        return outcome

    def wait_for_request(self, timeout: float | None = None) -> ApprovalRequest | None:
        """Test/CLI helper: block until a request is pending."""
        got = threading.Event()
        request: list[ApprovalRequest] = []

        def _on(req: ApprovalRequest) -> None:
            request.append(req)
            got.set()

        with self._lock:
            if self._pending is not None and self._outcome is None:
                return self._pending
            self._listeners.append(_on)
        try:
            got.wait(timeout)
        finally:
            with self._lock:
                if _on in self._listeners:
                    self._listeners.remove(_on)
        return request[0] if request else None

    def run(self, actx: ActionContext) -> Mapping[str, str] | None:
        request = ApprovalRequest(
            gate=self.name,
            run_id=actx.run_id,
            stage=actx.stage,
            additional_information=self.additional_information,
            requested_at_utc=utc_now_iso(),
        )
        with self._lock:
            self._decided.clear()
            self._outcome = None
            self._pending = request
            listeners = list(self._listeners)

        actx.emit(
            EventType.APPROVAL_REQUESTED,
            gate=self.name,
            additional_information=self.additional_information,
        )
        actx.logger.info(
            "Approval requested",
            gate=self.name,
            additional_information=self.additional_information,
        )
        for listener in listeners:
            listener(request)

        aborted: list[str] = []

        def _on_abort(reason: str) -> None:
            aborted.append(reason)
            self._decided.set()

        unsubscribe = actx.on_abort(_on_abort)
        try:
            self._decided.wait()
        finally:
            unsubscribe()
            with self._lock:
                outcome = self._outcome
                self._pending = None

        if outcome is None:
            reason = aborted[0] if aborted else "aborted"
            actx.emit(EventType.APPROVAL_DECIDED, gate=self.name, decision="aborted")
            raise PipelineAbortedError(f"Approval {self.name} abandoned: {reason}")

        self.history.append((request, outcome))
        actx.emit(
            EventType.APPROVAL_DECIDED,
            gate=self.name,
            decision=outcome.decision.value,
            reviewer=outcome.reviewer,
            comment=outcome.comment,
        )
        actx.logger.info(
            "Approval decided",
            gate=self.name,
            decision=outcome.decision.value,
            reviewer=outcome.reviewer,
        )
        if outcome.decision == ApprovalDecision.REJECTED:
            raise ApprovalRejectedError(
                f"Approval {self.name} rejected by {outcome.reviewer}"
                + (f": {outcome.comment}" if outcome.comment else "")
            )
        return None

    def action(self, *, run_order: int = 1) -> Action:
        return Action(name=self.name, fn=self.run, run_order=run_order)
