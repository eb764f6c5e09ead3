from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping

from books_api_contracts import validate_lifecycle_event_dict, validate_status_report_dict
from pydantic import BaseModel, ConfigDict, Field


class Verdict(StrEnum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class DeploymentState(StrEnum):
    PROVISIONING = "Provisioning"
    AWAITING_VALIDATION = "AwaitingValidation"
    TRAFFIC_SHIFTING = "TrafficShifting"
    LIVE = "Live"
    ROLLED_BACK = "RolledBack"


class LifecycleEvent(BaseModel):
    """
    Pre-traffic notification for one deployment. The pair of ids addresses
    exactly one pending verdict.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    deployment_id: str = Field(alias="DeploymentId", min_length=1)
    lifecycle_event_hook_execution_id: str = Field(
        alias="LifecycleEventHookExecutionId", min_length=1
    )

    @classmethod
    def from_payload(cls, payload: Any) -> "LifecycleEvent":
        validate_lifecycle_event_dict(payload)
        return cls.model_validate(payload)

    def to_payload(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)

    @property
    def key(self) -> tuple[str, str]:
        return (self.deployment_id, self.lifecycle_event_hook_execution_id)


class StatusReport(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    deployment_id: str = Field(alias="deploymentId")
    lifecycle_event_hook_execution_id: str = Field(alias="lifecycleEventHookExecutionId")
    status: Verdict

    @classmethod
    def for_event(cls, event: LifecycleEvent, status: Verdict) -> "StatusReport":
        return cls(
            deployment_id=event.deployment_id,
            lifecycle_event_hook_execution_id=event.lifecycle_event_hook_execution_id,
            status=status,
        )

    @classmethod
    def from_payload(cls, payload: Any) -> "StatusReport":
        validate_status_report_dict(payload)
        return cls.model_validate(payload)

    def to_payload(self) -> dict[str, str]:
        payload = self.model_dump(by_alias=True, mode="json")
        validate_status_report_dict(payload)
        return payload

    @property
    def key(self) -> tuple[str, str]:
        return (self.deployment_id, self.lifecycle_event_hook_execution_id)


@dataclass(frozen=True, slots=True)
class CandidateVersion:
    """A provisioned, not yet live, version of the service."""

    environment: str
    version: str
    # what the hook invokes to create the sentinel record
    invocation_target: str
    outputs: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class Deployment:
    deployment_id: str
    environment: str
    candidate: CandidateVersion
    event: LifecycleEvent
    live_version: str | None = None
    state: DeploymentState = DeploymentState.AWAITING_VALIDATION
    verdict: Verdict | None = None
