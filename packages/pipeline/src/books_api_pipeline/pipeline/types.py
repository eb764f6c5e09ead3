from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional


class ActionStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StageStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class VariableRef:
    """
    `{namespace}.{key}` reference to an output variable of an earlier action.

    Declared when the pipeline is built, bound to a value only once the
    producing action has succeeded.
    """

    namespace: str
    key: str

    def __str__(self) -> str:
        return f"#{{{self.namespace}.{self.key}}}"

    @classmethod
    def parse(cls, text: str) -> "VariableRef":
        s = text.strip()
        if s.startswith("#{") and s.endswith("}"):
            s = s[2:-1]
        namespace, sep, key = s.partition(".")
        if not sep or not namespace or not key:
            raise ValueError(f"Not a variable reference: {text!r}")
        return cls(namespace=namespace, key=key)


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """
    A reference to an artifact produced by an action.
    """

    name: str
    key: str
    bytes: int
    sha256: str
    content_type: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Event:
    """
    Structured event emitted by the pipeline.
    """

    type: str
    ts_utc: str
    run_id: str
    stage: Optional[str] = None
    action: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
