from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from books_api_pipeline.core import ILogger

from .events import EventSink, EventType, make_event
from .types import ActionStatus, ArtifactRef
from .variables import VariableStore

AbortCallback = Callable[[str], None]


class AbortSignal:
    """
    One-shot cancellation notice.

    Suspended actions subscribe a callback instead of polling; the callback
    runs exactly once, on the thread that triggers the abort (or immediately
    if the signal already fired).
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[AbortCallback] = []
        self.reason: str | None = None
        self._detach: Callable[[], None] | None = None

    @property
    def triggered(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def trigger(self, reason: str) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self.reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for cb in callbacks:
            cb(reason)
        return True

    def subscribe(self, cb: AbortCallback) -> Callable[[], None]:
        with self._lock:
            fired = self._event.is_set()
            if not fired:
                self._callbacks.append(cb)
        if fired:
            cb(self.reason or "aborted")

        def _unsubscribe() -> None:
            with self._lock:
                if cb in self._callbacks:
                    self._callbacks.remove(cb)

        return _unsubscribe

    def child(self) -> "AbortSignal":
        """A signal that fires when this one does, but can also fire on its own."""
        sub = AbortSignal()
        sub._detach = self.subscribe(sub.trigger)
        return sub

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None


@dataclass(slots=True)
class RunContext:
    """
    Context shared across stages for a single pipeline run.
    """

    run_id: str
    run_root: Path
    logger: ILogger
    events: EventSink
    variables: VariableStore = field(default_factory=VariableStore)
    artifact_store: Any = None
    abort: AbortSignal = field(default_factory=AbortSignal)

    # optional free-form metadata
    meta: dict[str, Any] = field(default_factory=dict)

    artifacts: dict[str, ArtifactRef] = field(default_factory=dict)
    action_status: dict[str, ActionStatus] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def stage_logger(self, stage: str, action: Optional[str] = None) -> ILogger:
        if action is None:
            return self.logger.bind(stage=stage)
        return self.logger.bind(stage=stage, action=action)

    def emit(
        self,
        event: EventType | str,
        *,
        stage: str | None = None,
        action: str | None = None,
        **kw: object,
    ) -> None:
        # Keep event chatter at debug level to leave console logs readable.
        event_value = event.value if isinstance(event, EventType) else str(event)
        self.events.emit(
            make_event(
                event_type=event_value,
                run_id=self.run_id,
                stage=stage,
                action=action,
                **kw,
            )
        )
        self.logger.debug(
            event_value, event_type=event_value, stage=stage, action=action, **kw
        )

    def set_status(self, stage: str, action: str, status: ActionStatus) -> None:
        with self._lock:
            self.action_status[f"{stage}/{action}"] = status

    def status_of(self, stage: str, action: str) -> ActionStatus | None:
        with self._lock:
            return self.action_status.get(f"{stage}/{action}")

    def record_artifact(self, ref: ArtifactRef) -> None:
        with self._lock:
            self.artifacts[ref.name] = ref

    def artifact(self, name: str) -> ArtifactRef | None:
        with self._lock:
            return self.artifacts.get(name)
