from __future__ import annotations

import json
import os
import socket
import threading
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Optional, TextIO

from books_api_pipeline.core import utc_now_iso

from .types import Event


class EventType(str, Enum):
    RUN_ENV = "run.env"
    RUN_START = "run.start"
    RUN_ABORT = "run.abort"
    RUN_FINISH = "run.finish"

    STAGE_START = "stage.start"
    STAGE_SUCCESS = "stage.success"
    STAGE_FAILED = "stage.failed"
    STAGE_SKIPPED = "stage.skipped"

    ACTION_START = "action.start"
    ACTION_SUCCESS = "action.success"
    ACTION_FAILED = "action.failed"

    VARIABLES_PUBLISHED = "variables.published"
    ARTIFACT_WRITTEN = "artifact.written"

    APPROVAL_REQUESTED = "approval.requested"
    APPROVAL_DECIDED = "approval.decided"

    DEPLOY_STATE = "deploy.state"
    DEPLOY_TRAFFIC = "deploy.traffic"
    HOOK_VERDICT = "hook.verdict"

    TEST_SCENARIO = "test.scenario"


class EventSink:
    """
    Append-only JSONL log for one run, one event per line.

    The file stays open (line buffered) until `close()`; emitting to a closed
    sink is an error.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._fh: TextIO | None = self.path.open("a", encoding="utf-8", buffering=1)

        self.emit(
            make_event(
                event_type=EventType.RUN_ENV,
                run_id="__init__",
                hostname=socket.gethostname(),
                pid=os.getpid(),
                cwd=str(Path.cwd()),
            )
        )

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._fh is None

    def emit(self, event: Event) -> None:
        line = json.dumps(asdict(event), ensure_ascii=False, default=str)
        with self._lock:
            if self._fh is None:
                raise ValueError(f"Event sink {self.path} is closed")
            self._fh.write(line + "\n")

    def close(self) -> None:
        with self._lock:
            fh, self._fh = self._fh, None
        if fh is not None:
            fh.close()

    def __enter__(self) -> "EventSink":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def make_event(
    *,
    event_type: EventType | str,
    run_id: str,
    stage: Optional[str] = None,
    action: Optional[str] = None,
    **data: Any,
) -> Event:
    type_value = (
        event_type.value if isinstance(event_type, EventType) else str(event_type)
    )
    return Event(
        type=type_value,
        ts_utc=utc_now_iso(),
        run_id=run_id,
        stage=stage,
        action=action,
        data=dict(data),
    )
