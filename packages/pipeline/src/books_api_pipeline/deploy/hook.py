"""
Pre-traffic validation hook.

For one lifecycle event the hook:
  1. invokes the candidate's create path with a sentinel book,
  2. waits a settle interval, then reads the sentinel back consistently,
  3. deletes the sentinel once the read has found it,
  4. reports Succeeded or Failed to the orchestrator.

Every path out of `handle` reports exactly one verdict; anything that goes
wrong on the way (invoker errors, store errors, bad responses) becomes
Failed. The sentinel key lives under a reserved prefix, so cleanup never
touches real records.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

import httpx
import structlog
from tenacity import Retrying, retry_if_result, stop_after_attempt

from books_api_pipeline.books import Book, RecordStore, sentinel_book
from books_api_pipeline.core import HookConfig, ILogger, ValidationFailure
from books_api_pipeline.core.retry import DeterministicExponentialBackoff

from .models import LifecycleEvent, StatusReport, Verdict
from .orchestrator import StatusReporter

Handler = Callable[[dict[str, Any]], Mapping[str, Any]]
Sleep = Callable[[float], None]


@dataclass(frozen=True, slots=True)
class InvocationResult:
    status_code: int
    body: str = ""
    # set when the target raised instead of answering
    function_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.function_error is None and 200 <= self.status_code < 300


class CandidateInvoker(Protocol):
    def invoke(self, target: str, payload: dict[str, Any]) -> InvocationResult: ...


class LocalInvoker:
    """Invokes in-process handlers registered under a target name."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, target: str, handler: Handler) -> None:
        self._handlers[target] = handler

    def unregister(self, target: str) -> None:
        self._handlers.pop(target, None)

    def targets(self) -> list[str]:
        return sorted(self._handlers)

    def invoke(self, target: str, payload: dict[str, Any]) -> InvocationResult:
        handler = self._handlers.get(target)
        if handler is None:
            raise LookupError(f"No invocation target named {target}")
        try:
            out = handler(payload)
        except Exception as e:
            return InvocationResult(status_code=500, function_error=f"{type(e).__name__}: {e}")
        return InvocationResult(
            status_code=int(out.get("statusCode", 500)), body=str(out.get("body") or "")
        )


class HttpCandidateInvoker:
    """Treats the target as a URL and POSTs the payload body to it."""

    def __init__(self, client: httpx.Client) -> None:
        self.client = client

    def invoke(self, target: str, payload: dict[str, Any]) -> InvocationResult:
        resp = self.client.post(
            target,
            content=payload.get("body") or "",
            headers={"Content-Type": "application/json"},
        )
        return InvocationResult(status_code=resp.status_code, body=resp.text)


class VerdictObligation:
    """
    Scope that owes exactly one verdict for a lifecycle event.

    The verdict starts as Failed and only `succeed()` changes it. On exit the
    verdict is reported once, whether the body returned or raised.
    """

    def __init__(
        self, event: LifecycleEvent, reporter: StatusReporter, logger: ILogger
    ) -> None:
        self.event = event
        self.reporter = reporter
        self.logger = logger
        self.verdict = Verdict.FAILED
        self.reported = False

    def succeed(self) -> None:
        self.verdict = Verdict.SUCCEEDED

    def __enter__(self) -> "VerdictObligation":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            self.verdict = Verdict.FAILED
            self.logger.warning(
                "hook.validation.failed",
                error=str(exc),
                exc_type=exc_type.__name__ if exc_type else None,
            )
        self._report()
        return isinstance(exc, Exception)

    def _report(self) -> None:
        if self.reported:
            return
        self.reported = True
        report = StatusReport.for_event(self.event, self.verdict)
        self.reporter.put_lifecycle_event_hook_execution_status(report)
        self.logger.info("hook.verdict.reported", verdict=self.verdict.value)


def _attempts_within(deadline_s: float, base: float, cap: float) -> int:
    backoff = DeterministicExponentialBackoff(base=base, cap=cap)
    attempts, spent = 1, 0.0
    while True:
        step = backoff.wait_for(attempts)
        if step <= 0 or spent + step > deadline_s:
            return attempts
        spent += step
        attempts += 1


class PreTrafficHook:
    def __init__(
        self,
        *,
        config: HookConfig,
        invoker: CandidateInvoker,
        store: RecordStore,
        reporter: StatusReporter,
        logger: ILogger | None = None,
        sleep: Sleep = time.sleep,
    ) -> None:
        self.config = config
        self.invoker = invoker
        self.store = store
        self.reporter = reporter
        self.logger: ILogger = logger or structlog.get_logger(__name__)
        self._sleep = sleep

    def __call__(self, event: LifecycleEvent, target: str | None = None) -> Verdict:
        return self.handle(event, target)

    def handle(self, event: LifecycleEvent, target: str | None = None) -> Verdict:
        target = target or self.config.validation_target

        with VerdictObligation(event, self.reporter, self.logger) as obligation:
            log = self.logger.bind(
                deployment_id=event.deployment_id,
                execution_id=event.lifecycle_event_hook_execution_id,
            )
            obligation.logger = log
            book = sentinel_book()
            self._create(target, book, log)
            item = self._read_back(book.isbn, log)
            if item is None:
                raise ValidationFailure(
                    f"sentinel {book.isbn} not found in {self.config.backing_store_name}"
                )
            obligation.succeed()
            # only a sentinel that was read back is deleted
            self._cleanup(book.isbn, log)

        return obligation.verdict

    def handle_payload(self, payload: Mapping[str, Any]) -> dict[str, str]:
        """
        Function-style entry point: raw event in, reported status out.

        A payload without both ids cannot be answered and raises.
        """
        event = LifecycleEvent.from_payload(dict(payload))
        verdict = self.handle(event)
        return StatusReport.for_event(event, verdict).to_payload()

    def _create(self, target: str, book: Book, log: ILogger) -> None:
        log.info("hook.invoke", target=target, sentinel=book.isbn)
        result = self.invoker.invoke(target, {"body": json.dumps(book.to_json_dict())})
        if not result.ok:
            raise ValidationFailure(
                f"create returned {result.status_code}"
                + (f" ({result.function_error})" if result.function_error else "")
            )

    def _read_back(self, isbn: str, log: ILogger) -> Any:
        self._sleep(self.config.settle_interval_s)
        if self.config.read_deadline_ms == 0:
            return self.store.get_item(isbn, consistent=True)

        base = max(self.config.settle_interval_s / 4, 0.05)
        cap = max(self.config.read_deadline_s / 2, base)
        attempts = _attempts_within(self.config.read_deadline_s, base, cap)

        def _before_sleep(retry_state) -> None:
            log.debug("hook.read.retry", attempt=retry_state.attempt_number)

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=DeterministicExponentialBackoff(base=base, cap=cap),
            retry=retry_if_result(lambda item: item is None),
            retry_error_callback=lambda state: None,
            before_sleep=_before_sleep,
            sleep=self._sleep,
        )
        return retrying(self.store.get_item, isbn, consistent=True)

    def _cleanup(self, isbn: str, log: ILogger) -> None:
        try:
            self.store.delete_item(isbn)
        except Exception as e:
            # Cleanup failure does not change the verdict.
            log.warning("hook.cleanup.failed", sentinel=isbn, error=str(e))


def make_handler(hook: PreTrafficHook) -> Callable[[dict[str, Any]], dict[str, str]]:
    return hook.handle_payload
