from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from books_api_contracts import LifecycleEventValidationError

from books_api_pipeline.books import InMemoryBookTable, is_sentinel_key, make_create_handler
from books_api_pipeline.core import HookConfig, get_logger
from books_api_pipeline.deploy import (
    HttpCandidateInvoker,
    InvocationResult,
    LifecycleEvent,
    LocalInvoker,
    PreTrafficHook,
    StatusReport,
    Verdict,
    VerdictObligation,
)

EVENT = LifecycleEvent(deployment_id="d-ABC", lifecycle_event_hook_execution_id="exec-1")


class RecordingReporter:
    def __init__(self) -> None:
        self.reports: list[StatusReport] = []

    def put_lifecycle_event_hook_execution_status(self, report: StatusReport) -> None:
        self.reports.append(report)


class CountingTable(InMemoryBookTable):
    def __init__(self) -> None:
        super().__init__("books")
        self.reads = 0
        self.deletes: list[str] = []
        self.ops: list[str] = []

    def get_item(self, isbn: str, *, consistent: bool = False):
        assert consistent
        self.reads += 1
        self.ops.append("get")
        return super().get_item(isbn, consistent=consistent)

    def delete_item(self, isbn: str) -> None:
        self.deletes.append(isbn)
        self.ops.append("delete")
        super().delete_item(isbn)


class StaticInvoker:
    def __init__(self, result: InvocationResult) -> None:
        self.result = result
        self.payloads: list[dict[str, Any]] = []

    def invoke(self, target: str, payload: dict[str, Any]) -> InvocationResult:
        self.payloads.append(payload)
        return self.result


def _hook(invoker, table, reporter, **cfg) -> tuple[PreTrafficHook, list[float]]:
    sleeps: list[float] = []
    hook = PreTrafficHook(
        config=HookConfig(**cfg),
        invoker=invoker,
        store=table,
        reporter=reporter,
        sleep=sleeps.append,
    )
    return hook, sleeps


def _local_invoker(table: InMemoryBookTable) -> LocalInvoker:
    invoker = LocalInvoker()
    invoker.register("books-create", make_create_handler(table))
    return invoker


def test_candidate_that_writes_succeeds_and_cleans_up() -> None:
    table = CountingTable()
    reporter = RecordingReporter()
    hook, sleeps = _hook(_local_invoker(table), table, reporter)

    verdict = hook.handle(EVENT)

    assert verdict == Verdict.SUCCEEDED
    assert [r.status for r in reporter.reports] == [Verdict.SUCCEEDED]
    assert reporter.reports[0].to_payload() == {
        "deploymentId": "d-ABC",
        "lifecycleEventHookExecutionId": "exec-1",
        "status": "Succeeded",
    }
    assert sleeps == [1.5]
    assert table.reads == 1
    assert len(table.deletes) == 1 and is_sentinel_key(table.deletes[0])
    assert table.ops == ["get", "delete"]
    assert len(table) == 0


def test_sentinel_payload_matches_book_contract() -> None:
    table = CountingTable()
    invoker = StaticInvoker(InvocationResult(status_code=201))
    hook, _ = _hook(invoker, table, RecordingReporter())
    hook.handle(EVENT)

    body = json.loads(invoker.payloads[0]["body"])
    assert body["title"] == "Smoke Test"
    assert body["year"] == 1111
    assert is_sentinel_key(body["isbn"])


@pytest.mark.parametrize(
    "result",
    [
        InvocationResult(status_code=500),
        InvocationResult(status_code=200, function_error="Unhandled: boom"),
    ],
)
def test_invocation_error_fails_without_reading(result: InvocationResult) -> None:
    table = CountingTable()
    reporter = RecordingReporter()
    hook, sleeps = _hook(StaticInvoker(result), table, reporter)

    assert hook.handle(EVENT) == Verdict.FAILED
    assert [r.status for r in reporter.reports] == [Verdict.FAILED]
    assert table.reads == 0
    assert table.deletes == []
    assert sleeps == []


def test_invoker_exception_fails_closed() -> None:
    class Exploding:
        def invoke(self, target, payload):
            raise ConnectionError("unreachable")

    reporter = RecordingReporter()
    hook, _ = _hook(Exploding(), CountingTable(), reporter)
    assert hook.handle(EVENT) == Verdict.FAILED
    assert len(reporter.reports) == 1


def test_write_not_observed_fails() -> None:
    table = CountingTable()
    reporter = RecordingReporter()
    hook, sleeps = _hook(StaticInvoker(InvocationResult(status_code=201)), table, reporter)

    assert hook.handle(EVENT) == Verdict.FAILED
    assert [r.status for r in reporter.reports] == [Verdict.FAILED]
    assert table.reads == 1
    assert sleeps == [1.5]
    # nothing was observed, so nothing is deleted
    assert table.deletes == []


def test_store_error_fails_and_cleanup_error_does_not_flip_verdict() -> None:
    class BrokenReads(CountingTable):
        def get_item(self, isbn, *, consistent=False):
            raise TimeoutError("store unavailable")

    table = BrokenReads()
    reporter = RecordingReporter()
    hook, _ = _hook(_local_invoker(table), table, reporter)
    assert hook.handle(EVENT) == Verdict.FAILED

    class BrokenDeletes(CountingTable):
        def delete_item(self, isbn):
            raise TimeoutError("store unavailable")

    table2 = BrokenDeletes()
    reporter2 = RecordingReporter()
    hook2, _ = _hook(_local_invoker(table2), table2, reporter2)
    assert hook2.handle(EVENT) == Verdict.SUCCEEDED
    assert [r.status for r in reporter2.reports] == [Verdict.SUCCEEDED]


def test_read_deadline_retries_until_record_visible() -> None:
    class LaggingTable(CountingTable):
        def get_item(self, isbn, *, consistent=False):
            item = super().get_item(isbn, consistent=consistent)
            return item if self.reads >= 3 else None

    table = LaggingTable()
    reporter = RecordingReporter()
    hook, sleeps = _hook(
        _local_invoker(table), table, reporter, settle_interval_ms=400, read_deadline_ms=1000
    )

    assert hook.handle(EVENT) == Verdict.SUCCEEDED
    assert table.reads == 3
    # settle, then backoff of 0.1 and 0.2
    assert sleeps == [0.4, 0.1, 0.2]


def test_read_deadline_gives_up() -> None:
    table = CountingTable()
    reporter = RecordingReporter()
    hook, sleeps = _hook(
        StaticInvoker(InvocationResult(status_code=201)),
        table,
        reporter,
        settle_interval_ms=400,
        read_deadline_ms=1000,
    )
    assert hook.handle(EVENT) == Verdict.FAILED
    # 0.1 + 0.2 + 0.4 fits in 1s, the next 0.5 does not
    assert table.reads == 4
    assert sum(sleeps[1:]) <= 1.0


def test_handle_payload_entry_point() -> None:
    table = CountingTable()
    reporter = RecordingReporter()
    hook, _ = _hook(_local_invoker(table), table, reporter)

    out = hook.handle_payload(
        {"DeploymentId": "d-1", "LifecycleEventHookExecutionId": "e-1", "Extra": "ignored"}
    )
    assert out == {
        "deploymentId": "d-1",
        "lifecycleEventHookExecutionId": "e-1",
        "status": "Succeeded",
    }

    with pytest.raises(LifecycleEventValidationError):
        hook.handle_payload({"DeploymentId": "d-1"})
    assert len(reporter.reports) == 1


def test_verdict_obligation_reports_once_on_every_path() -> None:
    reporter = RecordingReporter()
    log = get_logger("test")
    with VerdictObligation(EVENT, reporter, log) as ob:
        ob.succeed()
    with VerdictObligation(EVENT, reporter, log) as ob:
        ob.succeed()
        raise RuntimeError("late failure")
    with VerdictObligation(EVENT, reporter, log):
        pass

    assert [r.status for r in reporter.reports] == [
        Verdict.SUCCEEDED,
        Verdict.FAILED,
        Verdict.FAILED,
    ]


def test_http_invoker_posts_the_body_to_the_target() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201)

    invoker = HttpCandidateInvoker(httpx.Client(transport=httpx.MockTransport(handler)))
    result = invoker.invoke("https://candidate.local/books", {"body": '{"isbn": "x"}'})

    assert result.ok
    assert seen[0].method == "POST"
    assert seen[0].content == b'{"isbn": "x"}'


def test_sentinel_construction_error_still_reports_failed(monkeypatch) -> None:
    import books_api_pipeline.deploy.hook as hook_module

    def broken_sentinel():
        raise RuntimeError("uuid source unavailable")

    monkeypatch.setattr(hook_module, "sentinel_book", broken_sentinel)
    table = CountingTable()
    reporter = RecordingReporter()
    hook, _ = _hook(_local_invoker(table), table, reporter)

    assert hook.handle(EVENT) == Verdict.FAILED
    assert [r.status for r in reporter.reports] == [Verdict.FAILED]
    assert table.ops == []
