"""
Functional suite run against a deployed environment.

Scenarios:
  - list books without authentication -> 200
  - list books returns seeded records
  - create without a token -> 401
  - create with an invalid payload -> 500
  - create a valid book -> 201 and the stored record equals the request

Records a scenario seeds are removed whether the scenario passes or not.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import httpx
import structlog

from books_api_pipeline.books import Book, BookTable
from books_api_pipeline.core import (
    ActionExecutionError,
    ConfigurationError,
    ILogger,
    format_duration_ms,
    monotonic_ms,
)
from books_api_pipeline.core.http import make_http_client
from books_api_pipeline.pipeline import Action, ActionContext, EventType
from books_api_pipeline.pipeline.variables import EnvValue

from .identity import DisposableIdentity, IdentityProvider, disposable_identity

TableLookup = Callable[[str], BookTable]
ClientFactory = Callable[[], httpx.Client]

REQUIRED_ENV: tuple[str, ...] = ("API_ENDPOINT", "USER_POOL_ID", "USER_POOL_CLIENT_ID", "TABLE")


class ScenarioAssertionError(AssertionError):
    pass


class FunctionalSuiteFailedError(ActionExecutionError):
    """At least one functional scenario failed"""


@dataclass(frozen=True, slots=True)
class FunctionalTestConfig:
    api_endpoint: str
    user_pool_id: str
    user_pool_client_id: str
    table: str

    @property
    def books_url(self) -> str:
        return f"{self.api_endpoint.rstrip('/')}/books"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "FunctionalTestConfig":
        missing = [k for k in REQUIRED_ENV if not env.get(k)]
        if missing:
            raise ConfigurationError(f"Functional tests need {missing}")
        return cls(
            api_endpoint=env["API_ENDPOINT"],
            user_pool_id=env["USER_POOL_ID"],
            user_pool_client_id=env["USER_POOL_CLIENT_ID"],
            table=env["TABLE"],
        )


@dataclass(frozen=True, slots=True)
class ScenarioResult:
    name: str
    passed: bool
    duration_ms: int
    message: str = ""


def build_books(count: int = 1) -> list[Book]:
    return [
        Book(
            isbn=str(uuid.uuid4()),
            title=f"title_{i}",
            year=int(f"200{i}"),
            author=f"author_{i}",
            publisher=f"publisher_{i}",
            rating=i,
            pages=int(f"10{i}"),
        )
        for i in range(count)
    ]


def _expect(cond: bool, message: str) -> None:
    if not cond:
        raise ScenarioAssertionError(message)


class _Scenarios:
    def __init__(
        self,
        client: httpx.Client,
        cfg: FunctionalTestConfig,
        table: BookTable,
        identity: DisposableIdentity,
        seed_count: int,
    ) -> None:
        self.client = client
        self.cfg = cfg
        self.table = table
        self.identity = identity
        self.seed_count = seed_count

    def list_without_authentication(self) -> None:
        resp = self.client.get(self.cfg.books_url)
        _expect(resp.status_code == 200, f"expected 200, got {resp.status_code}")

    def list_returns_books(self) -> None:
        books = build_books(self.seed_count)
        self.table.batch_put(b.to_item() for b in books)
        try:
            resp = self.client.get(self.cfg.books_url)
            _expect(resp.status_code == 200, f"expected 200, got {resp.status_code}")
            listed = {b["isbn"]: b for b in resp.json()}
            _expect(
                len(listed) == len(books),
                f"expected {len(books)} books, got {len(listed)}",
            )
            for book in books:
                _expect(
                    listed.get(book.isbn) == book.to_json_dict(),
                    f"listed book {book.isbn} does not match the seeded record",
                )
        finally:
            self.table.batch_delete(b.isbn for b in books)

    def create_without_token(self) -> None:
        book = build_books(1)[0]
        try:
            resp = self.client.post(self.cfg.books_url, json=book.to_json_dict())
            _expect(resp.status_code == 401, f"expected 401, got {resp.status_code}")
        finally:
            self.table.delete_item(book.isbn)

    def create_with_invalid_payload(self) -> None:
        payload: dict[str, Any] = build_books(1)[0].to_json_dict()
        del payload["publisher"]
        try:
            resp = self.client.post(
                self.cfg.books_url,
                json=payload,
                headers={"Authorization": self.identity.authorization},
            )
            _expect(resp.status_code == 500, f"expected 500, got {resp.status_code}")
        finally:
            self.table.delete_item(payload["isbn"])

    def create_book(self) -> None:
        book = build_books(1)[0]
        try:
            resp = self.client.post(
                self.cfg.books_url,
                json=book.to_json_dict(),
                headers={"Authorization": self.identity.authorization},
            )
            _expect(resp.status_code == 201, f"expected 201, got {resp.status_code}")
            item = self.table.get_item(book.isbn, consistent=True)
            _expect(item is not None, f"book {book.isbn} was not stored")
            _expect(
                Book.from_item(item) == book,
                f"stored book {book.isbn} does not match the request",
            )
        finally:
            self.table.delete_item(book.isbn)

    def all(self) -> list[tuple[str, Callable[[], None]]]:
        return [
            ("list books without authentication", self.list_without_authentication),
            ("list books returns seeded books", self.list_returns_books),
            ("create book without token is rejected", self.create_without_token),
            ("create book with invalid payload errors", self.create_with_invalid_payload),
            ("create book", self.create_book),
        ]


class FunctionalSuite:
    def __init__(
        self,
        *,
        identity: IdentityProvider,
        tables: TableLookup,
        client_factory: ClientFactory = make_http_client,
        logger: ILogger | None = None,
        seed_count: int = 5,
    ) -> None:
        self.identity = identity
        self.tables = tables
        self.client_factory = client_factory
        self.logger: ILogger = logger or structlog.get_logger(__name__)
        self.seed_count = seed_count

    def run(
        self,
        cfg: FunctionalTestConfig,
        *,
        on_result: Callable[[ScenarioResult], None] | None = None,
    ) -> list[ScenarioResult]:
        log = self.logger.bind(endpoint=cfg.api_endpoint)
        table = self.tables(cfg.table)
        results: list[ScenarioResult] = []

        with disposable_identity(
            self.identity,
            pool_id=cfg.user_pool_id,
            client_id=cfg.user_pool_client_id,
            logger=log,
        ) as ident, self.client_factory() as client:
            scenarios = _Scenarios(client, cfg, table, ident, self.seed_count)
            for name, fn in scenarios.all():
                t0 = monotonic_ms()
                try:
                    fn()
                    res = ScenarioResult(name=name, passed=True, duration_ms=monotonic_ms() - t0)
                except Exception as e:
                    res = ScenarioResult(
                        name=name,
                        passed=False,
                        duration_ms=monotonic_ms() - t0,
                        message=f"{type(e).__name__}: {e}",
                    )
                results.append(res)
                if on_result is not None:
                    on_result(res)
                if res.passed:
                    log.info(
                        "Scenario passed",
                        scenario=name,
                        duration=format_duration_ms(res.duration_ms),
                    )
                else:
                    log.error("Scenario failed", scenario=name, error=res.message)
        return results

    def run_action(self, actx: ActionContext) -> None:
        cfg = FunctionalTestConfig.from_env(actx.env)

        def _emit(res: ScenarioResult) -> None:
            actx.emit(
                EventType.TEST_SCENARIO,
                scenario=res.name,
                passed=res.passed,
                duration_ms=res.duration_ms,
                message=res.message,
            )

        results = self.run(cfg, on_result=_emit)
        failed = [r for r in results if not r.passed]
        if failed:
            raise FunctionalSuiteFailedError(
                f"{len(failed)}/{len(results)} scenarios failed: "
                + "; ".join(f"{r.name} ({r.message})" for r in failed)
            )
        return None

    def action(
        self,
        *,
        name: str = "Test",
        run_order: int = 1,
        env: Mapping[str, EnvValue] | None = None,
        input_artifact: str | None = None,
    ) -> Action:
        return Action(
            name=name,
            fn=self.run_action,
            run_order=run_order,
            input_artifact=input_artifact,
            env=dict(env or {}),
        )
