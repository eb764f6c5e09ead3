"""
HTTP plumbing for talking to deployment services.

Transport errors and 408/429/5xx answers are retried with a deterministic
backoff; any other status outside `allowed_statuses` fails at once.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping

import httpx
import structlog
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from .errors import ConfigurationError, TransientError
from .retry import DeterministicExponentialBackoff

RETRYABLE_STATUSES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})
USER_AGENT = "books-api-pipeline/0.1"

log = structlog.get_logger(__name__)


class HttpError(RuntimeError):
    pass


class HttpStatusError(HttpError):
    """The service answered with a status the caller does not accept."""

    def __init__(self, response: httpx.Response) -> None:
        request = response.request
        detail = response.text[:200].strip()
        msg = f"HTTP {response.status_code} for {request.method} {request.url}"
        super().__init__(f"{msg} (body: {detail})" if detail else msg)
        self.status_code = response.status_code
        self.retryable = response.status_code in RETRYABLE_STATUSES


class HttpRetriesExceeded(HttpError, TransientError):
    def __init__(self, *, method: str, url: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{method} {url} failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def make_http_client(
    *,
    timeout: httpx.Timeout | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    return httpx.Client(
        timeout=timeout or httpx.Timeout(10.0, connect=5.0),
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    )


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, HttpStatusError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


def request_with_retries(
    client: httpx.Client,
    *,
    method: str,
    url: str,
    headers: Mapping[str, str] | None = None,
    json: Any = None,
    allowed_statuses: Iterable[int] = (200,),
    max_attempts: int = 3,
    backoff_base: float = 0.5,
    backoff_cap: float = 4.0,
    sleep: Callable[[float], None] | None = None,
) -> httpx.Response:
    if max_attempts < 1:
        raise ConfigurationError(f"max_attempts must be >= 1, got {max_attempts}")
    allowed = frozenset(allowed_statuses)

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log.warning(
            "http.retry",
            method=method,
            url=url,
            attempt=state.attempt_number,
            sleep_s=state.next_action.sleep if state.next_action else None,
            error=str(exc),
        )

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=DeterministicExponentialBackoff(base=backoff_base, cap=backoff_cap),
        retry=retry_if_exception(_should_retry),
        before_sleep=_log_retry,
        reraise=True,
        **({"sleep": sleep} if sleep is not None else {}),
    )

    attempts = 0
    try:
        for attempt in retrying:
            attempts = attempt.retry_state.attempt_number
            with attempt:
                resp = client.request(method, url, headers=headers, json=json)
                if resp.status_code not in allowed:
                    resp.read()
                    raise HttpStatusError(resp)
                return resp
    except HttpStatusError as e:
        if not e.retryable:
            raise
        raise HttpRetriesExceeded(method=method, url=url, attempts=attempts, last_error=e) from e
    except httpx.TransportError as e:
        raise HttpRetriesExceeded(method=method, url=url, attempts=attempts, last_error=e) from e
    raise HttpError(f"{method} {url}: no attempt was made")
