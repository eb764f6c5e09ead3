from __future__ import annotations

import secrets
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Protocol

import structlog

from books_api_pipeline.core import ILogger, PipelineError


class IdentityError(PipelineError):
    """Identity provider refused an operation"""


class IdentityProvider(Protocol):
    def admin_create_user(
        self, pool_id: str, username: str, attributes: Mapping[str, str]
    ) -> None: ...

    def admin_set_user_password(
        self, pool_id: str, username: str, password: str, *, permanent: bool = True
    ) -> None: ...

    def initiate_auth(self, client_id: str, username: str, password: str) -> str: ...

    def admin_delete_user(self, pool_id: str, username: str) -> None: ...


@dataclass(slots=True)
class _Pool:
    pool_id: str
    client_id: str
    users: dict[str, str | None] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)


class InMemoryIdentityProvider:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pools: dict[str, _Pool] = {}
        self._clients: dict[str, str] = {}

    def create_pool(self, name: str) -> tuple[str, str]:
        """Returns `(pool_id, client_id)`; idempotent per name."""
        pool_id = f"local_{name}"
        with self._lock:
            pool = self._pools.get(pool_id)
            if pool is None:
                pool = _Pool(pool_id=pool_id, client_id=uuid.uuid4().hex[:26])
                self._pools[pool_id] = pool
                self._clients[pool.client_id] = pool_id
            return pool.pool_id, pool.client_id

    def _pool(self, pool_id: str) -> _Pool:
        pool = self._pools.get(pool_id)
        if pool is None:
            raise IdentityError(f"Unknown user pool {pool_id}")
        return pool

    def admin_create_user(
        self, pool_id: str, username: str, attributes: Mapping[str, str]
    ) -> None:
        with self._lock:
            pool = self._pool(pool_id)
            if username in pool.users:
                raise IdentityError(f"User {username} already exists")
            pool.users[username] = None

    def admin_set_user_password(
        self, pool_id: str, username: str, password: str, *, permanent: bool = True
    ) -> None:
        with self._lock:
            pool = self._pool(pool_id)
            if username not in pool.users:
                raise IdentityError(f"Unknown user {username}")
            pool.users[username] = password

    def initiate_auth(self, client_id: str, username: str, password: str) -> str:
        with self._lock:
            pool_id = self._clients.get(client_id)
            if pool_id is None:
                raise IdentityError(f"Unknown app client {client_id}")
            pool = self._pools[pool_id]
            if pool.users.get(username) != password or password is None:
                raise IdentityError("Incorrect username or password")
            token = secrets.token_urlsafe(32)
            pool.tokens[token] = username
            return token

    def admin_delete_user(self, pool_id: str, username: str) -> None:
        with self._lock:
            pool = self._pool(pool_id)
            if username not in pool.users:
                raise IdentityError(f"Unknown user {username}")
            del pool.users[username]
            pool.tokens = {t: u for t, u in pool.tokens.items() if u != username}

    def verify_token(self, pool_id: str, token: str) -> bool:
        with self._lock:
            pool = self._pools.get(pool_id)
            return pool is not None and token in pool.tokens

    def users(self, pool_id: str) -> list[str]:
        with self._lock:
            return sorted(self._pool(pool_id).users)


@dataclass(frozen=True, slots=True)
class DisposableIdentity:
    username: str
    access_token: str

    @property
    def authorization(self) -> str:
        return f"Bearer {self.access_token}"


@contextmanager
def disposable_identity(
    provider: IdentityProvider,
    *,
    pool_id: str,
    client_id: str,
    logger: ILogger | None = None,
) -> Iterator[DisposableIdentity]:
    """
    A throwaway user for one test run. Once the user exists it is deleted on
    every way out, including a failed sign-in.
    """
    log = logger or structlog.get_logger(__name__)
    username = f"success+{uuid.uuid4()}@simulator.amazonses.com"
    password = str(uuid.uuid4())

    provider.admin_create_user(
        pool_id, username, {"email": username, "email_verified": "True"}
    )
    log.info("identity.created", username=username, pool_id=pool_id)
    try:
        provider.admin_set_user_password(pool_id, username, password, permanent=True)
        token = provider.initiate_auth(client_id, username, password)
        yield DisposableIdentity(username=username, access_token=token)
    finally:
        provider.admin_delete_user(pool_id, username)
        log.info("identity.deleted", username=username, pool_id=pool_id)
