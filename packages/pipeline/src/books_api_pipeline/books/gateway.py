from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable

import httpx

from .service import Handler

Authorizer = Callable[[str], bool]
Route = Callable[[], str | None]


@dataclass(frozen=True, slots=True)
class VersionHandlers:
    create: Handler
    list: Handler


def _message(status: int, message: str) -> httpx.Response:
    return httpx.Response(status, json={"message": message})


class BooksGateway:
    """
    One API endpoint in front of the books handlers.

    `GET /books` is public, `POST /books` needs `Authorization: Bearer <token>`.
    Each request goes to whichever version `route()` picks.
    """

    def __init__(self, *, route: Route, authorize: Authorizer) -> None:
        self._route = route
        self._authorize = authorize
        self._versions: dict[str, VersionHandlers] = {}
        self._lock = threading.Lock()

    def add_version(self, version: str, handlers: VersionHandlers) -> None:
        with self._lock:
            self._versions[version] = handlers

    def remove_version(self, version: str) -> None:
        with self._lock:
            self._versions.pop(version, None)

    def _authorized(self, request: httpx.Request) -> bool:
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        return scheme == "Bearer" and bool(token) and self._authorize(token)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.rstrip("/") != "/books":
            return _message(404, "Not Found")

        version = self._route()
        with self._lock:
            handlers = self._versions.get(version) if version is not None else None
        if handlers is None:
            return _message(503, "Service Unavailable")

        if request.method == "GET":
            out = handlers.list({"httpMethod": "GET", "path": "/books"})
        elif request.method == "POST":
            if not self._authorized(request):
                return _message(401, "Unauthorized")
            out = handlers.create(
                {"httpMethod": "POST", "path": "/books", "body": request.content.decode("utf-8")}
            )
        else:
            return _message(405, "Method Not Allowed")

        return httpx.Response(
            int(out["statusCode"]),
            headers=out.get("headers") or {},
            content=(out.get("body") or "").encode("utf-8"),
        )


class GatewayRouter:
    """Dispatches requests to gateways by host, for use as an httpx transport."""

    def __init__(self) -> None:
        self._gateways: dict[str, BooksGateway] = {}
        self._lock = threading.Lock()

    def mount(self, host: str, gateway: BooksGateway) -> None:
        with self._lock:
            self._gateways[host] = gateway

    def handle(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            gateway = self._gateways.get(request.url.host)
        if gateway is None:
            return _message(502, "Unknown host")
        return gateway.handle(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)
