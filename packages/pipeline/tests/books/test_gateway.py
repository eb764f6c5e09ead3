from __future__ import annotations

import httpx

from books_api_pipeline.books import (
    BooksGateway,
    GatewayRouter,
    InMemoryBookTable,
    VersionHandlers,
    make_create_handler,
    make_list_handler,
)

BOOK = {
    "isbn": "1",
    "title": "t",
    "year": 2001,
    "author": "a",
    "publisher": "p",
    "rating": 3,
    "pages": 100,
}


def _client(token: str = "good") -> tuple[httpx.Client, InMemoryBookTable]:
    table = InMemoryBookTable()
    gw = BooksGateway(route=lambda: "1", authorize=lambda t: t == token)
    gw.add_version(
        "1",
        VersionHandlers(create=make_create_handler(table), list=make_list_handler(table)),
    )
    router = GatewayRouter()
    router.mount("api.books.local", gw)
    return httpx.Client(transport=router.transport()), table


def test_list_is_public_and_create_needs_bearer_token() -> None:
    client, table = _client()
    with client:
        assert client.get("https://api.books.local/books").json() == []

        assert client.post("https://api.books.local/books", json=BOOK).status_code == 401
        bad = client.post(
            "https://api.books.local/books",
            json=BOOK,
            headers={"Authorization": "Bearer wrong"},
        )
        assert bad.status_code == 401
        assert len(table) == 0

        ok = client.post(
            "https://api.books.local/books",
            json=BOOK,
            headers={"Authorization": "Bearer good"},
        )
        assert ok.status_code == 201
        assert client.get("https://api.books.local/books").json() == [BOOK]


def test_unknown_paths_hosts_and_versions() -> None:
    client, _ = _client()
    with client:
        assert client.get("https://api.books.local/authors").status_code == 404
        assert client.delete("https://api.books.local/books").status_code == 405
        assert client.get("https://other.local/books").status_code == 502

    gw = BooksGateway(route=lambda: None, authorize=lambda t: True)
    router = GatewayRouter()
    router.mount("empty.local", gw)
    with httpx.Client(transport=router.transport()) as c:
        assert c.get("https://empty.local/books").status_code == 503


def test_create_through_the_api_refuses_sentinel_keys() -> None:
    client, table = _client()
    with client:
        out = client.post(
            "https://api.books.local/books",
            json={**BOOK, "isbn": "__pretraffic__:customer-book"},
            headers={"Authorization": "Bearer good"},
        )
        assert out.status_code == 500
        assert len(table) == 0
