from __future__ import annotations

import json
from typing import Any, Callable

import structlog
from books_api_contracts import validate_book_json

from .models import Book, is_sentinel_key
from .table import BookTable

log = structlog.get_logger(__name__)

ProxyResult = dict[str, Any]
Handler = Callable[[dict[str, Any]], ProxyResult]


def _result(status: int, body: str = "", *, json_body: bool = False) -> ProxyResult:
    headers = {"Content-Type": "application/json"} if json_body or status < 300 else {}
    return {"statusCode": status, "headers": headers, "body": body}


def make_create_handler(table: BookTable) -> Handler:
    """
    `POST /books`: validate the body, write one item, 201 on success.
    Any failure is a 500 with an empty body.

    Requests routed through the API (they carry `httpMethod`) may not use the
    sentinel key space; only a direct invocation can write a sentinel.
    """

    def handler(event: dict[str, Any]) -> ProxyResult:
        try:
            payload = validate_book_json(event.get("body") or "")
            book = Book.model_validate(payload)
            if "httpMethod" in event and is_sentinel_key(book.isbn):
                raise ValueError(f"isbn {book.isbn!r} is in the reserved sentinel key space")
            table.put_item(book.to_item())
            return _result(201)
        except Exception as e:
            log.warning("books.create.failed", table=table.name, error=str(e))
            return _result(500)

    return handler


def make_list_handler(table: BookTable) -> Handler:
    """`GET /books`: every stored book except pre-traffic sentinel records."""

    def handler(event: dict[str, Any]) -> ProxyResult:
        try:
            books = [
                Book.from_item(item).to_json_dict()
                for item in table.scan()
                if not is_sentinel_key(item["isbn"]["S"])
            ]
            return _result(200, json.dumps(books), json_body=True)
        except Exception as e:
            log.warning("books.list.failed", table=table.name, error=str(e))
            return _result(500)

    return handler
