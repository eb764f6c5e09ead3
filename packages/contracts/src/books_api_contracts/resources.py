"""
Schemas shipped as package data. Every payload that crosses a process
boundary (book bodies, lifecycle events, status reports) is checked
against one of these.
"""

from __future__ import annotations

import json
from functools import lru_cache
from importlib.resources import files
from typing import Any, Final

from .errors import ContractsResourceError

PKG: Final[str] = "books_api_contracts"

BOOK_SCHEMA_REL: Final[str] = "schema/jsonschema/book.schema.json"
LIFECYCLE_EVENT_SCHEMA_REL: Final[str] = "schema/jsonschema/lifecycle_event.schema.json"
STATUS_REPORT_SCHEMA_REL: Final[str] = "schema/jsonschema/status_report.schema.json"
SCHEMA_VERSION_REL: Final[str] = "schema/VERSION"


def read_text(rel_path: str) -> str:
    try:
        return files(PKG).joinpath(rel_path).read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ContractsResourceError(f"Missing contracts resource: {rel_path}") from e


@lru_cache(maxsize=None)
def read_json(rel_path: str) -> dict[str, Any]:
    try:
        obj = json.loads(read_text(rel_path))
    except json.JSONDecodeError as e:
        raise ContractsResourceError(f"Invalid JSON in {rel_path}: {e}") from e
    if not isinstance(obj, dict):
        raise ContractsResourceError(f"{rel_path} must hold a JSON object")
    return obj


def book_schema() -> dict[str, Any]:
    """Body accepted by `POST /books`."""
    return read_json(BOOK_SCHEMA_REL)


def lifecycle_event_schema() -> dict[str, Any]:
    """Payload the deployment orchestrator sends to the pre-traffic hook."""
    return read_json(LIFECYCLE_EVENT_SCHEMA_REL)


def status_report_schema() -> dict[str, Any]:
    return read_json(STATUS_REPORT_SCHEMA_REL)


def schema_version_text() -> str:
    return read_text(SCHEMA_VERSION_REL).strip()


def schema_version_int() -> int:
    s = schema_version_text()
    if not s.isdigit() or int(s) < 1:
        raise ContractsResourceError(f"schema/VERSION must be a positive integer, got {s!r}")
    return int(s)
