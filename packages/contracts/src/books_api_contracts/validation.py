from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Iterable

from jsonschema import Draft202012Validator

from .errors import (
    BookValidationError,
    ContractValidationError,
    LifecycleEventValidationError,
)
from .resources import book_schema, lifecycle_event_schema, status_report_schema


@lru_cache(maxsize=1)
def book_validator() -> Draft202012Validator:
    return Draft202012Validator(book_schema())


@lru_cache(maxsize=1)
def lifecycle_event_validator() -> Draft202012Validator:
    return Draft202012Validator(lifecycle_event_schema())


@lru_cache(maxsize=1)
def status_report_validator() -> Draft202012Validator:
    return Draft202012Validator(status_report_schema())


def format_errors(errors: Iterable[Any]) -> str:
    lines: list[str] = []
    for e in errors:
        path = (
            ".".join(str(p) for p in e.path) if getattr(e, "path", None) else "<root>"
        )
        lines.append(f"- {path}: {e.message}")
    return "\n".join(lines)


def _validate(
    v: Draft202012Validator,
    obj: Any,
    *,
    name: str,
    error_cls: type[ContractValidationError],
) -> None:
    errs = sorted(v.iter_errors(obj), key=lambda e: list(getattr(e, "path", [])))
    if errs:
        raise error_cls(name, f"{name} validation failed:\n" + format_errors(errs))


def validate_book_dict(obj: dict[str, Any]) -> None:
    """
    Validate a book record against the shipped JSON schema.
    Raises BookValidationError with a readable message on failure.
    """
    _validate(book_validator(), obj, name="book", error_cls=BookValidationError)


def validate_book_json(raw: str | bytes) -> dict[str, Any]:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")

    try:
        obj = json.loads(raw)
    except json.JSONDecodeError as e:
        raise BookValidationError("book", f"Book is not valid JSON: {e}") from e

    if not isinstance(obj, dict):
        raise BookValidationError(
            "book", f"Book must be a JSON object, got {type(obj).__name__}"
        )

    validate_book_dict(obj)
    return obj


def validate_lifecycle_event_dict(obj: Any) -> None:
    _validate(
        lifecycle_event_validator(),
        obj,
        name="lifecycle_event",
        error_cls=LifecycleEventValidationError,
    )


def validate_status_report_dict(obj: Any) -> None:
    _validate(
        status_report_validator(),
        obj,
        name="status_report",
        error_cls=LifecycleEventValidationError,
    )
