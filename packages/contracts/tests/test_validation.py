from __future__ import annotations

import json

import pytest
from books_api_contracts import (
    BookValidationError,
    LifecycleEventValidationError,
    validate_book_dict,
    validate_book_json,
    validate_lifecycle_event_dict,
    validate_status_report_dict,
)

BOOK = {
    "isbn": "0-306-40615-2",
    "title": "title_0",
    "year": 2000,
    "author": "author_0",
    "publisher": "publisher_0",
    "rating": 0,
    "pages": 100,
}


def test_valid_book_passes():
    validate_book_dict(dict(BOOK))
    assert validate_book_json(json.dumps(BOOK))["isbn"] == BOOK["isbn"]


def test_string_year_is_accepted():
    validate_book_dict({**BOOK, "year": "1111"})


def test_missing_publisher_rejected():
    bad = dict(BOOK)
    bad.pop("publisher")
    with pytest.raises(BookValidationError) as ei:
        validate_book_dict(bad)
    assert "publisher" in str(ei.value)


def test_non_object_json_rejected():
    with pytest.raises(BookValidationError):
        validate_book_json("[1, 2]")
    with pytest.raises(BookValidationError):
        validate_book_json(b"{not json")


def test_lifecycle_event_requires_both_ids():
    validate_lifecycle_event_dict(
        {"DeploymentId": "d-1", "LifecycleEventHookExecutionId": "h-1"}
    )
    with pytest.raises(LifecycleEventValidationError):
        validate_lifecycle_event_dict({"DeploymentId": "d-1"})


def test_status_report_status_enum():
    ok = {
        "deploymentId": "d-1",
        "lifecycleEventHookExecutionId": "h-1",
        "status": "Succeeded",
    }
    validate_status_report_dict(ok)
    with pytest.raises(LifecycleEventValidationError):
        validate_status_report_dict({**ok, "status": "Pending"})
