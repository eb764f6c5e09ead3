from __future__ import annotations

from .errors import (
    BookValidationError,
    ContractsError,
    ContractsResourceError,
    ContractValidationError,
    LifecycleEventValidationError,
)
from .resources import (
    BOOK_SCHEMA_REL,
    LIFECYCLE_EVENT_SCHEMA_REL,
    SCHEMA_VERSION_REL,
    STATUS_REPORT_SCHEMA_REL,
    book_schema,
    lifecycle_event_schema,
    read_json,
    read_text,
    schema_version_int,
    schema_version_text,
    status_report_schema,
)
from .validation import (
    validate_book_dict,
    validate_book_json,
    validate_lifecycle_event_dict,
    validate_status_report_dict,
)

__all__ = [
    "ContractsError",
    "ContractsResourceError",
    "ContractValidationError",
    "BookValidationError",
    "LifecycleEventValidationError",
    "read_text",
    "read_json",
    "book_schema",
    "lifecycle_event_schema",
    "status_report_schema",
    "schema_version_text",
    "schema_version_int",
    "BOOK_SCHEMA_REL",
    "LIFECYCLE_EVENT_SCHEMA_REL",
    "STATUS_REPORT_SCHEMA_REL",
    "SCHEMA_VERSION_REL",
    "validate_book_dict",
    "validate_book_json",
    "validate_lifecycle_event_dict",
    "validate_status_report_dict",
]
