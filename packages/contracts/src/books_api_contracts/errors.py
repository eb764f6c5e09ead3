from __future__ import annotations


class ContractsError(RuntimeError):
    """Base error for contracts package failures"""


class ContractsResourceError(ContractsError):
    """A schema file is missing or unreadable; the installed package is broken."""


class ContractValidationError(ContractsError):
    """Instance did not validate against the shipped JSON schema"""

    def __init__(self, schema_name: str, message: str) -> None:
        super().__init__(message)
        self.schema_name = schema_name


class BookValidationError(ContractValidationError):
    """Book payload rejected by book.schema.json"""


class LifecycleEventValidationError(ContractValidationError):
    """Hook invocation or status report rejected by its schema"""
