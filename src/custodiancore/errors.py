"""Error taxonomy for custodian-core.

Every error raised across the store, validator and collectors derives from
CustodianError so callers can catch one type at the outer boundary.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Error categories for classification."""

    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    STORAGE = "storage"
    COLLECTOR = "collector"
    INTERNAL = "internal"


class CustodianError(Exception):
    """Base class for all custodian-core errors."""

    category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class PolicyNotFoundError(CustodianError):
    """Policy (or its history) is absent from the store."""

    category = ErrorCategory.NOT_FOUND

    def __init__(self, name: str, version: int | None = None) -> None:
        self.name = name
        self.version = version
        if version is None:
            super().__init__(f"policy '{name}' not found")
        else:
            super().__init__(f"policy '{name}' version {version} not found")


class PolicyValidationError(CustodianError):
    """Policy record failed validation.

    Attributes:
        errors: Individual validation messages (at least one)
        path: Location of the first offending field, if known
    """

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, path: str | None = None, errors: list[str] | None = None):
        self.path = path
        self.errors = errors or [message]
        super().__init__(f"Validation error{f' at {path}' if path else ''}: {message}")
        self.message = message


class StorageIOError(CustodianError):
    """Read, write or serialization failure in the persistence layer."""

    category = ErrorCategory.STORAGE


class CollectorError(CustodianError):
    """Snapshot retrieval failed for a resource type."""

    category = ErrorCategory.COLLECTOR

    def __init__(self, resource_type: str, reason: str) -> None:
        self.resource_type = resource_type
        self.reason = reason
        super().__init__(f"failed to collect {resource_type} resources: {reason}")
