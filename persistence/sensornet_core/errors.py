"""
Error types for the SensorNet core.

This module defines all exception types raised by the core:
- SensorNetError: Base exception
- ValidationError: Malformed input
- DuplicateError: Unique-constraint violation
- AuthorizationError: Missing permission or geographic scope
- SyncError: Graph mirror failed after the document write succeeded
- CompensationError: Rollback of a failed registration also failed
- StorageError: Any other backing-store failure

Invariants:
    - All errors inherit from SensorNetError
    - Driver exceptions never escape the stores package untranslated
    - CompensationError is never logged-and-swallowed
"""

from __future__ import annotations

from typing import Any


class SensorNetError(Exception):
    """Base exception for all SensorNet core errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SENSORNET_ERROR"
        self.details = details or {}


class ValidationError(SensorNetError):
    """Input validation failed.

    Raised when:
    - Required field is missing
    - Field value has wrong type or is not finite
    - Referenced principal is unknown or inactive
    """

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name},
        )
        self.field_name = field_name


class DuplicateError(SensorNetError):
    """A unique key already exists (e.g. principal email)."""

    def __init__(self, message: str, field_name: str, value: str) -> None:
        super().__init__(
            message,
            code="DUPLICATE",
            details={"field": field_name},
        )
        self.field_name = field_name
        self.value = value


class AuthorizationError(SensorNetError):
    """Principal lacks a permission or the geographic scope for it."""

    def __init__(
        self,
        message: str,
        principal_id: str,
        permission: str,
        scope: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code="ACCESS_DENIED",
            details={
                "principal_id": principal_id,
                "permission": permission,
                "scope": scope,
            },
        )
        self.principal_id = principal_id
        self.permission = permission
        self.scope = scope


class SyncError(SensorNetError):
    """The graph mirror failed after the document store write succeeded.

    Attributes:
        principal_id: Principal whose mirror failed
        unrecoverable: True when the stores may now disagree
    """

    unrecoverable = False

    def __init__(
        self,
        message: str,
        principal_id: str,
        code: str = "SYNC_ERROR",
    ) -> None:
        super().__init__(
            message,
            code=code,
            details={"principal_id": principal_id, "unrecoverable": self.unrecoverable},
        )
        self.principal_id = principal_id


class CompensationError(SyncError):
    """Compensating delete failed; the document store holds an orphan.

    Operators must remove the orphaned principal manually. The record is
    not visible to authorization because it has no graph mirror.
    """

    unrecoverable = True

    def __init__(self, message: str, principal_id: str, attempts: int) -> None:
        super().__init__(message, principal_id, code="COMPENSATION_FAILED")
        self.attempts = attempts
        self.details["attempts"] = attempts


class StorageError(SensorNetError):
    """A backing store operation failed.

    Attributes:
        store: Which store failed (document, graph, column)
        operation: Operation being performed
    """

    def __init__(self, message: str, store: str, operation: str | None = None) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"store": store, "operation": operation},
        )
        self.store = store
        self.operation = operation
