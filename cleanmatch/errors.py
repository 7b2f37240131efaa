"""
Service error taxonomy.

Every business operation raises one of these classes for caller-visible
failures. The ``code`` attribute is stable and transport independent; the
FastAPI shell maps it onto an HTTP status.
"""

from typing import Any


class ServiceError(Exception):
    """Base class for caller-visible service failures."""

    code = "internal"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class UnauthenticatedError(ServiceError):
    code = "unauthenticated"


class PermissionDeniedError(ServiceError):
    code = "permission-denied"


class InvalidArgumentError(ServiceError):
    code = "invalid-argument"


class NotFoundError(ServiceError):
    code = "not-found"


class AlreadyExistsError(ServiceError):
    code = "already-exists"


class FailedPreconditionError(ServiceError):
    code = "failed-precondition"


class DeadlineExceededError(ServiceError):
    code = "deadline-exceeded"


class InternalError(ServiceError):
    code = "internal"


class RecordDecodeError(Exception):
    """Raised when a stored row cannot be parsed into a domain record."""

    def __init__(self, message: str, record_type: str, record_id: str | None = None):
        super().__init__(message)
        self.record_type = record_type
        self.record_id = record_id
