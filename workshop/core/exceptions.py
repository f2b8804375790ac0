"""
Domain exceptions raised by the service layer.

Services never build HTTP responses themselves. They raise one of the errors
below and the exception handlers in ``workshop.main`` translate them into the
standard error envelope:

    {
        "success": false,
        "message": "Human-readable description",
        "data": null,
        "errors": {"code": "UNIQUE_ERROR_CODE", ...}
    }

HTTP STATUS CODE MAPPING:
- 400: ValidationError (malformed or out-of-range input)
- 403: ForbiddenError (missing role, ownership or gating precondition)
- 404: NotFoundError
- 409: ConflictError, InvalidStateError
- 503: TransientStoreError (datastore unavailable, safe to retry with backoff)
"""

from typing import Any

from fastapi import status


class WorkshopError(Exception):
    """Base class for all domain errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "WORKSHOP_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the standard error envelope."""
        return {
            "success": False,
            "message": self.message,
            "data": None,
            "errors": {"code": self.code, **self.details},
        }


class ValidationError(WorkshopError):
    """Malformed or out-of-range input. Never retried automatically."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class NotFoundError(WorkshopError):
    """Referenced entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class ForbiddenError(WorkshopError):
    """Caller lacks a role, ownership, or a gating precondition."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class ConflictError(WorkshopError):
    """Uniqueness violation not absorbed by upsert logic."""

    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class ResourceExhaustedError(ConflictError):
    """A bounded retry loop ran out of attempts (e.g. PIN regeneration)."""

    code = "RESOURCE_EXHAUSTED"


class InvalidStateError(WorkshopError):
    """Operation is not meaningful for the entity's current state."""

    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATE"


class InvalidStateTransition(InvalidStateError):
    """Requested session state change is not allowed by the state machine."""

    code = "STATE_TRANSITION_INVALID"


class TransientStoreError(WorkshopError):
    """Datastore unavailable. Callers may retry with backoff."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message)
