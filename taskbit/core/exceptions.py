"""Typed errors raised by the service and action layers."""

from typing import Optional


class TaskBitError(Exception):
    """Base application error carrying the HTTP status it maps to."""

    status_code = 500
    code = "TASKBIT_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class NotAuthenticatedError(TaskBitError):
    status_code = 401
    code = "NOT_AUTHENTICATED"

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class PermissionDeniedError(TaskBitError):
    status_code = 403
    code = "PERMISSION_DENIED"


class NotFoundError(TaskBitError):
    """A referenced entity (or stored payment-provider customer) does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        message = f"{resource} not found" if resource_id is None else f"{resource} not found: {resource_id}"
        super().__init__(message)


class InvalidStateError(TaskBitError):
    """The entity exists but its lifecycle forbids the requested change."""

    status_code = 409
    code = "INVALID_STATE"


class ValidationError(TaskBitError):
    status_code = 422
    code = "VALIDATION_ERROR"


class ExternalServiceError(TaskBitError):
    """Payment provider, mail provider or document store failure."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(message)


class ActionError(TaskBitError):
    """User-safe wrapper for unexpected failures in the action layer."""

    status_code = 500
    code = "ACTION_FAILED"
