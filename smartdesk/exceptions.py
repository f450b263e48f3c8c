"""
Domain errors raised by the lifecycle and SLA services.

Each error carries the HTTP status the API layer answers with, so services
stay free of transport concerns and routers stay free of error mapping.
"""

from typing import Any


class SmartDeskError(Exception):
    """Base class for all lifecycle errors."""

    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFound(SmartDeskError):
    status_code = 404

    def __init__(self, resource_type: str, resource_id: Any = None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} not found: {resource_id}"
        super().__init__(message)


class ValidationError(SmartDeskError):
    status_code = 422


class InvalidRating(ValidationError):
    pass


class IllegalTransition(SmartDeskError):
    status_code = 409

    def __init__(self, from_state: Any, to_state: Any, message: str | None = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            message or f"Cannot move ticket from {from_state} to {to_state}",
            {"from": str(from_state), "to": str(to_state)},
        )


class InvalidAssignee(SmartDeskError):
    status_code = 422


class MissingDepartment(SmartDeskError):
    status_code = 422


class NoAvailableAgent(SmartDeskError):
    status_code = 409


class DuplicatePolicy(SmartDeskError):
    status_code = 409


class ConcurrencyConflict(SmartDeskError):
    """Another writer updated the ticket first; re-read and retry."""

    status_code = 409
