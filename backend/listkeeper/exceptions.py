"""Listkeeper exceptions.

Typed failures raised by the service layer. The controller layer decides how
each kind is rendered; the services never format responses themselves.
"""

from typing import Optional


class ListkeeperError(Exception):
    """Base exception for list and task errors."""

    def __init__(self, message: str, code: str = "LISTKEEPER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(ListkeeperError):
    """A task, list or user id does not resolve."""

    def __init__(self, entity: str, entity_id: Optional[int] = None):
        self.entity = entity
        self.entity_id = entity_id
        suffix = f" {entity_id}" if entity_id is not None else ""
        super().__init__(
            message=f"{entity.capitalize()}{suffix} not found",
            code="NOT_FOUND",
        )


class ForbiddenError(ListkeeperError):
    """A capability check failed.

    Raised when the acting user has no grant on a list, holds a read-only
    grant for a mutating call, or lacks the manage/admin capability.
    """

    def __init__(self, message: str = "Access denied", reason: str = "forbidden"):
        self.reason = reason
        super().__init__(message=message, code="FORBIDDEN")


class InvalidInputError(ListkeeperError):
    """Bad title, name, date, rule or credential input."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message=message, code="INVALID_INPUT")


class ConflictError(ListkeeperError):
    """Store contention outlasted the busy wait and the single retry."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            message=f"Could not complete '{operation}': the store is busy, try again",
            code="CONFLICT",
        )


class UnsupportedError(ListkeeperError):
    """An optional capability is disabled in this deployment."""

    def __init__(self, feature_name: str):
        self.feature_name = feature_name
        super().__init__(
            message=f"Feature '{feature_name}' is not enabled",
            code="UNSUPPORTED",
        )
