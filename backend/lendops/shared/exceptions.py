from __future__ import annotations

from decimal import Decimal


class AppError(Exception):
    """Base error for domain/application exceptions."""

    kind = "AppError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(AppError):
    """Raised when an aggregate is missing."""

    kind = "NotFound"


class ValidationError(AppError):
    """Raised for domain-level validation beyond schema validation."""

    kind = "ValidationError"


class InvalidTransition(AppError):
    """Raised when a status change is not in the allowed-transition table."""

    kind = "InvalidTransition"

    def __init__(self, from_status: str, to_status: str, entity: str = "loan") -> None:
        super().__init__(f"Invalid {entity} status transition: {from_status} -> {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class InsufficientCapital(AppError):
    """Raised when a fund cannot cover an allocation from received capital."""

    kind = "InsufficientCapital"

    def __init__(self, requested: Decimal, available: Decimal) -> None:
        super().__init__(f"Insufficient capital: requested {requested}, available {available}")
        self.requested = requested
        self.available = available


class Conflict(AppError):
    """Raised when concurrent writes on the same aggregate could not be serialized."""

    kind = "Conflict"


class HandlerFailure(AppError):
    """A subscriber failed for an event. Logged and parked, never raised to publishers."""

    kind = "HandlerFailure"

    def __init__(self, event_id: str, handler_name: str, error: str) -> None:
        super().__init__(f"Handler {handler_name} failed for event {event_id}: {error}")
        self.event_id = event_id
        self.handler_name = handler_name
        self.error = error
