"""Domain exceptions raised by the booking and assignment services.

Every exception carries a machine readable ``code`` and a ``details`` dict so
the HTTP layer can render a structured error without inspecting messages.
"""
from typing import Any, Dict, Optional


class HCSBookingError(Exception):
    """Base class for all domain errors."""

    code = "ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(HCSBookingError):
    """Raised when a user, test, center, booking or request lookup returns no row."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any = None):
        super().__init__(f"{resource} not found", {"resource": resource, "id": resource_id})
        self.resource = resource
        self.resource_id = resource_id


class ValidationError(HCSBookingError):
    """Raised when incoming data fails domain validation."""

    code = "VALIDATION_ERROR"


class CapacityExceededError(HCSBookingError):
    """Raised when admission is rejected because the day is full."""

    code = "CAPACITY_EXCEEDED"

    def __init__(self, limit: int, occupied: int, date: Optional[str] = None):
        message = (
            f"No available slots for the selected date. "
            f"Maximum {limit} bookings allowed per day for this test."
        )
        super().__init__(message, {"limit": limit, "occupied": occupied, "date": date})
        self.limit = limit
        self.occupied = occupied
        self.date = date


class AuthorizationError(HCSBookingError):
    """Raised when the actor lacks the role or center ownership for an action."""

    code = "FORBIDDEN"


class ConflictError(HCSBookingError):
    """Raised when an operation conflicts with the current workflow state."""

    code = "CONFLICT"


class TestNotOfferedError(ValidationError, ConflictError):
    """Raised when booking a test the center has no approved price for."""

    __test__ = False
    code = "TEST_NOT_OFFERED"

    def __init__(self, test_id: Any, center_id: Any):
        super().__init__(
            "Test is not available at the selected healthcare center",
            {"test_id": test_id, "center_id": center_id},
        )


__all__ = [
    "HCSBookingError",
    "NotFoundError",
    "ValidationError",
    "CapacityExceededError",
    "AuthorizationError",
    "ConflictError",
    "TestNotOfferedError",
]
