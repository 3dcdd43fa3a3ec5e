# data_models.py
from dataclasses import dataclass, asdict
from datetime import date
from typing import Optional

# User roles
SUPERADMIN = "Superadmin"
HCS_ADMIN = "HCS Admin"
DOCTOR = "Doctor"
CUSTOMER = "Customer"
ROLES = (SUPERADMIN, HCS_ADMIN, DOCTOR, CUSTOMER)

# Booking statuses
PENDING = "pending"
CONFIRMED = "confirmed"
COMPLETED = "completed"
CANCELED = "canceled"
BOOKING_STATUSES = (PENDING, CONFIRMED, COMPLETED, CANCELED)

# Booking state machine; cancellation is handled separately and is unconditional
BOOKING_TRANSITIONS = {
    PENDING: {CONFIRMED, CANCELED},
    CONFIRMED: {COMPLETED, CANCELED},
    COMPLETED: set(),
    CANCELED: set(),
}

# Pricing entry / assignment request statuses
APPROVED = "approved"
REJECTED = "rejected"
REVIEW_STATUSES = (PENDING, APPROVED, REJECTED)
REVIEW_DECISIONS = (APPROVED, REJECTED)

TEST_TYPES = ("Blood Test", "X-Ray", "MRI", "CT Scan", "Ultrasound", "ECG", "Other")


@dataclass
class Actor:
    """The authenticated user performing an operation."""
    id: int
    role: str
    center_id: Optional[int] = None

    @property
    def is_superadmin(self) -> bool:
        return self.role == SUPERADMIN


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check for one center and day."""
    admitted: bool
    limit: int
    occupied: int
    day: date
    reason: Optional[str] = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["day"] = self.day.isoformat()
        return data


@dataclass
class Availability:
    """Capacity view for a center (or all centers) on one day."""
    date: date
    total: int
    booked: int
    available: int

    def as_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "total": self.total,
            "booked": self.booked,
            "available": self.available,
        }
