# models.py
import sqlalchemy
from hcs_booking.database import metadata
from hcs_booking.config import DEFAULT_SLOTS_PER_DAY

#'users' table
users = sqlalchemy.Table(
    "users",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("name", sqlalchemy.String(50), nullable=False),
    sqlalchemy.Column("email", sqlalchemy.String, unique=True, index=True, nullable=False),
    sqlalchemy.Column("hashed_password", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("role", sqlalchemy.String, default="Customer", nullable=False),
    sqlalchemy.Column("phone", sqlalchemy.String, nullable=True),
    sqlalchemy.Column("address", sqlalchemy.String(200), nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime),
)

#'healthcare_centers' table, the center default capacity lives here
healthcare_centers = sqlalchemy.Table(
    "healthcare_centers",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("name", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("address", sqlalchemy.String(200), nullable=False),
    sqlalchemy.Column("contact", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("email", sqlalchemy.String, nullable=False),
    sqlalchemy.Column("admin_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("users.id"), index=True),
    sqlalchemy.Column("available_slots_per_day", sqlalchemy.Integer, default=DEFAULT_SLOTS_PER_DAY),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime),
)

# Per-test slot overrides, one row per (center, test)
test_slots = sqlalchemy.Table(
    "test_slots",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("center_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("healthcare_centers.id"), nullable=False),
    sqlalchemy.Column("test_id", sqlalchemy.Integer, nullable=False),
    sqlalchemy.Column("slots_per_day", sqlalchemy.Integer, nullable=False, default=DEFAULT_SLOTS_PER_DAY),
    sqlalchemy.UniqueConstraint("center_id", "test_id", name="uq_test_slots_center_test"),
)

tests = sqlalchemy.Table(
    "tests",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("title", sqlalchemy.String(100), nullable=False),
    sqlalchemy.Column("description", sqlalchemy.String(500), nullable=False),
    sqlalchemy.Column("type", sqlalchemy.String, nullable=False, default="Blood Test"),
    # Base price, used when a center has no approved price of its own
    sqlalchemy.Column("price", sqlalchemy.Float, nullable=False),
    sqlalchemy.Column("duration", sqlalchemy.Integer, nullable=False),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime),
)

# Per-center pricing entries; only 'approved' rows make a test bookable
test_pricing = sqlalchemy.Table(
    "test_pricing",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("test_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("tests.id"), nullable=False, index=True),
    sqlalchemy.Column("center_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("healthcare_centers.id"), nullable=False, index=True),
    sqlalchemy.Column("price", sqlalchemy.Float, nullable=False),
    sqlalchemy.Column("status", sqlalchemy.String, nullable=False, default="approved"),
    sqlalchemy.UniqueConstraint("test_id", "center_id", name="uq_test_pricing_test_center"),
)

assignment_requests = sqlalchemy.Table(
    "assignment_requests",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("test_id", sqlalchemy.Integer, nullable=False),
    sqlalchemy.Column("center_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("healthcare_centers.id"), nullable=False),
    sqlalchemy.Column("requested_price", sqlalchemy.Float, nullable=False),
    sqlalchemy.Column("status", sqlalchemy.String, nullable=False, default="pending"),
    sqlalchemy.Column("requested_by", sqlalchemy.Integer, sqlalchemy.ForeignKey("users.id"), nullable=False),
    sqlalchemy.Column("reviewed_by", sqlalchemy.Integer, sqlalchemy.ForeignKey("users.id"), nullable=True),
    sqlalchemy.Column("notes", sqlalchemy.String(500), nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime),
)

bookings = sqlalchemy.Table(
    "bookings",
    metadata,
    sqlalchemy.Column("id", sqlalchemy.Integer, primary_key=True),
    sqlalchemy.Column("user_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("users.id"), nullable=False),
    # No foreign key: bookings and reviewed requests outlive a deleted test
    sqlalchemy.Column("test_id", sqlalchemy.Integer, nullable=False),
    sqlalchemy.Column("center_id", sqlalchemy.Integer, sqlalchemy.ForeignKey("healthcare_centers.id"), nullable=False),
    sqlalchemy.Column("status", sqlalchemy.String, nullable=False, default="pending"),
    # Server-local naive time
    sqlalchemy.Column("scheduled_at", sqlalchemy.DateTime, nullable=False),
    # Written once on insert, never recomputed
    sqlalchemy.Column("price_at_booking", sqlalchemy.Float, nullable=False),
    sqlalchemy.Column("notes", sqlalchemy.String(500), nullable=True),
    sqlalchemy.Column("created_at", sqlalchemy.DateTime),
    sqlalchemy.Column("updated_at", sqlalchemy.DateTime),
    sqlalchemy.Index("ix_bookings_center_scheduled", "center_id", "scheduled_at"),
)
