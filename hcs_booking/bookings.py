# bookings.py
"""Booking lifecycle: creation with price snapshot, status transitions, cancellation."""
from datetime import datetime
from typing import Optional

import sqlalchemy

from hcs_booking.admission import admission_scope, admit_or_raise
from hcs_booking.auth import update_phone
from hcs_booking.config import DEFAULT_PAGE_SIZE
from hcs_booking.data_models import (
    Actor,
    APPROVED,
    BOOKING_STATUSES,
    BOOKING_TRANSITIONS,
    CANCELED,
    COMPLETED,
    CONFIRMED,
    CUSTOMER,
    HCS_ADMIN,
    PENDING,
)
from hcs_booking.database import database, page_window, paginate, row_to_dict
from hcs_booking.exceptions import ConflictError, NotFoundError, TestNotOfferedError, ValidationError
from hcs_booking.logging_config import get_logger
from hcs_booking.models import bookings, healthcare_centers, test_pricing, tests, users
from hcs_booking.policy import authorize
from hcs_booking.slots import parse_datetime

logger = get_logger(__name__)

UPDATABLE_FIELDS = {"status", "scheduled_at", "notes"}
SORTABLE_FIELDS = {"created_at", "scheduled_at", "status", "price_at_booking"}

_details_query = sqlalchemy.select(
    bookings,
    users.c.name.label("user_name"),
    users.c.email.label("user_email"),
    users.c.phone.label("user_phone"),
    tests.c.title.label("test_title"),
    tests.c.type.label("test_type"),
    healthcare_centers.c.name.label("center_name"),
).select_from(
    bookings.outerjoin(users, bookings.c.user_id == users.c.id)
    .outerjoin(tests, bookings.c.test_id == tests.c.id)
    .outerjoin(healthcare_centers, bookings.c.center_id == healthcare_centers.c.id)
)


async def approved_pricing(test_id: int, center_id: int):
    query = test_pricing.select().where(
        test_pricing.c.test_id == test_id,
        test_pricing.c.center_id == center_id,
        test_pricing.c.status == APPROVED,
    )
    return await database.fetch_one(query)


async def snapshot_price(test_id: int, center_id: int) -> float:
    """Price for a new booking: the center's approved price, else the test base price."""
    test = await database.fetch_one(tests.select().where(tests.c.id == test_id))
    if test is None:
        raise NotFoundError("Test", test_id)
    pricing = await approved_pricing(test_id, center_id)
    return pricing["price"] if pricing else test["price"]


async def _get_booking(booking_id: int) -> dict:
    booking = await database.fetch_one(bookings.select().where(bookings.c.id == booking_id))
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    return row_to_dict(booking)


async def fetch_booking(booking_id: int) -> dict:
    row = await database.fetch_one(_details_query.where(bookings.c.id == booking_id))
    if row is None:
        raise NotFoundError("Booking", booking_id)
    return row_to_dict(row)


async def create_booking(
    actor: Actor,
    test_id: int,
    center_id: int,
    scheduled_at,
    phone: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    authorize(actor, "booking.create")

    if not test_id or not center_id or not scheduled_at:
        raise ValidationError("Test, healthcare center, and scheduled date are required")

    test = await database.fetch_one(tests.select().where(tests.c.id == test_id))
    if test is None:
        raise NotFoundError("Test", test_id)
    center = await database.fetch_one(healthcare_centers.select().where(healthcare_centers.c.id == center_id))
    if center is None:
        raise NotFoundError("Healthcare center", center_id)

    if await approved_pricing(test_id, center_id) is None:
        raise TestNotOfferedError(test_id, center_id)

    when = parse_datetime(scheduled_at)
    now = now or datetime.now()
    if when <= now:
        raise ValidationError("Scheduled time must be in the future", {"scheduled_at": when.isoformat()})

    async with admission_scope(center_id, when):
        await admit_or_raise(center_id, test_id, when, now=now)
        price = await snapshot_price(test_id, center_id)

        if phone:
            await update_phone(actor.id, phone)

        stamp = datetime.now()
        booking_id = await database.execute(
            bookings.insert().values(
                user_id=actor.id,
                test_id=test_id,
                center_id=center_id,
                status=PENDING,
                scheduled_at=when,
                price_at_booking=price,
                created_at=stamp,
                updated_at=stamp,
            )
        )

    logger.info(
        "booking_created",
        booking_id=booking_id,
        user_id=actor.id,
        test_id=test_id,
        center_id=center_id,
        scheduled_at=when.isoformat(),
        price_at_booking=price,
    )
    return await fetch_booking(booking_id)


async def _write(booking_id: int, values: dict) -> None:
    values["updated_at"] = datetime.now()
    await database.execute(bookings.update().where(bookings.c.id == booking_id).values(**values))


async def _apply_changes(booking, values: dict, now: Optional[datetime] = None) -> dict:
    """Write ``values`` to a booking, enforcing the state machine and re-admitting on confirm.

    Other field changes, a new ``scheduled_at`` included, are written without a
    capacity check.
    """
    current = booking["status"]
    new_status = values.get("status", current)

    if new_status == CANCELED:
        if current == COMPLETED:
            logger.warning("completed_booking_canceled", booking_id=booking["id"])
    elif new_status != current and new_status not in BOOKING_TRANSITIONS[current]:
        raise ConflictError(
            f"Cannot change booking status from {current} to {new_status}",
            {"from": current, "to": new_status},
        )

    if new_status == CONFIRMED and current != CONFIRMED:
        # Counts the day as stored, this booking included
        scheduled_at = values.get("scheduled_at", booking["scheduled_at"])
        async with admission_scope(booking["center_id"], scheduled_at):
            await admit_or_raise(booking["center_id"], booking["test_id"], scheduled_at, transition=True, now=now)
            await _write(booking["id"], values)
    else:
        await _write(booking["id"], values)

    if new_status != current:
        logger.info("booking_status_changed", booking_id=booking["id"], previous=current, status=new_status)
    return await fetch_booking(booking["id"])


async def transition_booking(
    booking_id: int,
    actor: Actor,
    new_status: str,
    now: Optional[datetime] = None,
) -> dict:
    if new_status not in BOOKING_STATUSES:
        raise ValidationError(f"Invalid booking status: {new_status}", {"allowed": list(BOOKING_STATUSES)})
    if new_status == CANCELED:
        return await cancel_booking(booking_id, actor)

    booking = await _get_booking(booking_id)
    action = {CONFIRMED: "booking.confirm", COMPLETED: "booking.complete"}.get(new_status, "booking.update")
    authorize(actor, action, booking)
    return await _apply_changes(booking, {"status": new_status}, now)


async def cancel_booking(booking_id: int, actor: Actor) -> dict:
    """Cancel regardless of current status; the slot is freed because counts skip canceled rows."""
    booking = await _get_booking(booking_id)
    authorize(actor, "booking.cancel", booking)
    return await _apply_changes(booking, {"status": CANCELED})


async def update_booking(booking_id: int, actor: Actor, changes: dict, now: Optional[datetime] = None) -> dict:
    booking = await _get_booking(booking_id)
    authorize(actor, "booking.update", booking)

    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Field(s) cannot be updated: {', '.join(sorted(unknown))}",
            {"fields": sorted(unknown)},
        )

    values = {}
    if changes.get("scheduled_at") is not None:
        values["scheduled_at"] = parse_datetime(changes["scheduled_at"])
    if "notes" in changes:
        values["notes"] = changes["notes"]
    if changes.get("status") is not None:
        if changes["status"] not in BOOKING_STATUSES:
            raise ValidationError(
                f"Invalid booking status: {changes['status']}",
                {"allowed": list(BOOKING_STATUSES)},
            )
        values["status"] = changes["status"]

    if not values:
        return await fetch_booking(booking_id)
    return await _apply_changes(booking, values, now)


async def get_booking(booking_id: int, actor: Actor) -> dict:
    booking = await fetch_booking(booking_id)
    authorize(actor, "booking.view", booking)
    return booking


async def list_bookings(
    actor: Actor,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = "created_at",
    order: str = "desc",
) -> dict:
    """Role-scoped booking listing with pagination metadata."""
    authorize(actor, "booking.list")
    page, limit, offset = page_window(page, limit)

    conditions = []
    if actor.role == CUSTOMER:
        conditions.append(bookings.c.user_id == actor.id)
    elif actor.role == HCS_ADMIN:
        if actor.center_id is None:
            return {"count": 0, "data": [], "pagination": paginate(0, page, limit)}
        conditions.append(bookings.c.center_id == actor.center_id)

    if status:
        if status not in BOOKING_STATUSES:
            raise ValidationError(f"Invalid booking status: {status}", {"allowed": list(BOOKING_STATUSES)})
        conditions.append(bookings.c.status == status)

    if sort_by not in SORTABLE_FIELDS:
        sort_by = "created_at"
    column = bookings.c[sort_by]
    ordering = column.asc() if order == "asc" else column.desc()

    query = _details_query
    count_query = sqlalchemy.select(sqlalchemy.func.count()).select_from(bookings)
    if conditions:
        query = query.where(*conditions)
        count_query = count_query.where(*conditions)
    query = query.order_by(ordering, bookings.c.id).offset(offset).limit(limit)

    rows = await database.fetch_all(query)
    total = await database.fetch_val(count_query) or 0
    data = [row_to_dict(row) for row in rows]
    return {"count": len(data), "data": data, "pagination": paginate(total, page, limit)}
