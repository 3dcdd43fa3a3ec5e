# centers.py
"""Healthcare center catalog: CRUD, cascade delete and per-test slot overrides."""
from datetime import datetime
from typing import Optional

import sqlalchemy

from hcs_booking.capacity import get_test_slots, set_capacity, validate_slots
from hcs_booking.config import DEFAULT_PAGE_SIZE, DEFAULT_SLOTS_PER_DAY
from hcs_booking.data_models import Actor, HCS_ADMIN
from hcs_booking.database import database, page_window, paginate, row_to_dict
from hcs_booking.exceptions import NotFoundError, ValidationError
from hcs_booking.logging_config import get_logger
from hcs_booking.models import assignment_requests, bookings, healthcare_centers, test_pricing, test_slots, users
from hcs_booking.policy import authorize

logger = get_logger(__name__)

EDITABLE_FIELDS = ("name", "address", "contact", "email", "admin_id", "available_slots_per_day")
REQUIRED_FIELDS = ("name", "address", "contact", "email")

_center_query = sqlalchemy.select(
    healthcare_centers,
    users.c.name.label("admin_name"),
    users.c.email.label("admin_email"),
).select_from(healthcare_centers.outerjoin(users, healthcare_centers.c.admin_id == users.c.id))


async def _with_slots(row) -> dict:
    center = row_to_dict(row)
    center["test_slots"] = await get_test_slots(center["id"])
    return center


async def get_center(center_id: int) -> dict:
    row = await database.fetch_one(_center_query.where(healthcare_centers.c.id == center_id))
    if row is None:
        raise NotFoundError("Healthcare center", center_id)
    return await _with_slots(row)


async def list_centers(page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    page, limit, offset = page_window(page, limit)
    rows = await database.fetch_all(
        _center_query.order_by(healthcare_centers.c.created_at.desc(), healthcare_centers.c.id.desc())
        .offset(offset)
        .limit(limit)
    )
    total = await database.fetch_val(sqlalchemy.select(sqlalchemy.func.count()).select_from(healthcare_centers)) or 0
    data = [await _with_slots(row) for row in rows]
    return {"count": len(data), "data": data, "pagination": paginate(total, page, limit)}


async def get_my_center(actor: Actor) -> dict:
    authorize(actor, "center.mine")
    row = await database.fetch_one(_center_query.where(healthcare_centers.c.admin_id == actor.id))
    if row is None:
        raise NotFoundError("Healthcare center", None)
    return await _with_slots(row)


async def _check_admin(admin_id: Optional[int]) -> None:
    if admin_id is None:
        return
    admin = await database.fetch_one(users.select().where(users.c.id == admin_id))
    if admin is None:
        raise NotFoundError("User", admin_id)
    if admin["role"] != HCS_ADMIN:
        raise ValidationError("Center administrator must have the HCS Admin role", {"field": "admin_id"})


async def create_center(actor: Actor, data: dict) -> dict:
    authorize(actor, "center.create")
    missing = [field for field in REQUIRED_FIELDS if not data.get(field)]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}", {"fields": missing})

    values = {field: data[field] for field in EDITABLE_FIELDS if data.get(field) is not None}
    slots = data.get("available_slots_per_day")
    values["available_slots_per_day"] = validate_slots(
        DEFAULT_SLOTS_PER_DAY if slots is None else slots, "available_slots_per_day"
    )
    await _check_admin(values.get("admin_id"))

    stamp = datetime.now()
    center_id = await database.execute(
        healthcare_centers.insert().values(**values, created_at=stamp, updated_at=stamp)
    )
    logger.info("center_created", center_id=center_id, by=actor.id)
    return await get_center(center_id)


async def update_center(actor: Actor, center_id: int, data: dict) -> dict:
    await get_center(center_id)
    authorize(actor, "center.update", {"center_id": center_id})

    values = {field: data[field] for field in EDITABLE_FIELDS if field in data and data[field] is not None}
    # Only a superadmin may hand a center to another administrator
    if "admin_id" in values and not actor.is_superadmin:
        raise ValidationError("Only a superadmin can change the center administrator", {"field": "admin_id"})
    if "available_slots_per_day" in values:
        validate_slots(values["available_slots_per_day"], "available_slots_per_day")
    await _check_admin(values.get("admin_id"))

    if values:
        values["updated_at"] = datetime.now()
        await database.execute(
            healthcare_centers.update().where(healthcare_centers.c.id == center_id).values(**values)
        )
        logger.info("center_updated", center_id=center_id, fields=sorted(values), by=actor.id)
    return await get_center(center_id)


async def update_test_slots(actor: Actor, center_id: int, entries: list) -> dict:
    """Apply a batch of ``{"test_id", "slots_per_day"}`` overrides to a center."""
    await get_center(center_id)
    authorize(actor, "capacity.set", {"center_id": center_id})
    for entry in entries:
        if entry.get("test_id") is None:
            raise ValidationError("test_id is required", {"field": "test_id"})
        validate_slots(entry.get("slots_per_day"), "slots_per_day")

    async with database.transaction():
        for entry in entries:
            await set_capacity(center_id, entry["test_id"], entry["slots_per_day"])
    return await get_center(center_id)


async def delete_center(actor: Actor, center_id: int) -> None:
    """Delete a center along with its pricing entries, requests, bookings and overrides."""
    authorize(actor, "center.delete")
    await get_center(center_id)

    async with database.transaction():
        await database.execute(test_pricing.delete().where(test_pricing.c.center_id == center_id))
        await database.execute(assignment_requests.delete().where(assignment_requests.c.center_id == center_id))
        await database.execute(bookings.delete().where(bookings.c.center_id == center_id))
        await database.execute(test_slots.delete().where(test_slots.c.center_id == center_id))
        await database.execute(healthcare_centers.delete().where(healthcare_centers.c.id == center_id))

    logger.info("center_deleted", center_id=center_id, by=actor.id)
