# capacity.py
from typing import Optional

import sqlalchemy

from hcs_booking.config import DEFAULT_SLOTS_PER_DAY, MAX_SLOTS_PER_DAY
from hcs_booking.database import database
from hcs_booking.exceptions import NotFoundError, ValidationError
from hcs_booking.logging_config import get_logger
from hcs_booking.models import healthcare_centers, test_slots, tests

logger = get_logger(__name__)


def validate_slots(value, field: str = "slots") -> int:
    """Slot counts are whole numbers in [0, MAX_SLOTS_PER_DAY]; nothing is clamped."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer", {"field": field, "value": value})
    if value < 0:
        raise ValidationError("Available slots cannot be negative", {"field": field, "value": value})
    if value > MAX_SLOTS_PER_DAY:
        raise ValidationError(
            f"Available slots cannot exceed {MAX_SLOTS_PER_DAY} per day",
            {"field": field, "value": value, "max": MAX_SLOTS_PER_DAY},
        )
    return value


async def _get_center(center_id: int):
    center = await database.fetch_one(healthcare_centers.select().where(healthcare_centers.c.id == center_id))
    if center is None:
        raise NotFoundError("Healthcare center", center_id)
    return center


async def capacity_for(center_id: int, test_id: Optional[int] = None) -> int:
    """
    Daily slot limit for a center, optionally for one test.

    A per-test override wins; otherwise the center default applies. Whether the
    test is actually assigned to the center is not checked here.
    """
    center = await _get_center(center_id)
    if test_id is not None:
        override = await database.fetch_val(
            sqlalchemy.select(test_slots.c.slots_per_day).where(
                test_slots.c.center_id == center_id,
                test_slots.c.test_id == test_id,
            )
        )
        if override is not None:
            return override
    default = center["available_slots_per_day"]
    return DEFAULT_SLOTS_PER_DAY if default is None else default


async def get_test_slots(center_id: int) -> list:
    rows = await database.fetch_all(
        test_slots.select().where(test_slots.c.center_id == center_id).order_by(test_slots.c.test_id)
    )
    return [{"test_id": row["test_id"], "slots_per_day": row["slots_per_day"]} for row in rows]


async def set_capacity(center_id: int, test_id: int, slots) -> int:
    """Upsert the per-test override for ``center_id``."""
    slots = validate_slots(slots)
    await _get_center(center_id)

    async with database.transaction():
        existing = await database.fetch_one(
            test_slots.select().where(
                test_slots.c.center_id == center_id,
                test_slots.c.test_id == test_id,
            )
        )
        if existing:
            query = test_slots.update().where(test_slots.c.id == existing["id"]).values(slots_per_day=slots)
        else:
            query = test_slots.insert().values(center_id=center_id, test_id=test_id, slots_per_day=slots)
        await database.execute(query)

    logger.info("capacity_set", center_id=center_id, test_id=test_id, slots=slots)
    return slots


async def initialize_test_slots() -> int:
    """Write an override for every (center, test) pair from the center's current default.

    Returns the number of overrides written.
    """
    centers = await database.fetch_all(healthcare_centers.select())
    test_ids = [row["id"] for row in await database.fetch_all(sqlalchemy.select(tests.c.id))]

    written = 0
    for center in centers:
        slots = center["available_slots_per_day"]
        if slots is None:
            slots = DEFAULT_SLOTS_PER_DAY
        for test_id in test_ids:
            await set_capacity(center["id"], test_id, slots)
            written += 1
        logger.info("test_slots_initialized", center_id=center["id"], entries=len(test_ids))
    return written
