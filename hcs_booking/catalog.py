# catalog.py
"""Diagnostic test catalog."""
from datetime import datetime
from typing import Optional

import sqlalchemy

from hcs_booking.assignments import get_test_with_pricing, pricing_entries
from hcs_booking.config import DEFAULT_PAGE_SIZE
from hcs_booking.data_models import Actor, APPROVED, PENDING, TEST_TYPES
from hcs_booking.database import database, page_window, paginate, row_to_dict
from hcs_booking.exceptions import NotFoundError, ValidationError
from hcs_booking.logging_config import get_logger
from hcs_booking.models import assignment_requests, test_pricing, tests
from hcs_booking.policy import authorize

logger = get_logger(__name__)

EDITABLE_FIELDS = ("title", "description", "type", "price", "duration")
SORTABLE_FIELDS = {"created_at", "title", "price", "duration", "type"}


def _validate(values: dict, partial: bool = False) -> dict:
    if not partial:
        missing = [field for field in EDITABLE_FIELDS if values.get(field) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}", {"fields": missing})

    if "title" in values and len(values["title"]) > 100:
        raise ValidationError("Title cannot be more than 100 characters", {"field": "title"})
    if "description" in values and len(values["description"]) > 500:
        raise ValidationError("Description cannot be more than 500 characters", {"field": "description"})
    if "type" in values and values["type"] not in TEST_TYPES:
        raise ValidationError(f"Invalid test type: {values['type']}", {"field": "type", "allowed": list(TEST_TYPES)})
    if "price" in values and values["price"] < 0:
        raise ValidationError("Price cannot be negative", {"field": "price"})
    if "duration" in values and values["duration"] < 1:
        raise ValidationError("Duration must be at least 1 minute", {"field": "duration"})
    return values


async def get_test(test_id: int) -> dict:
    return await get_test_with_pricing(test_id)


async def create_test(actor: Actor, data: dict) -> dict:
    authorize(actor, "test.create")
    values = _validate({field: data.get(field) for field in EDITABLE_FIELDS})
    stamp = datetime.now()
    test_id = await database.execute(tests.insert().values(**values, created_at=stamp, updated_at=stamp))
    logger.info("test_created", test_id=test_id, by=actor.id)
    return await get_test(test_id)


async def update_test(actor: Actor, test_id: int, data: dict) -> dict:
    authorize(actor, "test.update")
    await get_test(test_id)
    values = _validate({f: data[f] for f in EDITABLE_FIELDS if data.get(f) is not None}, partial=True)
    if values:
        values["updated_at"] = datetime.now()
        await database.execute(tests.update().where(tests.c.id == test_id).values(**values))
        logger.info("test_updated", test_id=test_id, fields=sorted(values), by=actor.id)
    return await get_test(test_id)


async def delete_test(actor: Actor, test_id: int) -> None:
    """Remove a test with its pricing entries and pending requests; bookings keep their snapshot."""
    authorize(actor, "test.delete")
    await get_test(test_id)
    async with database.transaction():
        await database.execute(test_pricing.delete().where(test_pricing.c.test_id == test_id))
        await database.execute(
            assignment_requests.delete().where(
                assignment_requests.c.test_id == test_id,
                assignment_requests.c.status == PENDING,
            )
        )
        await database.execute(tests.delete().where(tests.c.id == test_id))
    logger.info("test_deleted", test_id=test_id, by=actor.id)


async def list_test_types() -> list:
    rows = await database.fetch_all(sqlalchemy.select(tests.c.type).distinct().order_by(tests.c.type))
    return [row["type"] for row in rows]


def _filters(type_: Optional[str], search: Optional[str]) -> list:
    conditions = []
    if type_:
        conditions.append(tests.c.type == type_)
    if search:
        pattern = f"%{search}%"
        conditions.append(sqlalchemy.or_(tests.c.title.ilike(pattern), tests.c.description.ilike(pattern)))
    return conditions


async def _page(conditions: list, page: int, limit: int, sort_by: str, order: str) -> dict:
    page, limit, offset = page_window(page, limit)
    if sort_by not in SORTABLE_FIELDS:
        sort_by = "created_at"
    column = tests.c[sort_by]
    ordering = column.asc() if order == "asc" else column.desc()

    query = tests.select()
    count_query = sqlalchemy.select(sqlalchemy.func.count()).select_from(tests)
    if conditions:
        query = query.where(*conditions)
        count_query = count_query.where(*conditions)

    rows = await database.fetch_all(query.order_by(ordering, tests.c.id).offset(offset).limit(limit))
    total = await database.fetch_val(count_query) or 0

    data = []
    for row in rows:
        test = row_to_dict(row)
        test["pricing"] = await pricing_entries(test["id"])
        data.append(test)
    return {"count": len(data), "data": data, "pagination": paginate(total, page, limit)}


async def list_tests(
    type_: Optional[str] = None,
    center_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = "created_at",
    order: str = "desc",
) -> dict:
    """Public test listing; ``center_id`` narrows to tests approved at that center."""
    conditions = _filters(type_, search)
    if center_id is not None:
        approved = sqlalchemy.select(test_pricing.c.test_id).where(
            test_pricing.c.center_id == center_id,
            test_pricing.c.status == APPROVED,
        )
        conditions.append(tests.c.id.in_(approved))
    return await _page(conditions, page, limit, sort_by, order)


async def unassigned_tests(
    actor: Actor,
    center_id: Optional[int] = None,
    type_: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    sort_by: str = "created_at",
    order: str = "desc",
) -> dict:
    """Tests without an approved pricing entry at the actor's center (or ``center_id``)."""
    authorize(actor, "test.not_assigned")
    if center_id is None:
        center_id = actor.center_id
    if center_id is None:
        raise NotFoundError("Healthcare center", None)

    conditions = _filters(type_, search)
    approved = sqlalchemy.select(test_pricing.c.test_id).where(
        test_pricing.c.center_id == center_id,
        test_pricing.c.status == APPROVED,
    )
    conditions.append(tests.c.id.not_in(approved))
    return await _page(conditions, page, limit, sort_by, order)
