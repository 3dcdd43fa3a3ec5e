# assignments.py
"""Test to center assignment: direct assignment, removal, and the request/review workflow."""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import sqlalchemy

from hcs_booking.admission import KeyedLocks
from hcs_booking.capacity import set_capacity, validate_slots
from hcs_booking.centers import get_center
from hcs_booking.config import DEFAULT_PAGE_SIZE
from hcs_booking.data_models import Actor, APPROVED, PENDING, REVIEW_DECISIONS, REVIEW_STATUSES
from hcs_booking.database import database, page_window, paginate, row_to_dict
from hcs_booking.exceptions import ConflictError, NotFoundError, ValidationError
from hcs_booking.logging_config import get_logger
from hcs_booking.models import assignment_requests, healthcare_centers, test_pricing, tests, users
from hcs_booking.policy import authorize

logger = get_logger(__name__)

assignment_locks = KeyedLocks()


@asynccontextmanager
async def assignment_scope(test_id: int, center_id: int):
    """Serialize request creation and review for one (test, center) pair."""
    async with assignment_locks.hold(test_id, center_id):
        async with database.transaction():
            yield


_requests_query = sqlalchemy.select(
    assignment_requests,
    tests.c.title.label("test_title"),
    healthcare_centers.c.name.label("center_name"),
    users.c.name.label("requested_by_name"),
).select_from(
    assignment_requests.outerjoin(tests, assignment_requests.c.test_id == tests.c.id)
    .outerjoin(healthcare_centers, assignment_requests.c.center_id == healthcare_centers.c.id)
    .outerjoin(users, assignment_requests.c.requested_by == users.c.id)
)


def _validate_price(price, field: str = "price") -> float:
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        raise ValidationError(f"{field} is required and must be a number", {"field": field})
    if price < 0:
        raise ValidationError("Price cannot be negative", {"field": field, "value": price})
    return float(price)


async def _get_test(test_id: int):
    test = await database.fetch_one(tests.select().where(tests.c.id == test_id))
    if test is None:
        raise NotFoundError("Test", test_id)
    return test


async def pricing_entries(test_id: int) -> list:
    rows = await database.fetch_all(
        sqlalchemy.select(
            test_pricing.c.center_id,
            test_pricing.c.price,
            test_pricing.c.status,
            healthcare_centers.c.name.label("center_name"),
        )
        .select_from(test_pricing.outerjoin(healthcare_centers, test_pricing.c.center_id == healthcare_centers.c.id))
        .where(test_pricing.c.test_id == test_id)
        .order_by(test_pricing.c.center_id)
    )
    return [row_to_dict(row) for row in rows]


async def get_test_with_pricing(test_id: int) -> dict:
    test = row_to_dict(await _get_test(test_id))
    test["pricing"] = await pricing_entries(test_id)
    return test


async def upsert_pricing(test_id: int, center_id: int, price: float, status: str = APPROVED) -> None:
    """Replace the (test, center) pricing entry if present, append it otherwise."""
    existing = await database.fetch_one(
        test_pricing.select().where(
            test_pricing.c.test_id == test_id,
            test_pricing.c.center_id == center_id,
        )
    )
    if existing:
        query = test_pricing.update().where(test_pricing.c.id == existing["id"]).values(price=price, status=status)
    else:
        query = test_pricing.insert().values(test_id=test_id, center_id=center_id, price=price, status=status)
    await database.execute(query)
    await database.execute(tests.update().where(tests.c.id == test_id).values(updated_at=datetime.now()))


async def assign_test_to_center(
    actor: Actor,
    test_id: int,
    center_id: int,
    price,
    slots: Optional[int] = None,
) -> dict:
    """Approve a test at a center directly, bypassing the request workflow."""
    authorize(actor, "assignment.assign", {"center_id": center_id})
    price = _validate_price(price)
    if slots is not None:
        validate_slots(slots)
    await get_center(center_id)
    await _get_test(test_id)

    async with database.transaction():
        await upsert_pricing(test_id, center_id, price, APPROVED)
        if slots is not None:
            await set_capacity(center_id, test_id, slots)

    logger.info("test_assigned", test_id=test_id, center_id=center_id, price=price, slots=slots, by=actor.id)

    return {"test": await get_test_with_pricing(test_id), "center": await get_center(center_id)}


async def remove_test_from_center(actor: Actor, test_id: int, center_id: int) -> dict:
    """Drop the pricing entry. Assignment request history is left as it is."""
    authorize(actor, "assignment.remove", {"center_id": center_id})
    await _get_test(test_id)

    await database.execute(
        test_pricing.delete().where(
            test_pricing.c.test_id == test_id,
            test_pricing.c.center_id == center_id,
        )
    )
    logger.info("test_unassigned", test_id=test_id, center_id=center_id, by=actor.id)
    return await get_test_with_pricing(test_id)


async def _fetch_request(request_id: int) -> dict:
    row = await database.fetch_one(_requests_query.where(assignment_requests.c.id == request_id))
    if row is None:
        raise NotFoundError("Assignment request", request_id)
    return row_to_dict(row)


async def request_assignment(
    actor: Actor,
    test_id: int,
    center_id: Optional[int],
    price,
    notes: Optional[str] = None,
) -> dict:
    """A center administrator proposes offering ``test_id`` at ``price``."""
    if center_id is None:
        center_id = actor.center_id
    authorize(actor, "assignment.request", {"center_id": center_id})
    if center_id is None:
        raise NotFoundError("Healthcare center", None)

    price = _validate_price(price)
    if notes is not None and len(notes) > 500:
        raise ValidationError("Notes cannot be more than 500 characters", {"field": "notes"})
    await get_center(center_id)
    await _get_test(test_id)

    approved_query = test_pricing.select().where(
        test_pricing.c.test_id == test_id,
        test_pricing.c.center_id == center_id,
        test_pricing.c.status == APPROVED,
    )
    pending_query = assignment_requests.select().where(
        assignment_requests.c.test_id == test_id,
        assignment_requests.c.center_id == center_id,
        assignment_requests.c.status == PENDING,
    )

    async with assignment_scope(test_id, center_id):
        if await database.fetch_one(approved_query):
            raise ConflictError("Test is already assigned to this HCS", {"test_id": test_id, "center_id": center_id})

        pending = await database.fetch_one(pending_query)
        if pending:
            raise ConflictError(
                "There is already a pending request for this test from your HCS",
                {"request_id": pending["id"]},
            )

        stamp = datetime.now()
        request_id = await database.execute(
            assignment_requests.insert().values(
                test_id=test_id,
                center_id=center_id,
                requested_price=price,
                status=PENDING,
                requested_by=actor.id,
                notes=notes,
                created_at=stamp,
                updated_at=stamp,
            )
        )

    logger.info("assignment_requested", request_id=request_id, test_id=test_id, center_id=center_id, price=price)
    return await _fetch_request(request_id)


async def review_assignment(
    actor: Actor,
    request_id: int,
    decision: str,
    notes: Optional[str] = None,
) -> dict:
    """
    Approve or reject a pending request.

    A request is reviewed exactly once. Approval writes the requested price into
    the test's pricing entry for the center in the same transaction.
    """
    authorize(actor, "assignment.review")
    if decision not in REVIEW_DECISIONS:
        raise ValidationError(
            f"Invalid review decision: {decision}",
            {"field": "status", "allowed": list(REVIEW_DECISIONS)},
        )

    request = await database.fetch_one(assignment_requests.select().where(assignment_requests.c.id == request_id))
    if request is None:
        raise NotFoundError("Assignment request", request_id)
    if decision == APPROVED:
        await _get_test(request["test_id"])

    values = {"status": decision, "reviewed_by": actor.id, "updated_at": datetime.now()}
    if notes:
        values["notes"] = notes

    async with assignment_scope(request["test_id"], request["center_id"]):
        # Status is re-read under the lock; a concurrent review may have won
        status = await database.fetch_val(
            sqlalchemy.select(assignment_requests.c.status).where(assignment_requests.c.id == request_id)
        )
        if status != PENDING:
            raise ConflictError(
                f"Assignment request has already been {status}",
                {"request_id": request_id, "status": status},
            )
        await database.execute(
            assignment_requests.update()
            .where(assignment_requests.c.id == request_id, assignment_requests.c.status == PENDING)
            .values(**values)
        )
        if decision == APPROVED:
            await upsert_pricing(request["test_id"], request["center_id"], request["requested_price"], APPROVED)

    logger.info(
        "assignment_reviewed",
        request_id=request_id,
        decision=decision,
        test_id=request["test_id"],
        center_id=request["center_id"],
        reviewer=actor.id,
    )
    return await _fetch_request(request_id)


async def list_assignment_requests(
    actor: Actor,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    authorize(actor, "assignment.list")
    page, limit, offset = page_window(page, limit)

    query = _requests_query
    count_query = sqlalchemy.select(sqlalchemy.func.count()).select_from(assignment_requests)
    if status:
        if status not in REVIEW_STATUSES:
            raise ValidationError(f"Invalid status: {status}", {"allowed": list(REVIEW_STATUSES)})
        query = query.where(assignment_requests.c.status == status)
        count_query = count_query.where(assignment_requests.c.status == status)

    rows = await database.fetch_all(
        query.order_by(assignment_requests.c.created_at.desc(), assignment_requests.c.id.desc())
        .offset(offset)
        .limit(limit)
    )
    total = await database.fetch_val(count_query) or 0
    data = [row_to_dict(row) for row in rows]
    return {"count": len(data), "data": data, "pagination": paginate(total, page, limit)}
