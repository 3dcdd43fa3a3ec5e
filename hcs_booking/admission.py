# admission.py
"""Admission control for daily center capacity.

The count-then-write sequence is only safe when it runs inside
``admission_scope``: the scope holds an exclusive lock for the
(center, calendar day) key and a database transaction, so two requests for the
same key can never both observe free capacity and both commit.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Dict, Hashable, Optional, Union

import sqlalchemy

from hcs_booking.capacity import capacity_for
from hcs_booking.data_models import APPROVED, AdmissionDecision, Availability
from hcs_booking.database import database
from hcs_booking.exceptions import CapacityExceededError, NotFoundError, ValidationError
from hcs_booking.logging_config import get_logger
from hcs_booking.models import healthcare_centers, test_pricing, tests
from hcs_booking.slots import count_occupied, parse_datetime, parse_day, to_local_naive

logger = get_logger(__name__)

REASON_IN_PAST = "in_past"
REASON_FULL = "full"


class KeyedLocks:
    """Exclusive regions keyed by any hashable tuple, e.g. (center_id, day).

    Locks are created on first use and dropped once nobody holds or waits on
    them, so the registry only ever contains keys that are in flight.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, *key):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


admission_locks = KeyedLocks()


@asynccontextmanager
async def admission_scope(center_id: int, day: Union[date, datetime]):
    """Serialize admission decisions and their writes for one center and day."""
    day = parse_day(day)
    async with admission_locks.hold(center_id, day):
        async with database.transaction():
            yield


async def try_admit(
    center_id: int,
    test_id: Optional[int],
    scheduled_at: datetime,
    transition: bool = False,
    exclude_booking_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> AdmissionDecision:
    """
    Decide whether one more booking fits at ``center_id`` on the day of ``scheduled_at``.

    Creation requires ``scheduled_at`` strictly in the future. Transitions only
    reject days before today, so a same-day booking can still be confirmed.
    """
    scheduled_at = parse_datetime(scheduled_at)
    now = to_local_naive(now) if now else datetime.now()
    day = scheduled_at.date()

    occupied = await count_occupied(center_id, day, exclude_booking_id=exclude_booking_id)
    limit = await capacity_for(center_id, test_id)

    if transition:
        in_past = day < now.date()
    else:
        in_past = scheduled_at <= now

    if in_past:
        decision = AdmissionDecision(False, limit, occupied, day, REASON_IN_PAST)
    elif occupied < limit:
        decision = AdmissionDecision(True, limit, occupied, day)
    else:
        decision = AdmissionDecision(False, limit, occupied, day, REASON_FULL)

    logger.info(
        "admission_decision",
        center_id=center_id,
        test_id=test_id,
        transition=transition,
        **decision.as_dict(),
    )
    return decision


async def admit_or_raise(
    center_id: int,
    test_id: Optional[int],
    scheduled_at: datetime,
    transition: bool = False,
    exclude_booking_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> AdmissionDecision:
    decision = await try_admit(center_id, test_id, scheduled_at, transition, exclude_booking_id, now)
    if decision.admitted:
        return decision
    if decision.reason == REASON_IN_PAST:
        message = "Booking date is in the past" if transition else "Scheduled time must be in the future"
        raise ValidationError(message, {"date": decision.day.isoformat()})
    raise CapacityExceededError(decision.limit, decision.occupied, decision.day.isoformat())


def _check_not_past(day: date, today: Optional[date]) -> None:
    today = today or date.today()
    if day < today:
        raise ValidationError("Cannot check availability for past dates", {"date": day.isoformat()})


async def check_availability(
    center_id: int,
    day,
    test_id: Optional[int] = None,
    today: Optional[date] = None,
) -> Availability:
    if day is None or day == "":
        raise ValidationError("Date parameter is required", {"field": "date"})
    day = parse_day(day)
    _check_not_past(day, today)

    total = await capacity_for(center_id, test_id)
    booked = await count_occupied(center_id, day)
    return Availability(date=day, total=total, booked=booked, available=max(0, total - booked))


async def check_all_availability(day, test_id: Optional[int] = None, today: Optional[date] = None) -> Availability:
    """Sum availability over every center; with a test, only centers approved to offer it."""
    if day is None or day == "":
        raise ValidationError("Date parameter is required", {"field": "date"})
    day = parse_day(day)
    _check_not_past(day, today)

    offering = None
    if test_id is not None:
        test = await database.fetch_one(tests.select().where(tests.c.id == test_id))
        if test is None:
            raise NotFoundError("Test", test_id)
        rows = await database.fetch_all(
            sqlalchemy.select(test_pricing.c.center_id).where(
                test_pricing.c.test_id == test_id,
                test_pricing.c.status == APPROVED,
            )
        )
        offering = {row["center_id"] for row in rows}

    total = booked = 0
    for center in await database.fetch_all(healthcare_centers.select()):
        if offering is not None and center["id"] not in offering:
            continue
        total += await capacity_for(center["id"], test_id)
        booked += await count_occupied(center["id"], day)

    return Availability(date=day, total=total, booked=booked, available=max(0, total - booked))
