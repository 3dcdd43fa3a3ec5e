# slots.py
"""Slot counting over the bookings table.

All timestamps are compared in server-local naive time. Aware datetimes are
converted on the way in so that a booking is always counted against the local
calendar day it falls on.
"""
from datetime import date, datetime, time
from typing import Optional, Tuple, Union

import sqlalchemy

from hcs_booking.data_models import CANCELED
from hcs_booking.database import database
from hcs_booking.exceptions import ValidationError
from hcs_booking.models import bookings

END_OF_DAY = time(23, 59, 59, 999000)


def to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def parse_datetime(value: Union[str, datetime], field: str = "scheduled_at") -> datetime:
    """Parse an ISO-8601 string (or pass a datetime through) into local naive time."""
    if isinstance(value, datetime):
        return to_local_naive(value)
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field} is required", {"field": field})
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError("Invalid date format provided", {"field": field, "value": value})
    return to_local_naive(parsed)


def parse_day(value: Union[str, date, datetime], field: str = "date") -> date:
    if isinstance(value, datetime):
        return to_local_naive(value).date()
    if isinstance(value, date):
        return value
    return parse_datetime(value, field).date()


def day_bounds(day: Union[date, datetime]) -> Tuple[datetime, datetime]:
    """Closed interval [00:00:00.000, 23:59:59.999] of the calendar day."""
    if isinstance(day, datetime):
        day = to_local_naive(day).date()
    return datetime.combine(day, time.min), datetime.combine(day, END_OF_DAY)


async def count_occupied(
    center_id: int,
    day: Union[date, datetime],
    exclude_canceled: bool = True,
    exclude_booking_id: Optional[int] = None,
) -> int:
    """Count bookings at ``center_id`` scheduled on ``day``, across all tests."""
    start, end = day_bounds(day)
    conditions = [
        bookings.c.center_id == center_id,
        bookings.c.scheduled_at >= start,
        bookings.c.scheduled_at <= end,
    ]
    if exclude_canceled:
        conditions.append(bookings.c.status != CANCELED)
    if exclude_booking_id is not None:
        conditions.append(bookings.c.id != exclude_booking_id)

    query = sqlalchemy.select(sqlalchemy.func.count()).select_from(bookings).where(*conditions)
    return await database.fetch_val(query) or 0
