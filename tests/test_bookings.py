import pytest
import sqlalchemy

from hcs_booking.bookings import (
    cancel_booking,
    create_booking,
    get_booking,
    list_bookings,
    snapshot_price,
    transition_booking,
    update_booking,
)
from hcs_booking.data_models import CANCELED, COMPLETED, CONFIRMED, PENDING
from hcs_booking.database import database
from hcs_booking.exceptions import (
    AuthorizationError,
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    TestNotOfferedError,
    ValidationError,
)
from hcs_booking.models import bookings, test_pricing, tests, users
from hcs_booking.slots import count_occupied

from conftest import at, insert_override, insert_pricing


async def book(world, actor=None, days=2, hour=10, test_id=None, center_id=None):
    return await create_booking(
        actor or world.customer,
        test_id or world.test_id,
        center_id or world.center_id,
        at(days=days, hour=hour),
    )


async def test_create_booking_snapshots_center_price(world):
    booking = await book(world)

    assert booking["status"] == PENDING
    assert booking["price_at_booking"] == 450.0
    assert booking["user_id"] == world.customer.id
    assert booking["center_name"] == "Central Lab"
    assert booking["test_title"] == "Lipid Panel"


async def test_snapshot_price_falls_back_to_base_price(world):
    await database.execute(test_pricing.delete())

    assert await snapshot_price(world.test_id, world.center_id) == 300.0


async def test_price_at_booking_survives_later_price_changes(world):
    booking = await book(world)

    await database.execute(test_pricing.update().values(price=999.0))
    await database.execute(tests.update().values(price=1.0))
    await transition_booking(booking["id"], world.center_admin, CONFIRMED)

    reloaded = await get_booking(booking["id"], world.customer)
    assert reloaded["price_at_booking"] == 450.0


async def test_scenario_a_third_booking_rejected(world):
    await book(world, hour=9)
    await book(world, actor=world.other_customer, hour=11)

    with pytest.raises(CapacityExceededError) as excinfo:
        await book(world, hour=14)

    assert excinfo.value.details["limit"] == 2
    assert excinfo.value.details["occupied"] == 2


async def test_scenario_b_override_is_per_test(world):
    center_id = world.other_center_id
    await insert_pricing(world.test_id, center_id, 400.0)
    await insert_pricing(world.unassigned_test_id, center_id, 900.0)
    await insert_override(center_id, world.test_id, 1)

    await book(world, center_id=center_id)
    with pytest.raises(CapacityExceededError):
        await book(world, center_id=center_id, hour=12)

    # the other test still sees the default of 5, across all bookings that day
    for hour in (11, 12, 13, 14):
        await book(world, center_id=center_id, test_id=world.unassigned_test_id, hour=hour)
    with pytest.raises(CapacityExceededError) as excinfo:
        await book(world, center_id=center_id, test_id=world.unassigned_test_id, hour=15)
    assert excinfo.value.details["limit"] == 5


async def test_scenario_c_cancel_frees_a_slot(world):
    first = await book(world, hour=9)
    await book(world, hour=11)

    canceled = await cancel_booking(first["id"], world.customer)
    assert canceled["status"] == CANCELED

    replacement = await book(world, hour=14)
    assert replacement["status"] == PENDING
    assert await count_occupied(world.center_id, at(days=2)) == 2


async def test_scenario_e_unapproved_test_is_not_offered(world):
    with pytest.raises(TestNotOfferedError) as excinfo:
        await book(world, test_id=world.unassigned_test_id)

    assert isinstance(excinfo.value, ValidationError)
    assert excinfo.value.message == "Test is not available at the selected healthcare center"


async def test_pending_pricing_entry_does_not_make_test_bookable(world):
    await insert_pricing(world.unassigned_test_id, world.center_id, 700.0, status=PENDING)

    with pytest.raises(TestNotOfferedError):
        await book(world, test_id=world.unassigned_test_id)


async def test_create_booking_validation(world):
    with pytest.raises(ValidationError, match="required"):
        await create_booking(world.customer, world.test_id, world.center_id, None)
    with pytest.raises(ValidationError, match="Invalid date format provided"):
        await create_booking(world.customer, world.test_id, world.center_id, "not-a-date")
    with pytest.raises(ValidationError, match="Scheduled time must be in the future"):
        await create_booking(world.customer, world.test_id, world.center_id, at(days=-1))
    with pytest.raises(NotFoundError):
        await create_booking(world.customer, 999, world.center_id, at())
    with pytest.raises(NotFoundError):
        await create_booking(world.customer, world.test_id, 999, at())


async def test_only_customers_create_bookings(world):
    with pytest.raises(AuthorizationError):
        await book(world, actor=world.center_admin)


async def test_phone_is_saved_on_the_profile(world):
    await create_booking(world.customer, world.test_id, world.center_id, at(), phone="555-0199")

    phone = await database.fetch_val(sqlalchemy.select(users.c.phone).where(users.c.id == world.customer.id))
    assert phone == "555-0199"


async def test_lifecycle_pending_confirmed_completed(world):
    booking = await book(world)

    confirmed = await transition_booking(booking["id"], world.center_admin, CONFIRMED)
    assert confirmed["status"] == CONFIRMED
    completed = await transition_booking(booking["id"], world.superadmin, COMPLETED)
    assert completed["status"] == COMPLETED


async def test_illegal_transitions_conflict(world):
    booking = await book(world)

    with pytest.raises(ConflictError, match="Cannot change booking status from pending to completed"):
        await transition_booking(booking["id"], world.center_admin, COMPLETED)

    await cancel_booking(booking["id"], world.customer)
    with pytest.raises(ConflictError):
        await transition_booking(booking["id"], world.center_admin, CONFIRMED)


async def test_completed_booking_can_still_be_canceled(world):
    booking = await book(world)
    await transition_booking(booking["id"], world.center_admin, CONFIRMED)
    await transition_booking(booking["id"], world.center_admin, COMPLETED)

    canceled = await cancel_booking(booking["id"], world.superadmin)
    assert canceled["status"] == CANCELED


async def test_confirm_rejected_when_day_is_exactly_full(world):
    first = await book(world, hour=9)
    await book(world, hour=11)

    with pytest.raises(CapacityExceededError) as excinfo:
        await transition_booking(first["id"], world.center_admin, CONFIRMED)

    assert excinfo.value.details["limit"] == 2
    assert excinfo.value.details["occupied"] == 2
    assert (await get_booking(first["id"], world.customer))["status"] == PENDING


async def test_confirm_counts_the_booking_itself(world):
    first = await book(world, hour=9)
    second = await book(world, hour=11)
    await cancel_booking(second["id"], world.customer)

    confirmed = await transition_booking(first["id"], world.center_admin, CONFIRMED)
    assert confirmed["status"] == CONFIRMED


async def test_confirm_rechecks_capacity_after_it_shrinks(world):
    first = await book(world, hour=9)
    await book(world, hour=11)
    await insert_override(world.center_id, world.test_id, 1)

    with pytest.raises(CapacityExceededError):
        await transition_booking(first["id"], world.center_admin, CONFIRMED)
    assert (await get_booking(first["id"], world.customer))["status"] == PENDING


async def test_confirm_of_past_booking_rejected(world):
    booking = await book(world)
    await database.execute(
        bookings.update().where(bookings.c.id == booking["id"]).values(scheduled_at=at(days=-2))
    )

    with pytest.raises(ValidationError, match="Booking date is in the past"):
        await transition_booking(booking["id"], world.center_admin, CONFIRMED)


async def test_transition_authorization(world):
    booking = await book(world)

    with pytest.raises(AuthorizationError):
        await transition_booking(booking["id"], world.customer, CONFIRMED)
    with pytest.raises(AuthorizationError):
        await transition_booking(booking["id"], world.other_admin, CONFIRMED)
    with pytest.raises(AuthorizationError):
        await cancel_booking(booking["id"], world.other_customer)


async def test_transition_rejects_unknown_status(world):
    booking = await book(world)

    with pytest.raises(ValidationError, match="Invalid booking status"):
        await transition_booking(booking["id"], world.center_admin, "archived")


async def test_transition_missing_booking(world):
    with pytest.raises(NotFoundError):
        await transition_booking(999, world.superadmin, CONFIRMED)


async def test_update_booking_fields(world):
    booking = await book(world)

    updated = await update_booking(booking["id"], world.center_admin, {"notes": "fasting required"})
    assert updated["notes"] == "fasting required"
    assert updated["price_at_booking"] == 450.0

    with pytest.raises(ValidationError, match="cannot be updated"):
        await update_booking(booking["id"], world.center_admin, {"price_at_booking": 1})


async def test_update_booking_status_goes_through_state_machine(world):
    booking = await book(world)

    with pytest.raises(ConflictError):
        await update_booking(booking["id"], world.superadmin, {"status": COMPLETED})
    updated = await update_booking(booking["id"], world.superadmin, {"status": CONFIRMED})
    assert updated["status"] == CONFIRMED


async def test_get_booking_visibility(world):
    booking = await book(world)

    assert (await get_booking(booking["id"], world.center_admin))["id"] == booking["id"]
    with pytest.raises(AuthorizationError):
        await get_booking(booking["id"], world.other_customer)
    with pytest.raises(AuthorizationError):
        await get_booking(booking["id"], world.other_admin)


async def test_list_bookings_is_scoped_by_role(world):
    await book(world, hour=9)
    await book(world, actor=world.other_customer, hour=11)

    mine = await list_bookings(world.customer)
    assert mine["count"] == 1
    assert mine["data"][0]["user_id"] == world.customer.id

    center = await list_bookings(world.center_admin)
    assert center["count"] == 2
    assert (await list_bookings(world.other_admin))["count"] == 0

    everything = await list_bookings(world.superadmin, page=1, limit=1)
    assert everything["count"] == 1
    assert everything["pagination"]["total"] == 2
    assert everything["pagination"]["has_next"] is True


async def test_list_bookings_filters_status(world):
    first = await book(world, hour=9)
    await book(world, hour=11)
    await cancel_booking(first["id"], world.customer)

    canceled = await list_bookings(world.superadmin, status=CANCELED)
    assert [b["id"] for b in canceled["data"]] == [first["id"]]

    with pytest.raises(ValidationError):
        await list_bookings(world.superadmin, status="archived")


async def test_reschedule_is_written_without_capacity_check(world):
    await book(world, days=3, hour=9)
    await book(world, days=3, hour=11)
    moving = await book(world, days=2)

    moved = await update_booking(moving["id"], world.center_admin, {"scheduled_at": at(days=3, hour=15).isoformat()})

    assert moved["scheduled_at"] == at(days=3, hour=15)
    assert moved["status"] == PENDING
    assert await count_occupied(world.center_id, at(days=3).date()) == 3


async def test_confirm_with_new_date_checks_the_new_day(world):
    await book(world, days=3, hour=9)
    await book(world, days=3, hour=11)
    moving = await book(world, days=2)

    with pytest.raises(CapacityExceededError):
        await update_booking(
            moving["id"],
            world.center_admin,
            {"status": CONFIRMED, "scheduled_at": at(days=3, hour=15).isoformat()},
        )

    unchanged = await get_booking(moving["id"], world.customer)
    assert unchanged["scheduled_at"] == at(days=2)
    assert unchanged["status"] == PENDING
