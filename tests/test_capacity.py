import pytest
import sqlalchemy

from hcs_booking.capacity import capacity_for, get_test_slots, initialize_test_slots, set_capacity, validate_slots
from hcs_booking.database import database, engine
from hcs_booking.exceptions import NotFoundError, ValidationError
from hcs_booking.maintenance import init_test_slots
from hcs_booking.models import healthcare_centers, test_slots, tests

from conftest import insert_center, insert_override


@pytest.mark.parametrize("value", [-1, 101, "5", 2.5, True])
def test_validate_slots_rejects_out_of_range_and_non_integers(value):
    with pytest.raises(ValidationError):
        validate_slots(value)


def test_validate_slots_messages():
    with pytest.raises(ValidationError, match="cannot be negative"):
        validate_slots(-1)
    with pytest.raises(ValidationError, match="cannot exceed 100 per day"):
        validate_slots(101)


def test_validate_slots_accepts_bounds():
    assert validate_slots(0) == 0
    assert validate_slots(100) == 100


async def test_capacity_falls_back_to_center_default(world):
    assert await capacity_for(world.center_id) == 2
    assert await capacity_for(world.center_id, world.test_id) == 2


async def test_override_wins_over_default(world):
    await insert_override(world.center_id, world.test_id, 1)

    assert await capacity_for(world.center_id, world.test_id) == 1
    assert await capacity_for(world.center_id, world.unassigned_test_id) == 2


async def test_null_default_means_ten(db):
    center_id = await insert_center("Bare Lab")
    await database.execute(
        healthcare_centers.update()
        .where(healthcare_centers.c.id == center_id)
        .values(available_slots_per_day=None)
    )

    assert await capacity_for(center_id) == 10


async def test_capacity_for_unknown_center(db):
    with pytest.raises(NotFoundError):
        await capacity_for(999)


async def test_set_capacity_upserts_single_override(world):
    await set_capacity(world.center_id, world.test_id, 4)
    await set_capacity(world.center_id, world.test_id, 6)

    assert await get_test_slots(world.center_id) == [{"test_id": world.test_id, "slots_per_day": 6}]
    assert await capacity_for(world.center_id, world.test_id) == 6


async def test_set_capacity_rejects_invalid_value_without_writing(world):
    with pytest.raises(ValidationError):
        await set_capacity(world.center_id, world.test_id, 150)

    assert await get_test_slots(world.center_id) == []


async def test_initialize_test_slots_copies_center_defaults(world):
    written = await initialize_test_slots()

    # two centers, two tests
    assert written == 4
    north = await get_test_slots(world.other_center_id)
    assert {entry["slots_per_day"] for entry in north} == {5}
    assert await capacity_for(world.center_id, world.unassigned_test_id) == 2


def test_init_test_slots_command_writes_overrides():
    with engine.begin() as conn:
        center_id = conn.execute(
            healthcare_centers.insert().values(
                name="West Lab", address="3 Hill Road", contact="555-0122", email="west@example.com",
                available_slots_per_day=4,
            )
        ).inserted_primary_key[0]
        test_id = conn.execute(
            tests.insert().values(title="Vitamin D", description="25-OH", type="Blood Test", price=90.0, duration=10)
        ).inserted_primary_key[0]

    init_test_slots()

    with engine.connect() as conn:
        query = sqlalchemy.select(test_slots.c.center_id, test_slots.c.test_id, test_slots.c.slots_per_day)
        rows = conn.execute(query).all()
    assert [tuple(row) for row in rows] == [(center_id, test_id, 4)]
