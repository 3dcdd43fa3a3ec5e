"""Shared test fixtures."""
import os
import tempfile
from datetime import datetime, timedelta
from types import SimpleNamespace

# Point the app at a throwaway SQLite file before any hcs_booking import reads config
_DB_DIR = tempfile.mkdtemp(prefix="hcs_booking_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
import pytest_asyncio

from hcs_booking.auth import pwd_context
from hcs_booking.data_models import Actor, APPROVED, CUSTOMER, HCS_ADMIN, SUPERADMIN
from hcs_booking.database import database, engine, metadata
from hcs_booking.models import healthcare_centers, test_pricing, test_slots, tests, users


@pytest.fixture(autouse=True)
def schema():
    """Fresh tables for every test."""
    metadata.drop_all(bind=engine)
    metadata.create_all(bind=engine)
    yield
    metadata.drop_all(bind=engine)


@pytest_asyncio.fixture
async def db(schema):
    await database.connect()
    yield database
    await database.disconnect()


def at(days: int = 1, hour: int = 10, minute: int = 0) -> datetime:
    """A local timestamp ``days`` from today at ``hour``:``minute``."""
    day = datetime.now().date() + timedelta(days=days)
    return datetime(day.year, day.month, day.day, hour, minute)


async def insert_user(name: str, email: str, role: str = CUSTOMER, password: str = "secret123") -> int:
    return await database.execute(
        users.insert().values(
            name=name,
            email=email,
            hashed_password=pwd_context.hash(password),
            role=role,
            created_at=datetime.now(),
        )
    )


async def insert_center(name: str, admin_id: int = None, slots: int = 10) -> int:
    return await database.execute(
        healthcare_centers.insert().values(
            name=name,
            address="1 Main Street",
            contact="555-0100",
            email=f"{name.lower().replace(' ', '.')}@example.com",
            admin_id=admin_id,
            available_slots_per_day=slots,
            created_at=datetime.now(),
            updated_at=datetime.now(),
        )
    )


async def insert_test(title: str, price: float = 300.0, type_: str = "Blood Test") -> int:
    return await database.execute(
        tests.insert().values(
            title=title,
            description=f"{title} description",
            type=type_,
            price=price,
            duration=30,
            created_at=datetime.now(),
            updated_at=datetime.now(),
        )
    )


async def insert_pricing(test_id: int, center_id: int, price: float, status: str = APPROVED) -> int:
    return await database.execute(
        test_pricing.insert().values(test_id=test_id, center_id=center_id, price=price, status=status)
    )


async def insert_override(center_id: int, test_id: int, slots: int) -> int:
    return await database.execute(
        test_slots.insert().values(center_id=center_id, test_id=test_id, slots_per_day=slots)
    )


@pytest_asyncio.fixture
async def world(db):
    """
    One center (capacity 2) run by a center admin, one test approved there at 450,
    a second unassigned test, a superadmin and two customers.
    """
    superadmin_id = await insert_user("Root", "root@example.com", SUPERADMIN)
    center_admin_id = await insert_user("Center Admin", "center.admin@example.com", HCS_ADMIN)
    other_admin_id = await insert_user("Other Admin", "other.admin@example.com", HCS_ADMIN)
    customer_id = await insert_user("Alice", "alice@example.com", CUSTOMER)
    other_customer_id = await insert_user("Bob", "bob@example.com", CUSTOMER)

    center_id = await insert_center("Central Lab", admin_id=center_admin_id, slots=2)
    other_center_id = await insert_center("North Lab", admin_id=other_admin_id, slots=5)
    test_id = await insert_test("Lipid Panel", price=300.0)
    unassigned_test_id = await insert_test("Chest X-Ray", price=800.0, type_="X-Ray")
    await insert_pricing(test_id, center_id, 450.0)

    return SimpleNamespace(
        superadmin=Actor(id=superadmin_id, role=SUPERADMIN),
        center_admin=Actor(id=center_admin_id, role=HCS_ADMIN, center_id=center_id),
        other_admin=Actor(id=other_admin_id, role=HCS_ADMIN, center_id=other_center_id),
        customer=Actor(id=customer_id, role=CUSTOMER),
        other_customer=Actor(id=other_customer_id, role=CUSTOMER),
        center_id=center_id,
        other_center_id=other_center_id,
        test_id=test_id,
        unassigned_test_id=unassigned_test_id,
    )
