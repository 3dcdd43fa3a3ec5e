# maintenance.py
"""One-off maintenance commands.

``hcs-init-test-slots`` writes a per-test slot override for every center and
test, copied from each center's daily default.
"""
import asyncio

from hcs_booking.capacity import initialize_test_slots
from hcs_booking.config import LOG_LEVEL
from hcs_booking.database import database, engine, metadata
from hcs_booking.logging_config import get_logger, setup_structured_logging

logger = get_logger(__name__)


async def run_initialize_test_slots() -> int:
    await database.connect()
    try:
        metadata.create_all(bind=engine)
        written = await initialize_test_slots()
    finally:
        await database.disconnect()
    logger.info("test_slots_initialization_finished", entries=written)
    return written


def init_test_slots():
    setup_structured_logging(LOG_LEVEL)
    asyncio.run(run_initialize_test_slots())
