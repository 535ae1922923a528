"""
Availability queries: inclusive overlap on date-ranged rentals, confirmed
undated holds, and which statuses occupy a bike.
"""
from datetime import date, timedelta
import itertools

import pytest

from booking_service.app.availability import AvailabilityChecker, overlaps
from booking_service.app.exceptions import InvalidInputError
from booking_service.app.repository import RentalRepository

JAN_1 = date(2024, 1, 1)
JAN_5 = date(2024, 1, 5)


@pytest.fixture
def check(session_factory):
    """Run one checker call in its own session."""

    async def _check(method, *args, **kwargs):
        async with session_factory() as session:
            checker = AvailabilityChecker(RentalRepository(session))
            return await getattr(checker, method)(*args, **kwargs)

    return _check


def test_overlap_is_symmetric_and_inclusive():
    days = [JAN_1 + timedelta(days=n) for n in range(6)]
    for a1, a2, b1, b2 in itertools.product(days, repeat=4):
        if a1 > a2 or b1 > b2:
            continue
        assert overlaps(a1, a2, b1, b2) == overlaps(b1, b2, a1, a2)
        shared = set(range(a1.toordinal(), a2.toordinal() + 1)) & set(range(b1.toordinal(), b2.toordinal() + 1))
        assert overlaps(a1, a2, b1, b2) == bool(shared)


async def test_shared_boundary_day_conflicts(seed_rental, check):
    await seed_rental(1, 7, "confirmed", JAN_1, JAN_5)

    assert await check("has_conflict", 7, JAN_5, date(2024, 1, 10))
    assert await check("has_conflict", 7, date(2023, 12, 28), JAN_1)
    assert not await check("has_conflict", 7, date(2024, 1, 6), date(2024, 1, 10))


async def test_containment_counts_as_overlap(seed_rental, check):
    await seed_rental(1, 7, "pending", JAN_1, date(2024, 1, 31))

    assert await check("has_conflict", 7, date(2024, 1, 10), date(2024, 1, 12))
    assert await check("has_conflict", 7, date(2023, 12, 1), date(2024, 2, 28))


async def test_only_pending_and_confirmed_rentals_block(seed_rental, check):
    for status in ("returned", "rejected", "cancelled"):
        await seed_rental(1, 7, status, JAN_1, JAN_5)

    assert not await check("has_conflict", 7, JAN_1, JAN_5)
    assert await check("find_conflicts", JAN_1, JAN_5) == set()


async def test_conflicts_are_per_bike(seed_rental, check):
    await seed_rental(1, 7, "confirmed", JAN_1, JAN_5)

    assert not await check("has_conflict", 1, JAN_1, JAN_5)


async def test_find_conflicts_lists_every_booked_bike(seed_rental, check):
    await seed_rental(1, 1, "pending", JAN_1, JAN_5)
    await seed_rental(2, 2, "confirmed", date(2024, 1, 4), date(2024, 1, 8))
    await seed_rental(3, 3, "confirmed", date(2024, 2, 1), date(2024, 2, 3))
    await seed_rental(3, 4, "pending", date(2024, 1, 2), date(2024, 1, 2))

    assert await check("find_conflicts", JAN_5, date(2024, 1, 6)) == {1, 2}
    assert await check("find_conflicts", JAN_1, date(2024, 2, 1)) == {1, 2, 3, 4}


async def test_confirmed_undated_hold_blocks_every_range(seed_rental, check):
    await seed_rental(1, 7, "confirmed")
    await seed_rental(2, 1, "pending")

    assert await check("has_conflict", 7, date(2030, 6, 1), date(2030, 6, 2))
    # pending undated requests hold nothing yet
    assert not await check("has_conflict", 1, date(2030, 6, 1), date(2030, 6, 2))
    assert await check("find_conflicts", JAN_1, JAN_5) == {7}


async def test_exclude_rental_id(seed_rental, check):
    rental = await seed_rental(1, 7, "pending", JAN_1, JAN_5)

    assert not await check("has_conflict", 7, JAN_1, JAN_5, exclude_rental_id=rental.id)


async def test_existing_active_rental(seed_rental, check):
    await seed_rental(1, 7, "returned", JAN_1, JAN_5)
    assert await check("existing_active_rental", 1, 7) is None

    pending = await seed_rental(1, 7, "pending")
    found = await check("existing_active_rental", 1, 7)
    assert found is not None and found.id == pending.id
    assert await check("existing_active_rental", 2, 7) is None


async def test_reversed_range_rejected(check):
    with pytest.raises(InvalidInputError):
        await check("find_conflicts", JAN_5, JAN_1)
