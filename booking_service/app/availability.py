import logging
from datetime import date
from typing import Optional, Set

from .exceptions import InvalidInputError
from .models import Rental
from .repository import RentalRepository

logger = logging.getLogger(__name__)


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Inclusive interval intersection: a shared boundary day is an overlap."""
    return a_start <= b_end and b_start <= a_end


def validate_range(start_date: date, end_date: date) -> None:
    if start_date is None or end_date is None:
        raise InvalidInputError("Both start_date and end_date are required")
    if start_date > end_date:
        raise InvalidInputError("start_date must not be after end_date")


class AvailabilityChecker:
    """Read-only availability queries against the rental repository."""

    def __init__(self, repository: RentalRepository):
        self.repository = repository

    async def find_conflicts(self, start_date: date, end_date: date) -> Set[int]:
        validate_range(start_date, end_date)
        blocking = await self.repository.find_blocking(start_date, end_date)
        conflicts = {rental.bike_id for rental in blocking}
        logger.debug(f"Bikes booked within [{start_date}, {end_date}]: {sorted(conflicts)}")
        return conflicts

    async def has_conflict(
            self,
            bike_id: int,
            start_date: date,
            end_date: date,
            exclude_rental_id: Optional[int] = None,
    ) -> bool:
        validate_range(start_date, end_date)
        blocking = await self.repository.find_blocking(
            start_date, end_date, bike_id=bike_id, exclude_rental_id=exclude_rental_id
        )
        if blocking:
            logger.info(
                f"Bike {bike_id} is booked within [{start_date}, {end_date}] "
                f"by rental(s) {[rental.id for rental in blocking]}"
            )
        return bool(blocking)

    async def existing_active_rental(self, user_id: int, bike_id: int) -> Optional[Rental]:
        return await self.repository.find_active_for_user(user_id, bike_id)
