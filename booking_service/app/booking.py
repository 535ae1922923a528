"""Rental lifecycle: create, confirm, reject, return and cancel.

    pending -> confirmed -> returned
    pending -> rejected
    pending -> cancelled

Every mutating operation runs in one transaction. Creation takes the per-bike
lock before checking for conflicts, and transitions are compare-and-set
updates, so concurrent requests cannot double-book a bike or double-apply a
transition.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import config, pricing, schemas
from .availability import AvailabilityChecker, validate_range
from .exceptions import (
    NotFoundError,
    UnavailableError,
    ConflictError,
    InvalidTransitionError,
    InvalidInputError,
    ForbiddenError,
    StoreFailureError,
)
from .models import Rental, RentalStatus, utcnow
from .recommendations import RecommendationRanker
from .repository import RentalRepository

logger = logging.getLogger(__name__)


def _validate_request(start_date, end_date, total_price):
    if (start_date is None) != (end_date is None):
        raise InvalidInputError("start_date and end_date must be given together")
    if start_date is not None:
        validate_range(start_date, end_date)
    if total_price is not None:
        try:
            total_price = Decimal(str(total_price))
        except (InvalidOperation, ValueError):
            raise InvalidInputError("total_price must be a number")
        if not total_price.is_finite() or total_price <= 0:
            raise InvalidInputError("total_price must be positive")
        total_price = pricing.round2(total_price)
    return total_price


def build_views(
        rentals: List[Rental],
        bikes_by_id: Dict[int, schemas.Bike],
        user_names: Optional[Dict[int, str]] = None,
) -> List[schemas.RentalView]:
    """Join rentals with bike and user display fields."""
    user_names = user_names or {}
    views = []
    for rental in rentals:
        view = schemas.RentalView.model_validate(rental)
        bike = bikes_by_id.get(rental.bike_id)
        if bike is not None:
            view.bike_name = bike.name
            view.bike_type = bike.type
            view.bike_price = bike.price_per_unit
        view.user_name = user_names.get(rental.user_id)
        views.append(view)
    return views


class BookingService:

    def __init__(self, session_factory, catalog, timeout: float = None):
        self.session_factory = session_factory
        self.catalog = catalog
        self.timeout = config.DB_TIMEOUT_SECONDS if timeout is None else timeout

    # ---------- plumbing ----------
    @asynccontextmanager
    async def _transaction(self):
        async with self.session_factory() as session:
            async with session.begin():
                yield RentalRepository(session)

    async def _run(self, name: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"{name} timed out after {self.timeout}s")
            raise StoreFailureError(f"Timed out during {name}") from e
        except SQLAlchemyError as e:
            logger.error(f"Store failure during {name}: {e}")
            raise StoreFailureError(f"Store failure during {name}") from e

    async def _get_bike(self, bike_id: int) -> schemas.Bike:
        bike = await self.catalog.get_bike(bike_id)
        if bike is None:
            raise NotFoundError("Bike not found")
        return bike

    # ---------- create ----------
    async def create_rental(
            self,
            user_id: int,
            bike_id: int,
            start_date: Optional[date] = None,
            end_date: Optional[date] = None,
            total_price=None,
    ) -> Rental:
        return await self._run(
            "create_rental",
            self._create_rental(user_id, bike_id, start_date, end_date, total_price),
        )

    async def _create_rental(self, user_id, bike_id, start_date, end_date, total_price) -> Rental:
        total_price = _validate_request(start_date, end_date, total_price)

        bike = await self._get_bike(bike_id)
        if not bike.available:
            logger.warning(f"User {user_id} requested unavailable bike {bike_id}")
            raise UnavailableError("Bike is not available")

        async with self._transaction() as repo:
            await repo.lock_bike(bike_id)
            checker = AvailabilityChecker(repo)

            existing = await checker.existing_active_rental(user_id, bike_id)
            if existing is not None:
                logger.warning(f"User {user_id} already holds rental {existing.id} for bike {bike_id}")
                raise ConflictError("You already have a pending request for this bike")

            if start_date is not None and await checker.has_conflict(bike_id, start_date, end_date):
                raise ConflictError("Bike not available for selected dates")

            rental = await repo.add(Rental(
                user_id=user_id,
                bike_id=bike_id,
                status=RentalStatus.PENDING.value,
                start_date=start_date,
                end_date=end_date,
                total_price=total_price,
                created_at=utcnow(),
            ))

        logger.info(f"Rental {rental.id} requested: user {user_id}, bike {bike_id}, [{start_date}, {end_date}]")
        return rental

    # ---------- transitions ----------
    async def _transition(
            self,
            rental_id: int,
            from_status: RentalStatus,
            to_status: RentalStatus,
            error: str,
            guard=None,
            **values,
    ) -> Rental:
        async with self._transaction() as repo:
            rental = await repo.get(rental_id)
            if rental is None:
                raise NotFoundError("Rental not found")
            if rental.status != from_status.value:
                raise InvalidTransitionError(f"{error} (rental is {rental.status})")
            if guard is not None:
                await guard(repo, rental)
            # re-checks the status in the UPDATE itself
            if not await repo.transition(rental_id, from_status.value, to_status.value, **values):
                raise InvalidTransitionError(f"{error} (rental changed concurrently)")
            await repo.session.refresh(rental)

        logger.info(f"Rental {rental_id}: {from_status.value} -> {to_status.value}")
        return rental

    async def _exclusive_hold(self, repo: RentalRepository, rental: Rental):
        # an undated hold excludes every other confirmed rental of the bike;
        # a dated one only clashes with undated holds, overlaps are caught at creation
        await repo.lock_bike(rental.bike_id)
        held = await repo.find_confirmed(
            rental.bike_id,
            exclude_rental_id=rental.id,
            undated_only=rental.is_dated,
        )
        if held:
            logger.warning(f"Rental {rental.id} not confirmed: bike {rental.bike_id} held by rental {held[0].id}")
            raise ConflictError("Bike is already rented out")

    async def confirm_rental(self, rental_id: int) -> Rental:
        return await self._run("confirm_rental", self._transition(
            rental_id, RentalStatus.PENDING, RentalStatus.CONFIRMED,
            "Only pending rentals can be confirmed",
            guard=self._exclusive_hold,
        ))

    async def reject_rental(self, rental_id: int) -> Rental:
        return await self._run("reject_rental", self._transition(
            rental_id, RentalStatus.PENDING, RentalStatus.REJECTED,
            "Only pending rentals can be rejected",
        ))

    async def return_bike(self, rental_id: int) -> Rental:
        return await self._run("return_bike", self._transition(
            rental_id, RentalStatus.CONFIRMED, RentalStatus.RETURNED,
            "Only confirmed rentals can be returned",
            return_date=utcnow(),
        ))

    async def cancel_rental(self, rental_id: int, requester_id: int = None, is_admin: bool = True) -> Rental:
        async def owner_only(repo, rental):
            if not is_admin and rental.user_id != requester_id:
                raise ForbiddenError("You can only cancel your own rentals")

        return await self._run("cancel_rental", self._transition(
            rental_id, RentalStatus.PENDING, RentalStatus.CANCELLED,
            "Can only cancel pending rentals",
            guard=owner_only,
        ))

    # ---------- queries ----------
    async def get_rental(self, rental_id: int) -> Rental:
        async def fetch():
            async with self._transaction() as repo:
                rental = await repo.get(rental_id)
            if rental is None:
                raise NotFoundError("Rental not found")
            return rental

        return await self._run("get_rental", fetch())

    async def list_rentals(self, user_names: Optional[Dict[int, str]] = None) -> List[schemas.RentalView]:
        async def fetch():
            async with self._transaction() as repo:
                rentals = await repo.list_all()
            bikes = await self.catalog.list_bikes()
            return build_views(rentals, {bike.id: bike for bike in bikes}, user_names)

        return await self._run("list_rentals", fetch())

    async def list_user_rentals(self, user_id: int, active_only: bool = False) -> List[schemas.RentalView]:
        async def fetch():
            async with self._transaction() as repo:
                rentals = await repo.list_for_user(user_id, active_only=active_only)
            bikes = await self.catalog.list_bikes()
            return build_views(rentals, {bike.id: bike for bike in bikes})

        return await self._run("list_user_rentals", fetch())

    async def availability(self, start_date: date, end_date: date) -> schemas.Availability:
        async def fetch():
            async with self._transaction() as repo:
                conflicts = await AvailabilityChecker(repo).find_conflicts(start_date, end_date)
            bikes = await self.catalog.list_available_bikes()
            return schemas.Availability(
                start_date=start_date,
                end_date=end_date,
                conflicting_bike_ids=sorted(conflicts),
                available_bikes=[bike for bike in bikes if bike.id not in conflicts],
            )

        return await self._run("availability", fetch())

    async def recommend(self, user_id: int) -> List[schemas.Bike]:
        async def fetch():
            async with self._transaction() as repo:
                return await RecommendationRanker(repo, self.catalog).recommend(user_id)

        return await self._run("recommend", fetch())

    async def quote(
            self,
            bike_id: int,
            seasonality: float = 1.0,
            user_tier: str = "regular",
            demand: Optional[float] = None,
    ) -> schemas.PriceQuote:
        """Price a bike; demand defaults to its number of open bookings."""
        async def fetch():
            bike = await self._get_bike(bike_id)
            signal = demand
            if signal is None:
                async with self._transaction() as repo:
                    signal = await repo.count_active(bike_id)
            return schemas.PriceQuote(
                bike_id=bike_id,
                base_price=bike.price_per_unit,
                demand=signal,
                seasonality=seasonality,
                user_tier=user_tier,
                price=pricing.price(bike.price_per_unit, signal, seasonality, user_tier),
            )

        return await self._run("quote", fetch())

    async def set_bike_availability(self, bike_id: int, available: bool) -> schemas.Bike:
        """Administrative override; bookings already made are not touched."""
        bike = await self.catalog.set_availability(bike_id, available)
        logger.info(f"Bike {bike_id} availability override set to {available}")
        return bike
