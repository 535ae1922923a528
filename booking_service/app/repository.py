from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date
from typing import Dict, List, Optional

from .models import Rental, RentalStatus, BikeLock, ACTIVE_STATUSES, HISTORY_STATUSES


def _insert_ignore(dialect_name: str, bike_id: int):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert(BikeLock).values(bike_id=bike_id, version=0).on_conflict_do_nothing(
        index_elements=[BikeLock.bike_id]
    )


class RentalRepository:
    """Queries over the rentals table, bound to one session.

    The repository never commits; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, rental_id: int) -> Optional[Rental]:
        result = await self.session.execute(
            select(Rental).where(Rental.id == rental_id)
        )
        return result.scalar_one_or_none()

    async def add(self, rental: Rental) -> Rental:
        self.session.add(rental)
        await self.session.flush()
        await self.session.refresh(rental)
        return rental

    async def lock_bike(self, bike_id: int) -> None:
        """Take the per-bike write lock for the rest of the transaction.

        Bumping the row is a write, so PostgreSQL holds a row lock and SQLite
        holds the database write lock until commit or rollback.
        """
        bump = (
            update(BikeLock)
            .where(BikeLock.bike_id == bike_id)
            .values(version=BikeLock.version + 1)
        )
        await self.session.execute(_insert_ignore(self.session.bind.dialect.name, bike_id))
        await self.session.execute(bump)

    async def find_active_for_user(self, user_id: int, bike_id: int) -> Optional[Rental]:
        result = await self.session.execute(
            select(Rental)
            .where(
                Rental.user_id == user_id,
                Rental.bike_id == bike_id,
                Rental.status.in_(ACTIVE_STATUSES),
            )
            .order_by(Rental.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_blocking(
            self,
            start_date: date,
            end_date: date,
            bike_id: Optional[int] = None,
            exclude_rental_id: Optional[int] = None,
    ) -> List[Rental]:
        """Active rentals occupying any day of [start_date, end_date].

        Dated rentals block when the inclusive intervals intersect; a confirmed
        undated hold blocks every range.
        """
        overlapping = and_(
            Rental.start_date.is_not(None),
            Rental.end_date.is_not(None),
            Rental.start_date <= end_date,
            Rental.end_date >= start_date,
        )
        undated_hold = and_(
            Rental.start_date.is_(None),
            Rental.status == RentalStatus.CONFIRMED.value,
        )
        query = select(Rental).where(
            Rental.status.in_(ACTIVE_STATUSES),
            or_(overlapping, undated_hold),
        )
        if bike_id is not None:
            query = query.where(Rental.bike_id == bike_id)
        if exclude_rental_id is not None:
            query = query.where(Rental.id != exclude_rental_id)
        result = await self.session.execute(query.order_by(Rental.bike_id, Rental.id))
        return list(result.scalars().all())

    async def find_confirmed(
            self,
            bike_id: int,
            exclude_rental_id: Optional[int] = None,
            undated_only: bool = False,
    ) -> List[Rental]:
        """Confirmed, not yet returned rentals of a bike."""
        query = select(Rental).where(
            Rental.bike_id == bike_id,
            Rental.status == RentalStatus.CONFIRMED.value,
        )
        if undated_only:
            query = query.where(Rental.start_date.is_(None))
        if exclude_rental_id is not None:
            query = query.where(Rental.id != exclude_rental_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def transition(self, rental_id: int, from_status: str, to_status: str, **values) -> bool:
        """Compare-and-set the status; False when the rental was not in from_status."""
        result = await self.session.execute(
            update(Rental)
            .where(Rental.id == rental_id, Rental.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_all(self) -> List[Rental]:
        result = await self.session.execute(
            select(Rental).order_by(Rental.created_at.desc(), Rental.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_user(self, user_id: int, active_only: bool = False) -> List[Rental]:
        query = select(Rental).where(Rental.user_id == user_id)
        if active_only:
            query = query.where(Rental.status.in_(ACTIVE_STATUSES))
        result = await self.session.execute(
            query.order_by(Rental.created_at.desc(), Rental.id.desc())
        )
        return list(result.scalars().all())

    async def count_active(self, bike_id: int) -> int:
        result = await self.session.execute(
            select(func.count(Rental.id))
            .where(Rental.bike_id == bike_id, Rental.status.in_(ACTIVE_STATUSES))
        )
        return result.scalar_one()

    async def rental_counts(self) -> Dict[int, int]:
        """All-time rentals per bike, cancelled requests excluded."""
        result = await self.session.execute(
            select(Rental.bike_id, func.count(Rental.id))
            .where(Rental.status != RentalStatus.CANCELLED.value)
            .group_by(Rental.bike_id)
        )
        return {bike_id: count for bike_id, count in result.all()}

    async def history_bike_ids(self, user_id: int) -> List[int]:
        """Bike id of every confirmed or returned rental of the user, one entry per rental."""
        result = await self.session.execute(
            select(Rental.bike_id)
            .where(Rental.user_id == user_id, Rental.status.in_(HISTORY_STATUSES))
            .order_by(Rental.id)
        )
        return list(result.scalars().all())
