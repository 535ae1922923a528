from sqlalchemy import Column, Integer, DateTime, Date, String, Numeric, Index
from datetime import datetime, timezone
from enum import Enum

from .database import Base


def utcnow() -> datetime:
    # naive UTC, as stored in the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RentalStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RETURNED = "returned"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (RentalStatus.PENDING.value, RentalStatus.CONFIRMED.value)
HISTORY_STATUSES = (RentalStatus.RETURNED.value, RentalStatus.CONFIRMED.value)
TERMINAL_STATUSES = (
    RentalStatus.RETURNED.value,
    RentalStatus.REJECTED.value,
    RentalStatus.CANCELLED.value,
)


class Rental(Base):
    __tablename__ = "rentals"
    __table_args__ = (
        Index("ix_rentals_bike_status", "bike_id", "status"),
        Index("ix_rentals_user_bike", "user_id", "bike_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    bike_id = Column(Integer, index=True, nullable=False)
    status = Column(String(16), default=RentalStatus.PENDING.value, nullable=False)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    total_price = Column(Numeric(10, 2), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    return_date = Column(DateTime, nullable=True)

    @property
    def is_dated(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def __repr__(self):
        return f"<Rental id={self.id} bike={self.bike_id} user={self.user_id} status={self.status}>"


class BikeLock(Base):
    """One row per booked bike; bumped to serialize bookings of that bike."""
    __tablename__ = "bike_locks"

    bike_id = Column(Integer, primary_key=True, autoincrement=False)
    version = Column(Integer, default=0, nullable=False)
