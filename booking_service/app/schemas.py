from pydantic import BaseModel, Field, AliasChoices, validator
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List


class Bike(BaseModel):
    """Catalog bike as seen by the booking engine.

    The bike service publishes ``price_per_hour`` and ``is_available``; both
    spellings are accepted.
    """
    id: int
    name: str = ""
    type: str = ""
    price_per_unit: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("price_per_unit", "price_per_hour"),
    )
    available: bool = Field(
        default=True,
        validation_alias=AliasChoices("available", "is_available"),
    )
    description: Optional[str] = None

    @validator("type", pre=True)
    def none_type_as_empty(cls, v):
        return v or ""


class RentalCreate(BaseModel):
    user_id: int
    bike_id: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_price: Optional[Decimal] = None

    @validator("start_date", "end_date", pre=True)
    def strip_time_part(cls, v):
        # "2024-03-01T10:00:00" from date pickers -> "2024-03-01"
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v


class RentalCreated(BaseModel):
    message: str = "Rental request created"
    id: int


class Rental(BaseModel):
    id: int
    user_id: int
    bike_id: int
    status: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_price: Optional[Decimal] = None
    created_at: datetime
    return_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class RentalView(Rental):
    """Rental joined with display fields from the catalog and identity provider."""
    user_name: Optional[str] = None
    bike_name: Optional[str] = None
    bike_type: Optional[str] = None
    bike_price: Optional[Decimal] = None


class RentalAction(BaseModel):
    message: str
    rental: Rental


class Availability(BaseModel):
    start_date: date
    end_date: date
    conflicting_bike_ids: List[int]
    available_bikes: List[Bike]


class PriceQuote(BaseModel):
    bike_id: int
    base_price: Decimal
    demand: float
    seasonality: float
    user_tier: str
    price: Decimal


class BikeAvailabilityUpdate(BaseModel):
    available: bool


class CurrentUser(BaseModel):
    id: int
    full_name: Optional[str] = None
    is_admin: bool = False
