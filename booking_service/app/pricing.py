"""Dynamic pricing policy.

price = base * (1 + 0.1 * demand) * seasonality * tier_discount, rounded to
cents half away from zero.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
import logging

from .exceptions import InvalidPriceInputError

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
DEMAND_STEP = Decimal("0.1")

TIER_DISCOUNTS = {
    "premium": Decimal("0.90"),
    "frequent": Decimal("0.95"),
}
DEFAULT_TIER_DISCOUNT = Decimal("1.00")


def _to_decimal(value, name: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidPriceInputError(f"{name} must be a number")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidPriceInputError(f"{name} must be a number")
    if not result.is_finite():
        raise InvalidPriceInputError(f"{name} must be a finite number")
    return result


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def tier_discount(user_tier: str) -> Decimal:
    return TIER_DISCOUNTS.get((user_tier or "").strip().lower(), DEFAULT_TIER_DISCOUNT)


def price(base_price, demand, seasonality=1.0, user_tier: str = "regular") -> Decimal:
    base = _to_decimal(base_price, "base_price")
    demand_value = _to_decimal(demand, "demand")
    season = _to_decimal(seasonality, "seasonality")

    if base <= 0:
        raise InvalidPriceInputError("base_price must be positive")
    if demand_value < 0:
        raise InvalidPriceInputError("demand must not be negative")
    if season <= 0:
        raise InvalidPriceInputError("seasonality must be positive")

    demand_multiplier = 1 + DEMAND_STEP * demand_value
    result = round2(base * demand_multiplier * season * tier_discount(user_tier))
    logger.debug(f"Priced {base} (demand={demand_value}, seasonality={season}, tier={user_tier}) -> {result}")
    return result
