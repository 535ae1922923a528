"""Bike recommendations from rental history.

Users with history get available bikes of the types they rented most, ranked
by popularity. New users get the most rented available bikes, with electric
and hybrid models boosted.
"""
import logging
from collections import Counter
from typing import Dict, List, Sequence

from . import schemas
from .repository import RentalRepository

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 8


def type_boost(bike_type: str) -> float:
    if "Electric" in (bike_type or ""):
        return 1.2
    if "Hybrid" in (bike_type or ""):
        return 1.1
    return 1.0


def preferred_types(history_bike_ids: Sequence[int], bikes_by_id: Dict[int, schemas.Bike]) -> List[str]:
    """Distinct types the user rented, most frequent first."""
    counts = Counter(
        bikes_by_id[bike_id].type for bike_id in history_bike_ids if bike_id in bikes_by_id
    )
    # Counter.most_common keeps first-seen order for equal counts
    return [bike_type for bike_type, _ in counts.most_common()]


def rank_cold_start(bikes: Sequence[schemas.Bike], rental_counts: Dict[int, int]) -> List[schemas.Bike]:
    ranked = sorted(
        (bike for bike in bikes if bike.available),
        key=lambda bike: (-(rental_counts.get(bike.id, 0) * type_boost(bike.type)), bike.id),
    )
    return ranked[:MAX_RECOMMENDATIONS]


def rank_by_preference(
        bikes: Sequence[schemas.Bike],
        rental_counts: Dict[int, int],
        types: Sequence[str],
) -> List[schemas.Bike]:
    wanted = set(types)
    ranked = sorted(
        (bike for bike in bikes if bike.available and bike.type in wanted),
        key=lambda bike: (-rental_counts.get(bike.id, 0), bike.id),
    )
    return ranked[:MAX_RECOMMENDATIONS]


class RecommendationRanker:

    def __init__(self, repository: RentalRepository, catalog):
        self.repository = repository
        self.catalog = catalog

    async def recommend(self, user_id: int) -> List[schemas.Bike]:
        bikes = await self.catalog.list_bikes()
        bikes_by_id = {bike.id: bike for bike in bikes}
        rental_counts = await self.repository.rental_counts()
        history = await self.repository.history_bike_ids(user_id)

        types = preferred_types(history, bikes_by_id)
        if not types:
            logger.info(f"No rental history for user {user_id}, recommending popular bikes")
            return rank_cold_start(bikes, rental_counts)

        logger.info(f"Recommending {types} bikes to user {user_id}")
        return rank_by_preference(bikes, rental_counts, types)
