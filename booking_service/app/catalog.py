import asyncio
import logging
from typing import List, Optional

import aiohttp

from . import config, schemas
from .exceptions import NotFoundError, StoreFailureError

logger = logging.getLogger(__name__)


class CatalogClient:
    """HTTP client for the bike service, which owns the bike inventory."""

    def __init__(self, base_url: str = None, timeout: float = None):
        self.base_url = (base_url or config.BIKE_SERVICE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or config.HTTP_TIMEOUT_SECONDS)

    async def _request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, **kwargs) as response:
                    if response.status == 404:
                        return None
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(f"Bike service error: {method} {path} -> HTTP {response.status} {error_text}")
                        raise StoreFailureError(f"Bike service returned HTTP {response.status}")
                    return await response.json()
        except aiohttp.ClientError as e:
            logger.error(f"Cannot reach bike service at {url}: {e}")
            raise StoreFailureError("Bike service unavailable") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Bike service timeout: {method} {url}")
            raise StoreFailureError("Bike service timeout") from e

    async def get_bike(self, bike_id: int) -> Optional[schemas.Bike]:
        data = await self._request("GET", f"/bikes/{bike_id}")
        if data is None:
            return None
        return schemas.Bike.model_validate(data)

    async def list_bikes(self) -> List[schemas.Bike]:
        data = await self._request("GET", "/bikes/", params={"limit": 1000})
        return [schemas.Bike.model_validate(item) for item in data or []]

    async def list_available_bikes(self) -> List[schemas.Bike]:
        data = await self._request("GET", "/bikes/", params={"available_only": "true", "limit": 1000})
        bikes = [schemas.Bike.model_validate(item) for item in data or []]
        return [bike for bike in bikes if bike.available]

    async def set_availability(self, bike_id: int, available: bool) -> schemas.Bike:
        data = await self._request("PUT", f"/bikes/{bike_id}", json={"is_available": available})
        if data is None:
            raise NotFoundError("Bike not found")
        return schemas.Bike.model_validate(data)

    async def ping(self) -> dict:
        data = await self._request("GET", "/health")
        return data or {}
