"""
CatalogClient against a stub bike service served by aiohttp.
"""
from decimal import Decimal

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from booking_service.app.catalog import CatalogClient
from booking_service.app.exceptions import NotFoundError, StoreFailureError

BIKES = {
    1: {"id": 1, "name": "Cruiser", "description": "city", "type": "City",
        "price_per_hour": 12.5, "is_available": True, "image_url": "x"},
    2: {"id": 2, "name": "Volt", "description": "e-bike", "type": "Electric",
        "price_per_hour": 30.0, "is_available": False, "image_url": "y"},
}


def bike_service_app():
    bikes = {bike_id: dict(bike) for bike_id, bike in BIKES.items()}

    async def read_bikes(request):
        result = list(bikes.values())
        if request.query.get("available_only") == "true":
            result = [bike for bike in result if bike["is_available"]]
        return web.json_response(result)

    async def read_bike(request):
        bike = bikes.get(int(request.match_info["bike_id"]))
        if bike is None:
            return web.json_response({"detail": "Bike not found"}, status=404)
        return web.json_response(bike)

    async def update_bike(request):
        bike_id = int(request.match_info["bike_id"])
        if bike_id not in bikes:
            return web.json_response({"detail": "Bike not found"}, status=404)
        bikes[bike_id].update(await request.json())
        return web.json_response(bikes[bike_id])

    async def health(request):
        return web.json_response({"status": "healthy", "service": "bike"})

    async def broken(request):
        return web.json_response({"detail": "boom"}, status=500)

    app = web.Application()
    app.router.add_get("/bikes/", read_bikes)
    app.router.add_get("/bikes/{bike_id}", read_bike)
    app.router.add_put("/bikes/{bike_id}", update_bike)
    app.router.add_get("/health", health)
    app.router.add_get("/broken/bikes/", broken)
    return app


@pytest.fixture
async def bike_server():
    server = TestServer(bike_service_app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def client(bike_server):
    return CatalogClient(base_url=str(bike_server.make_url("")), timeout=5)


async def test_get_bike_maps_catalog_fields(client):
    bike = await client.get_bike(1)

    assert bike.name == "Cruiser"
    assert bike.type == "City"
    assert bike.price_per_unit == Decimal("12.5")
    assert bike.available is True


async def test_missing_bike_is_none(client):
    assert await client.get_bike(404) is None


async def test_list_bikes(client):
    assert [bike.id for bike in await client.list_bikes()] == [1, 2]
    assert [bike.id for bike in await client.list_available_bikes()] == [1]


async def test_set_availability(client):
    bike = await client.set_availability(2, True)
    assert bike.available is True
    assert [bike.id for bike in await client.list_available_bikes()] == [1, 2]

    with pytest.raises(NotFoundError):
        await client.set_availability(404, True)


async def test_ping(client):
    assert (await client.ping())["status"] == "healthy"


async def test_server_error_is_store_failure(bike_server):
    client = CatalogClient(base_url=str(bike_server.make_url("/broken")), timeout=5)
    with pytest.raises(StoreFailureError):
        await client.list_bikes()


async def test_unreachable_service_is_store_failure():
    client = CatalogClient(base_url="http://127.0.0.1:9", timeout=1)
    with pytest.raises(StoreFailureError):
        await client.get_bike(1)
