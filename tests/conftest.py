from decimal import Decimal

import httpx
import pytest
from fastapi import HTTPException, status

from booking_service.app import database, schemas
from booking_service.app.booking import BookingService
from booking_service.app.exceptions import NotFoundError
from booking_service.app.models import Rental, utcnow


def make_bike(bike_id, bike_type="City", price="10.00", available=True, name=None):
    return schemas.Bike(
        id=bike_id,
        name=name or f"Bike {bike_id}",
        type=bike_type,
        price_per_unit=Decimal(price),
        available=available,
        description=f"{bike_type} bike",
    )


class FakeCatalog:
    """In-memory stand-in for the bike service."""

    def __init__(self, bikes=()):
        self.bikes = {bike.id: bike for bike in bikes}

    async def get_bike(self, bike_id):
        return self.bikes.get(bike_id)

    async def list_bikes(self):
        return [self.bikes[bike_id] for bike_id in sorted(self.bikes)]

    async def list_available_bikes(self):
        return [bike for bike in await self.list_bikes() if bike.available]

    async def set_availability(self, bike_id, available):
        if bike_id not in self.bikes:
            raise NotFoundError("Bike not found")
        self.bikes[bike_id] = self.bikes[bike_id].model_copy(update={"available": available})
        return self.bikes[bike_id]

    async def ping(self):
        return {"status": "healthy"}


USERS = {
    "alice-token": schemas.CurrentUser(id=1, full_name="Alice Rider"),
    "bob-token": schemas.CurrentUser(id=2, full_name="Bob Pedal"),
    "admin-token": schemas.CurrentUser(id=99, full_name="Admin", is_admin=True),
}


class FakeIdentity:

    async def verify_token(self, token):
        if token not in USERS:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials"
            )
        return USERS[token]

    async def user_names(self, token):
        return {user.id: user.full_name for user in USERS.values()}


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def engine(tmp_path):
    engine = database.make_engine(f"sqlite+aiosqlite:///{tmp_path / 'rentals.db'}", echo=False)
    await database.init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return database.make_session_factory(engine)


@pytest.fixture
def catalog():
    return FakeCatalog([
        make_bike(1, "City"),
        make_bike(2, "Electric Mountain", price="25.00"),
        make_bike(3, "Highway", price="18.00"),
        make_bike(4, "Hybrid", price="15.00"),
        make_bike(5, "City", available=False),
        make_bike(7, "Mountain", price="20.00"),
    ])


@pytest.fixture
def service(session_factory, catalog):
    return BookingService(session_factory, catalog)


@pytest.fixture
def seed_rental(session_factory):
    """Insert a rental row directly, bypassing the booking rules."""

    async def _seed(user_id, bike_id, status="pending", start_date=None, end_date=None, **fields):
        async with session_factory() as session:
            async with session.begin():
                rental = Rental(
                    user_id=user_id,
                    bike_id=bike_id,
                    status=status,
                    start_date=start_date,
                    end_date=end_date,
                    created_at=utcnow(),
                    return_date=utcnow() if status == "returned" else None,
                    **fields,
                )
                session.add(rental)
            return rental

    return _seed


@pytest.fixture
async def client(session_factory, catalog):
    from booking_service.app import main

    main.app.dependency_overrides[main.get_session_factory] = lambda: session_factory
    main.app.dependency_overrides[main.get_catalog] = lambda: catalog
    main.app.dependency_overrides[main.get_identity] = lambda: FakeIdentity()

    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    main.app.dependency_overrides.clear()
