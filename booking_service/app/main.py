from fastapi import FastAPI, Depends, HTTPException, Request, status, Query
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from contextlib import asynccontextmanager
from datetime import date
from sqlalchemy import text
from typing import List, Optional
import logging

from . import config, database, schemas
from .booking import BookingService
from .catalog import CatalogClient
from .exceptions import BookingError, StoreFailureError
from .identity import IdentityClient
from .models import utcnow

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s | %(levelname)-8s | %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Rental service startup...")
    await database.init_models()
    yield
    logger.info("Rental service shutdown...")
    await database.engine.dispose()


app = FastAPI(
    title="Rental Service",
    description="API for bike rental booking, availability and recommendations",
    version="2.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

security = HTTPBearer()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if isinstance(exc, StoreFailureError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation Error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Validation Error", "errors": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


# ---------- dependencies ----------
def get_session_factory():
    return database.AsyncSessionLocal


def get_catalog() -> CatalogClient:
    return CatalogClient()


def get_identity() -> IdentityClient:
    return IdentityClient()


def get_booking_service(
        session_factory=Depends(get_session_factory),
        catalog: CatalogClient = Depends(get_catalog),
) -> BookingService:
    return BookingService(session_factory, catalog)


async def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        identity: IdentityClient = Depends(get_identity),
) -> schemas.CurrentUser:
    """Trusts the identity provider's answer, including the admin claim."""
    return await identity.verify_token(credentials.credentials)


async def require_admin(current_user: schemas.CurrentUser = Depends(get_current_user)) -> schemas.CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can perform this action"
        )
    return current_user


def _action(message: str, rental) -> schemas.RentalAction:
    return schemas.RentalAction(message=message, rental=schemas.Rental.model_validate(rental))


# ---------- rentals ----------
@app.post("/rentals/", response_model=schemas.RentalCreated, status_code=status.HTTP_201_CREATED)
async def create_rental(
        rental_data: schemas.RentalCreate,
        service: BookingService = Depends(get_booking_service),
        current_user: schemas.CurrentUser = Depends(get_current_user),
):
    if rental_data.user_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only create rentals for yourself"
        )

    rental = await service.create_rental(
        user_id=rental_data.user_id,
        bike_id=rental_data.bike_id,
        start_date=rental_data.start_date,
        end_date=rental_data.end_date,
        total_price=rental_data.total_price,
    )
    return schemas.RentalCreated(id=rental.id)


@app.get("/rentals/", response_model=List[schemas.RentalView])
async def read_rentals(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        service: BookingService = Depends(get_booking_service),
        identity: IdentityClient = Depends(get_identity),
        current_user: schemas.CurrentUser = Depends(require_admin),
):
    user_names = await identity.user_names(credentials.credentials)
    return await service.list_rentals(user_names=user_names)


@app.get("/rentals/user/{user_id}", response_model=List[schemas.RentalView])
async def read_user_rentals(
        user_id: int,
        active_only: bool = False,
        service: BookingService = Depends(get_booking_service),
        current_user: schemas.CurrentUser = Depends(get_current_user),
):
    if user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own rentals"
        )
    return await service.list_user_rentals(user_id, active_only=active_only)


@app.get("/rentals/{rental_id}", response_model=schemas.Rental)
async def read_rental(
        rental_id: int,
        service: BookingService = Depends(get_booking_service),
        current_user: schemas.CurrentUser = Depends(get_current_user),
):
    rental = await service.get_rental(rental_id)
    if rental.user_id != current_user.id and not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view your own rentals"
        )
    return rental


@app.put("/rentals/{rental_id}/confirm", response_model=schemas.RentalAction)
async def confirm_rental(
        rental_id: int,
        service: BookingService = Depends(get_booking_service),
        current_user: schemas.CurrentUser = Depends(require_admin),
):
    rental = await service.confirm_rental(rental_id)
    return _action("Rental confirmed", rental)


@app.put("/rentals/{rental_id}/reject", response_model=schemas.RentalAction)
async def reject_rental(
        rental_id: int,
        service: BookingService = Depends(get_booking_service),
        current_user: schemas.CurrentUser = Depends(require_admin),
):
    rental = await service.reject_rental(rental_id)
    return _action("Rental rejected", rental)


@app.put("/rentals/{rental_id}/return", response_model=schemas.RentalAction)
async def return_bike(
        rental_id: int,
        service: BookingService = Depends(get_booking_service),
        current_user: schemas.CurrentUser = Depends(require_admin),
):
    rental = await service.return_bike(rental_id)
    return _action("Bike returned successfully", rental)


@app.put("/rentals/{rental_id}/cancel", response_model=schemas.RentalAction)
async def cancel_rental(
        rental_id: int,
        service: BookingService = Depends(get_booking_service),
        current_user: schemas.CurrentUser = Depends(get_current_user),
):
    rental = await service.cancel_rental(
        rental_id,
        requester_id=current_user.id,
        is_admin=current_user.is_admin,
    )
    return _action("Rental cancelled", rental)


# ---------- availability, recommendations, pricing ----------
@app.get("/availability", response_model=schemas.Availability)
async def read_availability(
        start_date: date,
        end_date: date,
        service: BookingService = Depends(get_booking_service),
):
    return await service.availability(start_date, end_date)


@app.get("/recommendations/{user_id}", response_model=List[schemas.Bike])
async def read_recommendations(
        user_id: int,
        service: BookingService = Depends(get_booking_service),
):
    return await service.recommend(user_id)


@app.get("/pricing/quote", response_model=schemas.PriceQuote)
async def read_price_quote(
        bike_id: int,
        seasonality: float = 1.0,
        user_tier: str = "regular",
        demand: Optional[float] = Query(None, ge=0),
        service: BookingService = Depends(get_booking_service),
):
    return await service.quote(bike_id, seasonality=seasonality, user_tier=user_tier, demand=demand)


@app.put("/bikes/{bike_id}/availability", response_model=schemas.Bike)
async def update_bike_availability(
        bike_id: int,
        update: schemas.BikeAvailabilityUpdate,
        service: BookingService = Depends(get_booking_service),
        current_user: schemas.CurrentUser = Depends(require_admin),
):
    return await service.set_bike_availability(bike_id, update.available)


# no authentication on the health check
@app.get("/health")
async def health_check(
        session_factory=Depends(get_session_factory),
        catalog: CatalogClient = Depends(get_catalog),
):
    health_info = {
        "status": "healthy",
        "service": "rental",
        "timestamp": utcnow().isoformat()
    }

    try:
        start_time = utcnow()
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        db_response_time = (utcnow() - start_time).total_seconds() * 1000
        health_info["database"] = {
            "status": "connected",
            "response_time_ms": round(db_response_time, 2)
        }
    except Exception as e:
        health_info["database"] = {"status": "error", "error": str(e)}
        health_info["status"] = "unhealthy"

    try:
        bike_data = await catalog.ping()
        health_info["bike_service"] = {"status": bike_data.get("status", "unknown")}
    except StoreFailureError as e:
        health_info["bike_service"] = {"status": "error", "error": e.detail}
        if health_info["status"] == "healthy":
            health_info["status"] = "degraded"

    return health_info
