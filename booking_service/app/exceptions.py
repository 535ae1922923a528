"""
Error types raised by the booking engine.

Every failure path maps to exactly one of these classes, so callers (and the
HTTP layer) can tell a missing bike from a date overlap from a store outage.
"""


class BookingError(Exception):
    """Base class; carries the HTTP status the API layer should answer with."""

    status_code = 400
    default_detail = "Error: booking request failed"

    def __init__(self, detail: str = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFoundError(BookingError):
    """Raised when a bike or rental cannot be found."""

    status_code = 404
    default_detail = "Not found"


class UnavailableError(BookingError):
    """Raised when a bike is flagged unavailable by the catalog."""

    default_detail = "Bike is not available"


class ConflictError(BookingError):
    """Raised on duplicate active rentals and overlapping date ranges."""

    default_detail = "Conflict with an existing rental"


class InvalidTransitionError(ConflictError):
    """Raised when a rental is not in the state a transition requires."""

    default_detail = "Invalid rental status transition"


class InvalidInputError(BookingError):
    """Raised on missing fields, malformed dates or non-positive prices."""

    default_detail = "Invalid input"


class InvalidPriceInputError(InvalidInputError):
    default_detail = "Invalid pricing input"


class ForbiddenError(BookingError):
    status_code = 403
    default_detail = "Not allowed"


class StoreFailureError(BookingError):
    """Durable store or collaborator I/O failure. Safe to retry."""

    status_code = 503
    default_detail = "Storage temporarily unavailable"
