"""
Error taxonomy shared by the API and the client SDK.

Each error carries the HTTP status it is answered with, so route code can
raise domain errors and leave the response shape to the handlers in main.py.
"""
from typing import Optional


class RentalError(Exception):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ValidationError(RentalError):
    status_code = 422
    default_detail = "Invalid input"


class Unauthenticated(RentalError):
    status_code = 401
    default_detail = "Could not validate credentials"


class InvalidCredentials(Unauthenticated):
    default_detail = "Invalid username or password"


class NotAuthorized(RentalError):
    status_code = 403
    default_detail = "Not permitted"


class NotFound(RentalError):
    status_code = 404
    default_detail = "Not found"


class ListingNotFound(NotFound):
    default_detail = "Listing not found"


class OfferNotFound(NotFound):
    default_detail = "Offer not found"


class UserNotFound(NotFound):
    default_detail = "User not found"


class Conflict(RentalError):
    status_code = 409
    default_detail = "Conflict"


class InvalidTransition(Conflict):
    default_detail = "Offer is no longer pending"


class UnsupportedCurrency(RentalError):
    status_code = 400

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Currency {code} not supported")


class UpstreamUnavailable(RentalError):
    status_code = 503
    default_detail = "Service temporarily unavailable"
