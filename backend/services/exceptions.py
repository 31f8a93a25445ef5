"""
Error taxonomy for dispatch operations.

Every failure a caller can branch on is a DispatchError subclass carrying a
stable ``code``; views turn them into responses through common.api.
"""


class DispatchError(Exception):
    """Base class for all typed dispatch failures."""
    code = "dispatch_error"
    default_message = "Dispatch operation failed"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class NotFoundError(DispatchError):
    """Raised when an entity does not exist (or is not visible to the caller)."""
    code = "not_found"
    default_message = "Not found"


class BookingNotFoundError(NotFoundError):
    default_message = "Booking not found"


class AmbulanceNotFoundError(NotFoundError):
    default_message = "Ambulance not found"


class PaymentNotFoundError(NotFoundError):
    default_message = "Payment transaction not found"


class NoResourceAvailableError(DispatchError):
    """Raised when the locator finds no claimable ambulance."""
    code = "no_resource_available"
    default_message = "No ambulance is available nearby. Please try again shortly."


class AlreadyHandledError(DispatchError):
    """Raised when a concurrent caller already moved the entity on."""
    code = "already_handled"
    default_message = "This booking was already handled"


class InvalidTransitionError(DispatchError):
    """Raised when the current state does not permit the requested transition."""
    code = "invalid_transition"
    default_message = "This action is not allowed in the booking's current state"


class ActiveBookingExistsError(DispatchError):
    """Raised when a requester already has a pending or accepted booking."""
    code = "active_booking_exists"
    default_message = "You already have an active booking"


class InvalidCoordinatesError(DispatchError):
    code = "invalid_coordinates"
    default_message = "Latitude must be within [-90, 90] and longitude within [-180, 180]"


class ExternalServiceUnavailableError(DispatchError):
    """Raised when the routing or payment dependency cannot be reached."""
    code = "external_service_unavailable"
    default_message = "An external service is unavailable. Please retry."


class PaymentFailedError(DispatchError):
    code = "payment_failed"
    default_message = "Payment could not be processed"
