"""Shared helpers for DRF views."""

from rest_framework import status
from rest_framework.response import Response

from services.exceptions import (
    DispatchError,
    NotFoundError,
    NoResourceAvailableError,
    AlreadyHandledError,
    InvalidTransitionError,
    ActiveBookingExistsError,
    InvalidCoordinatesError,
    ExternalServiceUnavailableError,
    PaymentFailedError,
)

# Most specific classes first; the first isinstance match wins.
ERROR_STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (NoResourceAvailableError, status.HTTP_409_CONFLICT),
    (AlreadyHandledError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_400_BAD_REQUEST),
    (ActiveBookingExistsError, status.HTTP_400_BAD_REQUEST),
    (InvalidCoordinatesError, status.HTTP_400_BAD_REQUEST),
    (ExternalServiceUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PaymentFailedError, status.HTTP_402_PAYMENT_REQUIRED),
)


def error_response(exc: DispatchError, **extra) -> Response:
    """Translate a DispatchError into the API's error envelope."""
    status_code = status.HTTP_400_BAD_REQUEST
    for exc_class, code in ERROR_STATUS_CODES:
        if isinstance(exc, exc_class):
            status_code = code
            break
    return Response(
        {
            "success": False,
            "error": exc.code,
            "message": exc.message,
            **extra,
        },
        status=status_code,
    )


def forbidden(message: str) -> Response:
    return Response({"error": message}, status=status.HTTP_403_FORBIDDEN)
