"""Fare estimate shown to the requester before payment."""

from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings

from common.utils import calculate_distance


def estimate_fare(pickup_lat, pickup_lon, dest_lat, dest_lon) -> Decimal:
    """Base fare plus a per-kilometre rate over the straight-line trip distance."""
    km = Decimal(str(calculate_distance(pickup_lat, pickup_lon, dest_lat, dest_lon) / 1000.0))
    fare = Decimal(str(settings.FARE_BASE_AMOUNT)) + Decimal(str(settings.FARE_PER_KM_AMOUNT)) * km
    return fare.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Major units (rupees) to minor units (paise)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
