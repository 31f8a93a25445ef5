"""
Availability ledger: the single writer of ``Ambulance.is_available``.

Every write is one conditional UPDATE keyed by ambulance id, so two callers
racing for the same ambulance cannot both flip it. The ledger does not know
about bookings; the booking lifecycle only calls it in lockstep with its own
transitions.
"""

import logging
from typing import Optional

from django.utils import timezone

from ambulances.models import Ambulance
from realtime.notifications import publish_ambulance_change
from services.exceptions import AmbulanceNotFoundError

logger = logging.getLogger(__name__)


def set_available(ambulance_id: int, available: bool, *, expected: Optional[bool] = None) -> bool:
    """
    Set an ambulance's availability flag.
    
    Args:
        ambulance_id: Ambulance primary key
        available: New value of the flag
        expected: If given, only write when the current value equals this
            (compare-and-swap)
    
    Returns:
        True if the row was written, False if ``expected`` did not match
    
    Raises:
        AmbulanceNotFoundError: If no such ambulance exists
    """
    qs = Ambulance.objects.filter(pk=ambulance_id)
    if expected is not None:
        qs = qs.filter(is_available=expected)

    updated = qs.update(is_available=available, availability_changed_at=timezone.now())

    if updated == 0:
        if not Ambulance.objects.filter(pk=ambulance_id).exists():
            raise AmbulanceNotFoundError(f"Ambulance {ambulance_id} not found")
        logger.info(
            "Ledger CAS on ambulance %s lost (expected available=%s)",
            ambulance_id, expected,
        )
        return False

    logger.info("Ambulance %s availability -> %s", ambulance_id, available)
    publish_ambulance_change(
        ambulance_id,
        "ambulance_availability_changed",
        {"is_available": available},
    )
    return True


def is_available(ambulance_id: int) -> bool:
    """Current availability flag of an ambulance."""
    value = (
        Ambulance.objects.filter(pk=ambulance_id)
        .values_list("is_available", flat=True)
        .first()
    )
    if value is None:
        raise AmbulanceNotFoundError(f"Ambulance {ambulance_id} not found")
    return value


def claim(ambulance_id: int) -> bool:
    """Take an available ambulance. False if someone else got it first."""
    return set_available(ambulance_id, False, expected=True)


def release(ambulance_id: int) -> bool:
    """Make an ambulance bookable again."""
    return set_available(ambulance_id, True)
