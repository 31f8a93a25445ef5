"""
Core booking lifecycle operations.

Lifecycle:
    pending  -> accepted | rejected | cancelled
    accepted -> completed | cancelled

Every transition is a single conditional UPDATE
(``... WHERE id = ? AND status IN (<allowed sources>)``). When two callers
race, the database picks exactly one winner; the loser sees zero rows and
gets AlreadyHandledError. Ledger writes happen in the same database
transaction as the status change, so availability always moves in lockstep
with the booking.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Dict, Any, List

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from accounts.services import refresh_requester_location
from bookings.models import Booking
from common.utils import is_valid_coordinate
from realtime.notifications import publish_booking_change
from services import availability
from services.matching import find_nearest, default_radius
from services.routing import estimate_route
from services.exceptions import (
    BookingNotFoundError,
    NoResourceAvailableError,
    AlreadyHandledError,
    InvalidTransitionError,
    ActiveBookingExistsError,
    InvalidCoordinatesError,
)
from .fares import estimate_fare

logger = logging.getLogger(__name__)

# Locator attempts in create_booking: the first try plus one retry after a lost claim.
CLAIM_ATTEMPTS = 2


@dataclass
class BookingResult:
    """Result object for booking operations."""
    success: bool
    booking: Optional[Booking] = None
    message: str = ""
    extra: Optional[Dict[str, Any]] = None


# ===================== Queries =====================

def get_active_booking_for_requester(requester) -> Optional[Booking]:
    """Return the requester's pending/accepted booking, if any."""
    return Booking.objects.filter(
        requester=requester,
        status__in=Booking.ACTIVE_STATUSES,
    ).select_related('ambulance').first()


def get_active_booking_for_ambulance(ambulance_id: int) -> Optional[Booking]:
    """The booking an ambulance is currently serving."""
    return Booking.objects.filter(
        ambulance_id=ambulance_id,
        status='accepted',
    ).select_related('requester').first()


def get_pending_queue(ambulance_id: int) -> List[Booking]:
    """Pending bookings waiting on this ambulance's answer, oldest first."""
    return list(
        Booking.objects.filter(ambulance_id=ambulance_id, status='pending')
        .select_related('requester')
        .order_by('created_at')
    )


def get_booking_for_participant(booking_id: int, user) -> Booking:
    """
    A booking visible to ``user``: its requester or the operator of its ambulance.

    Raises:
        BookingNotFoundError: If the booking does not exist or the user is not part of it
    """
    booking = (
        Booking.objects.select_related('requester', 'ambulance')
        .filter(pk=booking_id)
        .first()
    )
    if booking is None:
        raise BookingNotFoundError()
    is_requester = booking.requester_id == user.id
    is_operator = booking.ambulance is not None and booking.ambulance.operator_id == user.id
    if not (is_requester or is_operator):
        raise BookingNotFoundError()
    return booking


# ===================== Requester Operations =====================

def create_booking(
    requester,
    destination_latitude,
    destination_longitude,
    *,
    pickup_latitude=None,
    pickup_longitude=None,
    destination_name: str = "",
    search_radius: Optional[int] = None,
) -> BookingResult:
    """
    Create a booking against the nearest available ambulance.
    
    Locating, claiming the ambulance and inserting the booking happen in one
    transaction. If the claim loses a race, the locator runs once more.
    
    Args:
        requester: User model instance (requester)
        destination_latitude: Destination latitude
        destination_longitude: Destination longitude
        pickup_latitude: Pickup latitude (defaults to last known position)
        pickup_longitude: Pickup longitude (defaults to last known position)
        destination_name: Human-readable destination (hospital name)
        search_radius: Search radius in meters
    
    Returns:
        BookingResult with the pending booking
    
    Raises:
        InvalidCoordinatesError: If pickup is unknown or any coordinate is out of range
        ActiveBookingExistsError: If the requester already has an active booking
        NoResourceAvailableError: If no ambulance could be claimed
    """
    explicit_pickup = pickup_latitude is not None and pickup_longitude is not None
    if not explicit_pickup:
        pickup_latitude = requester.last_latitude
        pickup_longitude = requester.last_longitude
        if pickup_latitude is None or pickup_longitude is None:
            raise InvalidCoordinatesError("Pickup location unknown. Share your location and try again.")

    if not is_valid_coordinate(pickup_latitude, pickup_longitude):
        raise InvalidCoordinatesError("Invalid pickup coordinates")
    if not is_valid_coordinate(destination_latitude, destination_longitude):
        raise InvalidCoordinatesError("Invalid destination coordinates")

    radius = search_radius or default_radius()

    with transaction.atomic():
        # Serialize concurrent creates by the same requester
        get_user_model().objects.select_for_update().filter(pk=requester.pk).first()

        if explicit_pickup:
            refresh_requester_location(requester, pickup_latitude, pickup_longitude)

        if get_active_booking_for_requester(requester):
            raise ActiveBookingExistsError()

        ambulance = _claim_nearest_ambulance(pickup_latitude, pickup_longitude, radius)

        booking = Booking.objects.create(
            requester=requester,
            ambulance=ambulance,
            pickup_latitude=pickup_latitude,
            pickup_longitude=pickup_longitude,
            destination_latitude=destination_latitude,
            destination_longitude=destination_longitude,
            destination_name=destination_name,
            search_radius=radius,
            status='pending',
            estimated_cost=estimate_fare(
                pickup_latitude, pickup_longitude,
                destination_latitude, destination_longitude,
            ),
        )

        logger.info(
            "Booking %s created for requester %s with ambulance %s",
            booking.id, requester.id, ambulance.id,
        )
        publish_booking_change(booking, 'booking_created', 'New emergency booking')
        _schedule_acceptance_timeout(booking.id)

    eta_known = _attach_route_estimate(booking, ambulance)

    return BookingResult(
        success=True,
        booking=booking,
        message="Ambulance found. Waiting for the operator to accept.",
        extra={"eta_available": eta_known},
    )


def _claim_nearest_ambulance(lat, lon, radius):
    """Locate and claim an ambulance, retrying the locator once on a lost claim."""
    for attempt in range(CLAIM_ATTEMPTS):
        ambulance = find_nearest(lat, lon, radius)
        if ambulance is None:
            break
        if availability.claim(ambulance.id):
            return ambulance
        logger.info(
            "Ambulance %s was taken concurrently (attempt %d)", ambulance.id, attempt + 1
        )
    raise NoResourceAvailableError()


def _attach_route_estimate(booking: Booking, ambulance) -> bool:
    """Store the ambulance-to-pickup ETA. Routing failures leave it unknown."""
    if ambulance.latitude is None or ambulance.longitude is None:
        return False

    estimate = estimate_route(
        ambulance.latitude, ambulance.longitude,
        booking.pickup_latitude, booking.pickup_longitude,
    )
    if not estimate.available:
        return False

    Booking.objects.filter(pk=booking.pk).update(
        estimated_time_seconds=estimate.duration_seconds,
        route_distance_meters=estimate.distance_meters,
    )
    booking.estimated_time_seconds = estimate.duration_seconds
    booking.route_distance_meters = estimate.distance_meters
    publish_booking_change(booking, 'booking_updated')
    return True


def _schedule_acceptance_timeout(booking_id: int):
    timeout = settings.BOOKING_ACCEPT_TIMEOUT_SECONDS
    if timeout <= 0:
        return

    def schedule():
        from bookings.tasks import expire_pending_booking_task
        try:
            expire_pending_booking_task.apply_async((booking_id,), countdown=timeout)
        except Exception:
            logger.exception("Failed to schedule acceptance timeout for booking %s", booking_id)

    transaction.on_commit(schedule)


# ===================== Transitions =====================

def _sources_for(target: str) -> List[str]:
    return [source for source, targets in Booking.TRANSITIONS.items() if target in targets]


def _apply_transition(
    booking_id: int,
    target: str,
    *,
    ambulance_id: Optional[int] = None,
    requester_id: Optional[int] = None,
    sources: Optional[List[str]] = None,
    **fields,
) -> Booking:
    """
    Compare-and-swap the booking's status to ``target``.

    The UPDATE only matches rows whose status is an allowed source of
    ``target`` (and, when given, whose ambulance/requester match).
    """
    if sources is None:
        sources = _sources_for(target)
    qs = Booking.objects.filter(pk=booking_id, status__in=sources)
    if ambulance_id is not None:
        qs = qs.filter(ambulance_id=ambulance_id)
    if requester_id is not None:
        qs = qs.filter(requester_id=requester_id)

    updated = qs.update(status=target, **fields)
    if updated == 0:
        _raise_transition_failure(booking_id, target, ambulance_id, requester_id)

    logger.info("Booking %s -> %s", booking_id, target)
    return Booking.objects.select_related('requester', 'ambulance').get(pk=booking_id)


def _raise_transition_failure(booking_id, target, ambulance_id, requester_id):
    """Explain why a compare-and-swap matched no rows."""
    booking = Booking.objects.filter(pk=booking_id).first()
    if booking is None:
        raise BookingNotFoundError()

    if requester_id is not None and booking.requester_id != requester_id:
        raise BookingNotFoundError()

    if ambulance_id is not None and booking.ambulance_id != ambulance_id:
        if target == 'accepted':
            raise AlreadyHandledError("This booking is assigned to another ambulance")
        raise BookingNotFoundError("Booking not found or not assigned to your ambulance")

    # Lost the race to a caller making the same transition
    if booking.status == target:
        raise AlreadyHandledError(f"This booking was already {booking.status}")

    raise InvalidTransitionError(
        f"Cannot move a {booking.status} booking to {target}"
    )


def _release_ambulance(booking: Booking):
    if booking.ambulance_id:
        availability.release(booking.ambulance_id)


# ===================== Ambulance Operations =====================

@transaction.atomic
def accept_booking(booking_id: int, ambulance_id: int) -> BookingResult:
    """
    Accept a pending booking assigned to this ambulance.
    
    The ambulance stays unavailable (it was claimed at creation).
    
    Args:
        booking_id: ID of the booking to accept
        ambulance_id: ID of the accepting ambulance
    
    Returns:
        BookingResult with the accepted booking
    
    Raises:
        AlreadyHandledError: If another caller moved the booking first or it
            belongs to another ambulance
        InvalidTransitionError: If the booking is not pending
    """
    booking = _apply_transition(
        booking_id, 'accepted',
        ambulance_id=ambulance_id,
        accepted_at=timezone.now(),
    )
    publish_booking_change(booking, 'booking_accepted', 'Your ambulance is on the way.')
    return BookingResult(
        success=True,
        booking=booking,
        message="Booking accepted. Navigate to pickup location."
    )


@transaction.atomic
def reject_booking(booking_id: int, ambulance_id: Optional[int] = None) -> BookingResult:
    """Reject a pending booking and return the ambulance to the pool."""
    booking = _apply_transition(
        booking_id, 'rejected',
        ambulance_id=ambulance_id,
        rejected_at=timezone.now(),
    )
    _release_ambulance(booking)
    publish_booking_change(
        booking,
        'booking_rejected',
        'The ambulance could not take your request. Please book again.'
    )
    return BookingResult(success=True, booking=booking, message="Booking rejected.")


@transaction.atomic
def complete_booking(booking_id: int, ambulance_id: int) -> BookingResult:
    """Complete an accepted booking; the ambulance becomes available again."""
    booking = _apply_transition(
        booking_id, 'completed',
        ambulance_id=ambulance_id,
        completed_at=timezone.now(),
    )
    _release_ambulance(booking)
    publish_booking_change(booking, 'booking_completed', 'Your trip has been completed.')
    return BookingResult(success=True, booking=booking, message="Booking completed successfully")


@transaction.atomic
def cancel_booking(
    booking_id: int,
    *,
    requester_id: Optional[int] = None,
    ambulance_id: Optional[int] = None,
    reason: str = "",
    cancelled_by: str = "requester",
) -> BookingResult:
    """
    Cancel a pending or accepted booking.
    
    Args:
        booking_id: ID of the booking to cancel
        requester_id: Restrict to bookings owned by this requester
        ambulance_id: Restrict to bookings assigned to this ambulance
        reason: Cancellation reason
        cancelled_by: requester, operator or system
    
    Returns:
        BookingResult with cancellation status
    """
    booking = _apply_transition(
        booking_id, 'cancelled',
        ambulance_id=ambulance_id,
        requester_id=requester_id,
        cancelled_at=timezone.now(),
        cancellation_reason=reason or "No reason provided",
        cancelled_by=cancelled_by,
    )
    _release_ambulance(booking)
    publish_booking_change(booking, 'booking_cancelled', 'This booking was cancelled.')
    return BookingResult(
        success=True,
        booking=booking,
        message="Booking cancelled successfully",
        extra={"was_accepted": booking.accepted_at is not None},
    )


# ===================== Payment Flag =====================

@transaction.atomic
def mark_payment_received(booking_id: int) -> Booking:
    """
    Set the booking's payment flag. Lifecycle status is left untouched.
    Repeated calls are no-ops.
    """
    updated = Booking.objects.filter(pk=booking_id, payment_status=False).update(payment_status=True)
    booking = Booking.objects.filter(pk=booking_id).first()
    if booking is None:
        raise BookingNotFoundError()
    if updated:
        logger.info("Booking %s marked paid", booking_id)
        publish_booking_change(booking, 'booking_paid', 'Payment received.')
    return booking


# ===================== Timeouts =====================

def expire_pending_booking(booking_id: int) -> Optional[Booking]:
    """
    Cancel a booking nobody accepted in time.

    Returns the cancelled booking, or None if it had already moved on.
    """
    try:
        with transaction.atomic():
            booking = _apply_transition(
                booking_id, 'cancelled',
                sources=['pending'],
                cancelled_at=timezone.now(),
                cancellation_reason="No response from the ambulance operator",
                cancelled_by="system",
            )
            _release_ambulance(booking)
            publish_booking_change(
                booking,
                'booking_expired',
                'No ambulance responded in time. Please book again.'
            )
    except (AlreadyHandledError, InvalidTransitionError, BookingNotFoundError) as e:
        logger.info("Booking %s not expired: %s", booking_id, e)
        return None
    return booking


def process_booking_timeouts(timeout_seconds: Optional[int] = None) -> int:
    """
    Expire pending bookings older than ``timeout_seconds``.

    Sweep used when no Celery worker runs the per-booking timeout task.
    Returns the number of bookings cancelled.
    """
    if timeout_seconds is None:
        timeout_seconds = settings.BOOKING_ACCEPT_TIMEOUT_SECONDS

    cutoff = timezone.now() - timedelta(seconds=timeout_seconds)
    stale_ids = list(
        Booking.objects.filter(status='pending', created_at__lt=cutoff)
        .order_by('created_at')
        .values_list('id', flat=True)
    )

    expired = 0
    for booking_id in stale_ids:
        if expire_pending_booking(booking_id) is not None:
            expired += 1

    return expired
