"""
Booking management service - Core booking lifecycle operations.

This module handles:
    - Creating bookings against the nearest available ambulance
    - Accepting/rejecting bookings
    - Completing and cancelling bookings
    - Expiring bookings nobody accepted
    - Dashboard statistics
"""

from .booking_lifecycle import (
    BookingResult,
    create_booking,
    accept_booking,
    reject_booking,
    complete_booking,
    cancel_booking,
    mark_payment_received,
    expire_pending_booking,
    process_booking_timeouts,
    get_active_booking_for_requester,
    get_active_booking_for_ambulance,
    get_pending_queue,
    get_booking_for_participant,
)
from .fares import estimate_fare, to_minor_units
from .stats import DashboardStats, get_dashboard_stats

__all__ = [
    # Lifecycle operations
    "BookingResult",
    "create_booking",
    "accept_booking",
    "reject_booking",
    "complete_booking",
    "cancel_booking",
    "mark_payment_received",
    "expire_pending_booking",
    "process_booking_timeouts",
    # Queries
    "get_active_booking_for_requester",
    "get_active_booking_for_ambulance",
    "get_pending_queue",
    "get_booking_for_participant",
    # Fares and stats
    "estimate_fare",
    "to_minor_units",
    "DashboardStats",
    "get_dashboard_stats",
]
