"""Celery tasks for booking-related background processing."""

from celery import shared_task
import logging

logger = logging.getLogger(__name__)


@shared_task
def expire_pending_booking_task(booking_id: int):
    """
    Celery task to cancel a booking nobody accepted in time.
    
    This task is scheduled when a booking is created. If the booking is
    still pending when it runs, it is cancelled by the system and the
    ambulance returns to the pool. Otherwise nothing happens.
    """
    from services.booking_management import expire_pending_booking

    booking = expire_pending_booking(booking_id)
    if booking is None:
        logger.info(f"Booking {booking_id} already handled; nothing to expire")
        return False

    logger.info(f"Expired booking {booking_id} after acceptance timeout")
    return True
