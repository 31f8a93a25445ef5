"""
Change propagation: fan out "something changed" signals to subscribers.

Groups:
    requester_<user_id>    bookings owned by a requester
    ambulance_<id>         one ambulance's own queue and availability
    booking_<id>           anyone watching a single booking
    fleet                  availability/location changes of all ambulances

Signals carry the entity id and its state at commit time, nothing more.
Delivery is best effort and at-least-once; subscribers re-fetch current
state instead of trusting payload order. Publishing happens in
``transaction.on_commit`` so a rolled-back mutation never notifies and a
failed delivery never undoes a committed one.
"""

from __future__ import annotations

import logging
from typing import Dict, Any, Iterable, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

logger = logging.getLogger(__name__)

FLEET_GROUP = "fleet"


def requester_group(requester_id) -> str:
    return f"requester_{requester_id}"


def ambulance_group(ambulance_id) -> str:
    return f"ambulance_{ambulance_id}"


def booking_group(booking_id) -> str:
    return f"booking_{booking_id}"


# ---------------------- Delivery ----------------------

def send_to_groups(groups: Iterable[str], payload: Dict[str, Any]) -> int:
    """
    Send one payload to several groups right away.

    Returns the number of groups the layer accepted. Failures are logged per
    group and never raised.
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("No channel layer configured; dropping %s", payload.get("event"))
        return 0

    delivered = 0
    for group in groups:
        try:
            async_to_sync(channel_layer.group_send)(group, payload)
            delivered += 1
        except Exception:
            logger.exception("Failed to deliver %s to %s", payload.get("event"), group)
    logger.debug("WS -> %s groups: %s", delivered, payload)
    return delivered


def _publish_on_commit(groups, payload: Dict[str, Any]) -> None:
    groups = list(groups)
    transaction.on_commit(lambda: send_to_groups(groups, payload))


# ---------------------- Booking Changes ----------------------

def booking_change_payload(booking, event: str, message: str = "") -> Dict[str, Any]:
    payload = {
        "type": "booking.changed",
        "event": event,
        "booking_id": booking.id,
        "status": booking.status,
        "payment_status": booking.payment_status,
        "ambulance_id": booking.ambulance_id,
    }
    if message:
        payload["message"] = message
    return payload


def publish_booking_change(booking, event: str, message: str = "") -> None:
    """
    Notify the requester, the assigned ambulance and booking watchers that a
    booking changed. Runs after the surrounding transaction commits.

    Args:
        booking: Booking instance in its post-mutation state
        event: booking_created, booking_accepted, booking_rejected,
            booking_completed, booking_cancelled, booking_paid, booking_updated
        message: Optional human-readable text for the client
    """
    groups = [requester_group(booking.requester_id), booking_group(booking.id)]
    if booking.ambulance_id:
        groups.append(ambulance_group(booking.ambulance_id))
    _publish_on_commit(groups, booking_change_payload(booking, event, message))


# ---------------------- Ambulance Changes ----------------------

def publish_ambulance_change(
    ambulance_id: int,
    event: str,
    extra: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Notify an ambulance's own group and the fleet group that the ambulance
    changed (availability flipped, location moved).
    """
    payload = {
        "type": "ambulance.changed",
        "event": event,
        "ambulance_id": ambulance_id,
        **(extra or {}),
    }
    _publish_on_commit([ambulance_group(ambulance_id), FLEET_GROUP], payload)


def publish_payment_change(transaction_obj, event: str) -> None:
    """Notify the booking's requester and watchers about a payment update."""
    booking = transaction_obj.booking
    payload = {
        "type": "payment.changed",
        "event": event,
        "booking_id": booking.id,
        "transaction_id": transaction_obj.id,
        "outcome": transaction_obj.outcome,
    }
    _publish_on_commit(
        [requester_group(booking.requester_id), booking_group(booking.id)],
        payload,
    )
