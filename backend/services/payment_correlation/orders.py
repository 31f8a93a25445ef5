"""
Payment orders tied to bookings.

A PaymentTransaction is recorded as ``pending`` before the gateway is called,
so at most one attempt per booking is in flight (partial unique constraint
plus a row lock on the booking). Outcomes are written with the same
compare-and-swap discipline as booking transitions: one conditional UPDATE
on the ``outcome`` column.
"""

import logging
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from bookings.models import Booking
from payments import gateway
from payments.models import PaymentTransaction
from realtime.notifications import publish_payment_change
from services.booking_management import mark_payment_received
from services.exceptions import (
    AlreadyHandledError,
    BookingNotFoundError,
    ExternalServiceUnavailableError,
    InvalidTransitionError,
    PaymentFailedError,
    PaymentNotFoundError,
)

logger = logging.getLogger(__name__)

OUTCOMES = ('success', 'failed', 'cancelled')

# Outcome -> outcomes it may overwrite. A late gateway verdict still settles
# an attempt that was cancelled locally.
OUTCOME_SOURCES = {
    'success': ('pending', 'cancelled'),
    'failed': ('pending', 'cancelled'),
    'cancelled': ('pending',),
}


def get_pending_transaction(booking_id: int) -> Optional[PaymentTransaction]:
    return PaymentTransaction.objects.filter(booking_id=booking_id, outcome='pending').first()


def booking_id_for_order(order_ref: str) -> Optional[int]:
    """Booking correlated with a gateway order id, if we recorded one."""
    if not order_ref:
        return None
    return (
        PaymentTransaction.objects.filter(order_ref=order_ref)
        .values_list('booking_id', flat=True)
        .first()
    )


# ===================== Order Creation =====================

def create_order(booking_id: int, amount_minor_units: int, *, currency: Optional[str] = None) -> PaymentTransaction:
    """
    Create a gateway order for an accepted booking.

    Args:
        booking_id: Booking to collect payment for
        amount_minor_units: Positive integer amount in minor units (paise)
        currency: ISO currency code, defaults to settings.PAYMENT_CURRENCY

    Returns:
        The pending PaymentTransaction carrying the gateway order reference

    Raises:
        BookingNotFoundError: If the booking does not exist
        InvalidTransitionError: If the booking is not accepted
        AlreadyHandledError: If the booking is paid or an order is already open
        PaymentFailedError: If the amount is invalid or the gateway refuses the order
        ExternalServiceUnavailableError: If the gateway cannot be reached;
            the transaction stays pending
    """
    if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int) \
            or amount_minor_units <= 0:
        raise PaymentFailedError("Amount must be a positive integer in minor units")

    currency = currency or settings.PAYMENT_CURRENCY
    txn = _record_pending_transaction(booking_id, amount_minor_units, currency)

    try:
        order = gateway.create_order(
            amount=amount_minor_units,
            currency=currency,
            receipt=f"booking_{booking_id}",
            notes={"booking_id": str(booking_id), "transaction_id": str(txn.id)},
        )
    except gateway.GatewayUnavailableError as e:
        logger.warning("Payment %s for booking %s left pending: %s", txn.id, booking_id, e)
        raise ExternalServiceUnavailableError(
            "Payment service is unavailable. Please retry."
        ) from e
    except gateway.GatewayRejectedError as e:
        with transaction.atomic():
            _settle(txn, 'failed', reason=str(e))
        raise PaymentFailedError(str(e)) from e

    PaymentTransaction.objects.filter(pk=txn.pk).update(
        order_ref=order["id"], updated_at=timezone.now()
    )
    txn.refresh_from_db()
    logger.info("Payment %s for booking %s -> order %s", txn.id, booking_id, txn.order_ref)
    publish_payment_change(txn, 'payment_order_created')
    return txn


@transaction.atomic
def _record_pending_transaction(booking_id: int, amount: int, currency: str) -> PaymentTransaction:
    booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
    if booking is None:
        raise BookingNotFoundError()
    if booking.status != 'accepted':
        raise InvalidTransitionError(f"Cannot take payment for a {booking.status} booking")
    if booking.payment_status:
        raise AlreadyHandledError("This booking is already paid")

    existing = get_pending_transaction(booking_id)
    if existing is not None:
        if existing.order_ref:
            raise AlreadyHandledError("A payment is already in progress for this booking")
        # Earlier attempt never reached the gateway; supersede it
        _settle(existing, 'cancelled', reason="Superseded by a new payment attempt")

    try:
        with transaction.atomic():
            txn = PaymentTransaction.objects.create(
                booking=booking,
                amount=amount,
                currency=currency,
                outcome='pending',
            )
    except IntegrityError as e:
        raise AlreadyHandledError("A payment is already in progress for this booking") from e

    logger.info("Payment %s recorded for booking %s (%s %s)", txn.id, booking_id, amount, currency)
    return txn


# ===================== Outcomes =====================

def _find_transaction(booking_id: int, order_ref: str) -> PaymentTransaction:
    txn = (
        PaymentTransaction.objects.select_related('booking')
        .filter(booking_id=booking_id, order_ref=order_ref)
        .first()
    ) if order_ref else None
    if txn is not None:
        return txn

    # The gateway may have created the order while our request timed out:
    # adopt the booking's pending attempt that never learned its reference.
    orphan = (
        PaymentTransaction.objects.select_related('booking')
        .filter(booking_id=booking_id, outcome='pending', order_ref='')
        .first()
    )
    if orphan is None:
        raise PaymentNotFoundError(
            f"No payment for booking {booking_id} with order {order_ref or '(none)'}"
        )
    if order_ref:
        # An order already correlated elsewhere is never re-pointed at this booking
        if PaymentTransaction.objects.filter(order_ref=order_ref).exclude(pk=orphan.pk).exists():
            raise PaymentNotFoundError(
                f"Order {order_ref} does not belong to booking {booking_id}"
            )
        try:
            with transaction.atomic():
                PaymentTransaction.objects.filter(pk=orphan.pk, order_ref='').update(order_ref=order_ref)
        except IntegrityError as e:
            raise PaymentNotFoundError(
                f"Order {order_ref} does not belong to booking {booking_id}"
            ) from e
        orphan.order_ref = order_ref
        logger.info("Payment %s adopted order %s", orphan.id, order_ref)
    return orphan


def _settle(txn: PaymentTransaction, outcome: str, *, payment_ref: str = "", reason: str = "") -> bool:
    """Compare-and-swap ``txn.outcome``. Returns False if it already equals ``outcome``."""
    if txn.outcome == outcome:
        return False

    fields = {'outcome': outcome, 'updated_at': timezone.now()}
    if payment_ref:
        fields['payment_ref'] = payment_ref
    if reason:
        fields['failure_reason'] = reason

    updated = PaymentTransaction.objects.filter(
        pk=txn.pk, outcome__in=OUTCOME_SOURCES[outcome]
    ).update(**fields)
    txn.refresh_from_db()

    if not updated:
        if txn.outcome == outcome:
            return False
        raise AlreadyHandledError(f"This payment was already {txn.outcome}")

    logger.info("Payment %s -> %s", txn.id, outcome)
    publish_payment_change(txn, f'payment_{outcome}')
    return True


@transaction.atomic
def report_outcome(
    booking_id: int,
    order_ref: str,
    outcome: str,
    *,
    payment_ref: str = "",
    reason: str = "",
) -> PaymentTransaction:
    """
    Record the gateway's verdict on an order.

    ``success`` marks the booking paid; its lifecycle status is unchanged.
    ``failed`` and ``cancelled`` leave the payment flag alone. Reporting the
    outcome a transaction already has is a no-op, so webhooks may repeat.

    Raises:
        PaymentNotFoundError: If no transaction matches the booking and order
        AlreadyHandledError: If the transaction already has a different final outcome
        InvalidTransitionError: If ``outcome`` is not success, failed or cancelled
    """
    if outcome not in OUTCOMES:
        raise InvalidTransitionError(f"Unknown payment outcome '{outcome}'")

    txn = _find_transaction(booking_id, order_ref)
    changed = _settle(txn, outcome, payment_ref=payment_ref, reason=reason)

    if outcome == 'success':
        mark_payment_received(booking_id)
        if changed:
            # Booking is paid; any newer attempt is moot
            for other in PaymentTransaction.objects.filter(
                booking_id=booking_id, outcome='pending'
            ).exclude(pk=txn.pk):
                _settle(other, 'cancelled', reason="Booking already paid")

    return txn


@transaction.atomic
def cancel_order(booking_id: int) -> PaymentTransaction:
    """
    Cancel the booking's pending payment attempt.

    Raises:
        PaymentNotFoundError: If the booking has no pending transaction
    """
    txn = get_pending_transaction(booking_id)
    if txn is None:
        raise PaymentNotFoundError("No pending payment for this booking")
    _settle(txn, 'cancelled', reason="Cancelled before completion")
    return txn
