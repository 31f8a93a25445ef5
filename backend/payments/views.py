import json
import logging

from django.conf import settings
from rest_framework import status
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from common.api import error_response, forbidden
from services.booking_management import get_booking_for_participant, to_minor_units
from services.exceptions import AlreadyHandledError, DispatchError
from services import payment_correlation
from . import gateway
from .serializers import (
    PaymentTransactionSerializer,
    OrderCreateSerializer,
    CheckoutVerifySerializer,
)

logger = logging.getLogger(__name__)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_payment_order(request, booking_id):
    """
    Open a Razorpay order for an accepted booking.

    POST Body (optional):
    {
        "amount": 4500,
        "currency": "INR"
    }
    """
    serializer = OrderCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        booking = get_booking_for_participant(booking_id, request.user)
        if booking.requester_id != request.user.id:
            return forbidden('Only the requester can pay for a booking')

        amount = serializer.validated_data.get('amount') or to_minor_units(booking.estimated_cost)
        txn = payment_correlation.create_order(
            booking.id,
            amount,
            currency=serializer.validated_data.get('currency'),
        )
    except DispatchError as e:
        return error_response(e, booking_id=booking_id)

    return Response({
        'success': True,
        'transaction': PaymentTransactionSerializer(txn).data,
        'order_id': txn.order_ref,
        'amount': txn.amount,
        'currency': txn.currency,
        'key_id': settings.RAZORPAY_KEY_ID,
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def verify_payment(request, booking_id):
    """Checkout callback: check the signature, then record success."""
    serializer = CheckoutVerifySerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    if not gateway.verify_checkout_signature(
        data['razorpay_order_id'], data['razorpay_payment_id'], data['razorpay_signature']
    ):
        logger.warning("Bad checkout signature for booking %s", booking_id)
        return Response(
            {'success': False, 'error': 'invalid_signature', 'message': 'Payment signature mismatch'},
            status=status.HTTP_400_BAD_REQUEST
        )

    try:
        booking = get_booking_for_participant(booking_id, request.user)
        if booking.requester_id != request.user.id:
            return forbidden('Only the requester can confirm a payment')

        txn = payment_correlation.report_outcome(
            booking.id,
            data['razorpay_order_id'],
            'success',
            payment_ref=data['razorpay_payment_id'],
        )
    except DispatchError as e:
        return error_response(e, booking_id=booking_id)

    return Response({
        'success': True,
        'message': 'Payment received',
        'transaction': PaymentTransactionSerializer(txn).data,
        'payment_status': True,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_payment(request, booking_id):
    """Abandon the booking's pending payment attempt (requester or operator)."""
    try:
        booking = get_booking_for_participant(booking_id, request.user)
        txn = payment_correlation.cancel_order(booking.id)
    except DispatchError as e:
        return error_response(e, booking_id=booking_id)

    return Response({
        'success': True,
        'message': 'Payment cancelled',
        'transaction': PaymentTransactionSerializer(txn).data,
    })


# Razorpay webhook event -> payment outcome
WEBHOOK_OUTCOMES = {
    'payment.captured': 'success',
    'order.paid': 'success',
    'payment.failed': 'failed',
}


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def razorpay_webhook(request):
    """
    Razorpay webhook receiver.

    Authenticated by the X-Razorpay-Signature header. Razorpay retries until
    it gets a 2xx, so repeated or out-of-date events answer 200.
    """
    body = request.body
    signature = request.headers.get('X-Razorpay-Signature', '')
    if not gateway.verify_webhook_signature(body, signature):
        logger.error("Razorpay webhook with invalid signature")
        return Response({'status': 'error', 'message': 'Invalid signature'}, status=status.HTTP_403_FORBIDDEN)

    try:
        event = json.loads(body)
    except ValueError:
        logger.error("Razorpay webhook: invalid JSON")
        return Response({'status': 'error', 'message': 'Invalid JSON'}, status=status.HTTP_400_BAD_REQUEST)

    event_name = event.get('event', '')
    outcome = WEBHOOK_OUTCOMES.get(event_name)
    if outcome is None:
        logger.info("Razorpay webhook %s ignored", event_name)
        return Response({'status': 'ignored'})

    payload = event.get('payload') or {}
    payment = (payload.get('payment') or {}).get('entity') or {}
    order = (payload.get('order') or {}).get('entity') or {}
    order_id = payment.get('order_id') or order.get('id') or ''

    booking_id = payment_correlation.booking_id_for_order(order_id) or _booking_id_from_entities(order, payment)
    if booking_id is None:
        logger.error("Razorpay webhook %s: no booking for order %s", event_name, order_id)
        return Response({'status': 'error', 'message': 'Unknown order'}, status=status.HTTP_404_NOT_FOUND)

    try:
        payment_correlation.report_outcome(
            booking_id,
            order_id,
            outcome,
            payment_ref=payment.get('id', ''),
            reason=payment.get('error_description') or '',
        )
    except AlreadyHandledError as e:
        logger.info("Razorpay webhook %s for order %s: %s", event_name, order_id, e)
        return Response({'status': 'ignored', 'message': e.message})
    except DispatchError as e:
        return error_response(e)

    logger.info("Razorpay webhook %s processed for booking %s", event_name, booking_id)
    return Response({'status': 'ok'})


def _booking_id_from_entities(order, payment):
    """Fall back to the notes/receipt we attached when creating the order."""
    for entity in (order, payment):
        notes = entity.get('notes') or {}
        if isinstance(notes, dict) and str(notes.get('booking_id', '')).isdigit():
            return int(notes['booking_id'])
    receipt = order.get('receipt') or ''
    if receipt.startswith('booking_') and receipt[len('booking_'):].isdigit():
        return int(receipt[len('booking_'):])
    return None
