import hashlib
import hmac
import json

import requests
from django.db import IntegrityError, transaction
from django.test import TestCase, override_settings
from rest_framework.test import APIRequestFactory, force_authenticate
from unittest.mock import patch, MagicMock

from accounts.models import User
from ambulances.models import Ambulance
from bookings.models import Booking
from services import booking_management, payment_correlation
from services.exceptions import (
    AlreadyHandledError,
    ExternalServiceUnavailableError,
    InvalidTransitionError,
    PaymentFailedError,
    PaymentNotFoundError,
)
from . import gateway, views
from .models import PaymentTransaction

METERS_PER_DEGREE_LAT = 111194.93


def gateway_response(status_code=200, body=None):
    response = MagicMock(status_code=status_code, text=json.dumps(body or {}))
    response.json.return_value = body or {}
    return response


def order_response(order_id='order_Nx1', amount=4500):
    return gateway_response(200, {'id': order_id, 'amount': amount, 'currency': 'INR', 'status': 'created'})


def sign(secret, message):
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class PaymentTestCase(TestCase):
    def setUp(self):
        self.requester = User.objects.create_user(
            username='patient',
            password='pass1234',
            role='requester',
            phone_number='9000000000',
            last_latitude=10.0,
            last_longitude=10.0,
        )
        self.operator = User.objects.create_user(
            username='crew',
            password='pass1234',
            role='operator',
            phone_number='9100000000'
        )
        self.ambulance = Ambulance.objects.create(
            operator=self.operator,
            operator_name='Crew One',
            contact_number='9100000000',
            license_number='LIC-1',
            vehicle_number='AMB-1',
            latitude=10.0 + 500 / METERS_PER_DEGREE_LAT,
            longitude=10.0,
            is_verified=True,
        )
        self.booking = booking_management.create_booking(
            self.requester, 10.02, 10.02, search_radius=2000
        ).booking

    def accept(self):
        booking_management.accept_booking(self.booking.id, self.ambulance.id)

    def other_accepted_booking(self, mock_post):
        """A second accepted booking whose order call timed out."""
        requester = User.objects.create_user(
            username='neighbour', password='pass1234', role='requester', phone_number='9000000002',
            last_latitude=10.0, last_longitude=10.0,
        )
        operator = User.objects.create_user(
            username='crew_two', password='pass1234', role='operator', phone_number='9100000002'
        )
        ambulance = Ambulance.objects.create(
            operator=operator, operator_name='Crew Two', contact_number='9100000002',
            license_number='LIC-2', vehicle_number='AMB-2',
            latitude=10.0 + 800 / METERS_PER_DEGREE_LAT, longitude=10.0, is_verified=True,
        )
        booking = booking_management.create_booking(requester, 10.02, 10.02, search_radius=2000).booking
        booking_management.accept_booking(booking.id, ambulance.id)

        mock_post.side_effect = requests.Timeout('read timeout')
        with self.assertRaises(ExternalServiceUnavailableError):
            payment_correlation.create_order(booking.id, 9900)
        mock_post.side_effect = None
        return requester, booking


class GatewayTests(TestCase):
    @patch('payments.gateway.requests.post')
    def test_create_order(self, mock_post):
        mock_post.return_value = order_response()

        order = gateway.create_order(4500, 'INR', 'booking_7', notes={'booking_id': '7'})

        self.assertEqual(order['id'], 'order_Nx1')
        args, kwargs = mock_post.call_args
        self.assertTrue(args[0].endswith('/orders'))
        self.assertEqual(kwargs['json']['amount'], 4500)
        self.assertEqual(kwargs['json']['receipt'], 'booking_7')
        self.assertEqual(kwargs['auth'].username, 'rzp_test_key')

    @patch('payments.gateway.requests.post')
    def test_server_error_is_unavailable(self, mock_post):
        mock_post.return_value = gateway_response(502)
        with self.assertRaises(gateway.GatewayUnavailableError):
            gateway.create_order(4500, 'INR', 'booking_7')

    @patch('payments.gateway.requests.post')
    def test_timeout_is_unavailable(self, mock_post):
        mock_post.side_effect = requests.Timeout('read timeout')
        with self.assertRaises(gateway.GatewayUnavailableError):
            gateway.create_order(4500, 'INR', 'booking_7')

    @patch('payments.gateway.requests.post')
    def test_client_error_is_rejected(self, mock_post):
        mock_post.return_value = gateway_response(400, {
            'error': {'code': 'BAD_REQUEST_ERROR', 'description': 'The amount must be atleast INR 1.00'}
        })
        with self.assertRaises(gateway.GatewayRejectedError) as ctx:
            gateway.create_order(50, 'INR', 'booking_7')

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn('atleast', str(ctx.exception))

    @override_settings(RAZORPAY_KEY_ID='')
    @patch('payments.gateway.requests.post')
    def test_missing_credentials(self, mock_post):
        with self.assertRaises(gateway.GatewayRejectedError):
            gateway.create_order(4500, 'INR', 'booking_7')
        mock_post.assert_not_called()

    def test_checkout_signature(self):
        signature = sign('rzp_test_secret', b'order_Nx1|pay_Q1')
        self.assertTrue(gateway.verify_checkout_signature('order_Nx1', 'pay_Q1', signature))
        self.assertFalse(gateway.verify_checkout_signature('order_Nx1', 'pay_Q2', signature))
        self.assertFalse(gateway.verify_checkout_signature('order_Nx1', 'pay_Q1', ''))

    def test_webhook_signature(self):
        body = b'{"event": "payment.captured"}'
        self.assertTrue(gateway.verify_webhook_signature(body, sign('whsec_test', body)))
        self.assertFalse(gateway.verify_webhook_signature(body + b' ', sign('whsec_test', body)))


@patch('payments.gateway.requests.post')
class CreateOrderTests(PaymentTestCase):
    def test_order_for_accepted_booking(self, mock_post):
        self.accept()
        mock_post.return_value = order_response()

        txn = payment_correlation.create_order(self.booking.id, 4500)

        self.assertEqual(txn.outcome, 'pending')
        self.assertEqual(txn.order_ref, 'order_Nx1')
        self.assertEqual(txn.amount, 4500)
        self.assertEqual(txn.currency, 'INR')
        notes = mock_post.call_args[1]['json']['notes']
        self.assertEqual(notes['booking_id'], str(self.booking.id))

    def test_pending_booking_cannot_be_paid(self, mock_post):
        with self.assertRaises(InvalidTransitionError):
            payment_correlation.create_order(self.booking.id, 4500)
        mock_post.assert_not_called()

    def test_invalid_amount(self, mock_post):
        self.accept()
        for amount in (0, -10, 45.5, True):
            with self.assertRaises(PaymentFailedError):
                payment_correlation.create_order(self.booking.id, amount)
        self.assertFalse(PaymentTransaction.objects.exists())

    def test_second_order_while_one_is_open(self, mock_post):
        self.accept()
        mock_post.return_value = order_response()
        payment_correlation.create_order(self.booking.id, 4500)

        with self.assertRaises(AlreadyHandledError):
            payment_correlation.create_order(self.booking.id, 4500)
        self.assertEqual(PaymentTransaction.objects.count(), 1)

    def test_unreachable_gateway_leaves_attempt_pending(self, mock_post):
        self.accept()
        mock_post.side_effect = requests.ConnectionError('refused')

        with self.assertRaises(ExternalServiceUnavailableError):
            payment_correlation.create_order(self.booking.id, 4500)

        txn = PaymentTransaction.objects.get()
        self.assertEqual(txn.outcome, 'pending')
        self.assertEqual(txn.order_ref, '')
        self.booking.refresh_from_db()
        self.assertFalse(self.booking.payment_status)

    def test_retry_supersedes_attempt_without_order(self, mock_post):
        self.accept()
        mock_post.side_effect = requests.ConnectionError('refused')
        with self.assertRaises(ExternalServiceUnavailableError):
            payment_correlation.create_order(self.booking.id, 4500)

        mock_post.side_effect = None
        mock_post.return_value = order_response('order_Retry')
        txn = payment_correlation.create_order(self.booking.id, 4500)

        self.assertEqual(txn.order_ref, 'order_Retry')
        outcomes = sorted(PaymentTransaction.objects.values_list('outcome', flat=True))
        self.assertEqual(outcomes, ['cancelled', 'pending'])

    def test_rejected_order_is_failed(self, mock_post):
        self.accept()
        mock_post.return_value = gateway_response(400, {'error': {'description': 'Currency not supported'}})

        with self.assertRaises(PaymentFailedError):
            payment_correlation.create_order(self.booking.id, 4500, currency='XYZ')

        txn = PaymentTransaction.objects.get()
        self.assertEqual(txn.outcome, 'failed')
        self.assertEqual(txn.failure_reason, 'Currency not supported')


@patch('payments.gateway.requests.post')
class ReportOutcomeTests(PaymentTestCase):
    def setUp(self):
        super().setUp()
        self.accept()

    def open_order(self, mock_post, order_id='order_Nx1'):
        mock_post.return_value = order_response(order_id)
        return payment_correlation.create_order(self.booking.id, 4500)

    def test_success_marks_booking_paid_without_moving_status(self, mock_post):
        self.open_order(mock_post)

        txn = payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'success', payment_ref='pay_Q1')

        self.assertEqual(txn.outcome, 'success')
        self.assertEqual(txn.payment_ref, 'pay_Q1')
        self.booking.refresh_from_db()
        self.assertTrue(self.booking.payment_status)
        self.assertEqual(self.booking.status, 'accepted')

    def test_repeated_success_is_a_no_op(self, mock_post):
        self.open_order(mock_post)
        payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'success')

        with patch('realtime.notifications.send_to_groups') as mock_send:
            with self.captureOnCommitCallbacks(execute=True):
                txn = payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'success')

        self.assertEqual(txn.outcome, 'success')
        mock_send.assert_not_called()

    def test_failure_after_success_is_already_handled(self, mock_post):
        self.open_order(mock_post)
        payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'success')

        with self.assertRaises(AlreadyHandledError):
            payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'failed')
        self.booking.refresh_from_db()
        self.assertTrue(self.booking.payment_status)

    def test_failed_leaves_booking_unpaid(self, mock_post):
        self.open_order(mock_post)
        payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'failed', reason='Card declined')

        self.booking.refresh_from_db()
        self.assertFalse(self.booking.payment_status)
        self.assertEqual(PaymentTransaction.objects.get().failure_reason, 'Card declined')

    def test_late_success_settles_cancelled_attempt(self, mock_post):
        self.open_order(mock_post)
        payment_correlation.cancel_order(self.booking.id)

        txn = payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'success')

        self.assertEqual(txn.outcome, 'success')
        self.booking.refresh_from_db()
        self.assertTrue(self.booking.payment_status)

    def test_unknown_order(self, mock_post):
        self.open_order(mock_post)
        with self.assertRaises(PaymentNotFoundError):
            payment_correlation.report_outcome(self.booking.id, 'order_Other', 'success')

    def test_order_of_another_booking_is_not_adopted(self, mock_post):
        self.open_order(mock_post, 'order_A')
        payment_correlation.report_outcome(self.booking.id, 'order_A', 'success')
        _, other = self.other_accepted_booking(mock_post)

        with self.assertRaises(PaymentNotFoundError):
            payment_correlation.report_outcome(other.id, 'order_A', 'success')

        other.refresh_from_db()
        self.assertFalse(other.payment_status)
        self.assertEqual(PaymentTransaction.objects.filter(order_ref='order_A').count(), 1)
        self.assertEqual(payment_correlation.get_pending_transaction(other.id).order_ref, '')

    def test_order_ref_is_unique(self, mock_post):
        self.open_order(mock_post, 'order_A')
        payment_correlation.report_outcome(self.booking.id, 'order_A', 'success')
        _, other = self.other_accepted_booking(mock_post)

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                PaymentTransaction.objects.filter(booking_id=other.id).update(order_ref='order_A')

    def test_orphan_attempt_adopts_reported_order(self, mock_post):
        mock_post.side_effect = requests.Timeout('read timeout')
        with self.assertRaises(ExternalServiceUnavailableError):
            payment_correlation.create_order(self.booking.id, 4500)

        txn = payment_correlation.report_outcome(self.booking.id, 'order_Late', 'success')

        self.assertEqual(txn.order_ref, 'order_Late')
        self.assertEqual(payment_correlation.booking_id_for_order('order_Late'), self.booking.id)

    def test_unknown_outcome(self, mock_post):
        self.open_order(mock_post)
        with self.assertRaises(InvalidTransitionError):
            payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'refunded')

    def test_paid_booking_refuses_new_order(self, mock_post):
        self.open_order(mock_post)
        payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'success')

        with self.assertRaises(AlreadyHandledError):
            payment_correlation.create_order(self.booking.id, 4500)

    def test_cancel_without_pending_attempt(self, mock_post):
        with self.assertRaises(PaymentNotFoundError):
            payment_correlation.cancel_order(self.booking.id)

    def test_success_is_published(self, mock_post):
        self.open_order(mock_post)
        with patch('realtime.notifications.send_to_groups') as mock_send:
            with self.captureOnCommitCallbacks(execute=True):
                payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'success')

        events = [call[0][1]['event'] for call in mock_send.call_args_list]
        self.assertEqual(events, ['payment_success', 'booking_paid'])


@patch('payments.gateway.requests.post')
class PaymentViewTests(PaymentTestCase):
    def setUp(self):
        super().setUp()
        self.factory = APIRequestFactory()
        self.accept()

    def post(self, view, user, data=None, **kwargs):
        request = self.factory.post('/api/payments/', data or {}, format='json')
        force_authenticate(request, user=user)
        return view(request, **kwargs)

    def webhook(self, event, signature=None):
        body = json.dumps(event).encode()
        request = self.factory.post(
            '/api/payments/webhook/',
            body,
            content_type='application/json',
            HTTP_X_RAZORPAY_SIGNATURE=signature if signature is not None else sign('whsec_test', body),
        )
        return views.razorpay_webhook(request)

    def captured_event(self, order_id='order_Nx1'):
        return {
            'event': 'payment.captured',
            'payload': {
                'payment': {
                    'entity': {
                        'id': 'pay_Q1',
                        'order_id': order_id,
                        'amount': 4500,
                        'notes': {'booking_id': str(self.booking.id)},
                    }
                }
            },
        }

    def test_create_order_defaults_to_estimated_cost(self, mock_post):
        mock_post.return_value = order_response()

        response = self.post(views.create_payment_order, self.requester, booking_id=self.booking.id)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['order_id'], 'order_Nx1')
        self.assertEqual(response.data['key_id'], 'rzp_test_key')
        self.assertEqual(
            mock_post.call_args[1]['json']['amount'],
            booking_management.to_minor_units(self.booking.estimated_cost),
        )

    def test_operator_cannot_open_order(self, mock_post):
        response = self.post(views.create_payment_order, self.operator, {'amount': 4500}, booking_id=self.booking.id)
        self.assertEqual(response.status_code, 403)

    def test_gateway_down_is_503(self, mock_post):
        mock_post.return_value = gateway_response(503)
        response = self.post(views.create_payment_order, self.requester, {'amount': 4500}, booking_id=self.booking.id)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.data['error'], 'external_service_unavailable')

    def test_checkout_verification(self, mock_post):
        mock_post.return_value = order_response()
        payment_correlation.create_order(self.booking.id, 4500)

        response = self.post(views.verify_payment, self.requester, {
            'razorpay_order_id': 'order_Nx1',
            'razorpay_payment_id': 'pay_Q1',
            'razorpay_signature': 'forged',
        }, booking_id=self.booking.id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'invalid_signature')

        response = self.post(views.verify_payment, self.requester, {
            'razorpay_order_id': 'order_Nx1',
            'razorpay_payment_id': 'pay_Q1',
            'razorpay_signature': sign('rzp_test_secret', b'order_Nx1|pay_Q1'),
        }, booking_id=self.booking.id)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data['payment_status'])

    def test_checkout_of_another_booking_is_refused(self, mock_post):
        mock_post.return_value = order_response('order_A')
        payment_correlation.create_order(self.booking.id, 4500)
        checkout = {
            'razorpay_order_id': 'order_A',
            'razorpay_payment_id': 'pay_A',
            'razorpay_signature': sign('rzp_test_secret', b'order_A|pay_A'),
        }
        self.assertEqual(
            self.post(views.verify_payment, self.requester, checkout, booking_id=self.booking.id).status_code,
            200
        )
        other_requester, other = self.other_accepted_booking(mock_post)

        response = self.post(views.verify_payment, other_requester, checkout, booking_id=other.id)

        self.assertEqual(response.status_code, 404)
        other.refresh_from_db()
        self.assertFalse(other.payment_status)

    def test_cancel_payment(self, mock_post):
        mock_post.return_value = order_response()
        payment_correlation.create_order(self.booking.id, 4500)

        response = self.post(views.cancel_payment, self.operator, booking_id=self.booking.id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['transaction']['outcome'], 'cancelled')

    def test_webhook_marks_booking_paid(self, mock_post):
        mock_post.return_value = order_response()
        payment_correlation.create_order(self.booking.id, 4500)

        response = self.webhook(self.captured_event())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'ok')
        self.booking.refresh_from_db()
        self.assertTrue(self.booking.payment_status)

        # Razorpay redelivers
        response = self.webhook(self.captured_event())
        self.assertEqual(response.status_code, 200)

    def test_webhook_with_bad_signature(self, mock_post):
        response = self.webhook(self.captured_event(), signature='0' * 64)
        self.assertEqual(response.status_code, 403)

    def test_webhook_ignores_other_events(self, mock_post):
        response = self.webhook({'event': 'refund.created', 'payload': {}})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'ignored')

    def test_webhook_failure_after_success_is_ignored(self, mock_post):
        mock_post.return_value = order_response()
        payment_correlation.create_order(self.booking.id, 4500)
        payment_correlation.report_outcome(self.booking.id, 'order_Nx1', 'success')

        event = self.captured_event()
        event['event'] = 'payment.failed'
        response = self.webhook(event)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'ignored')

    def test_webhook_for_unknown_order(self, mock_post):
        event = {
            'event': 'payment.captured',
            'payload': {'payment': {'entity': {'id': 'pay_X', 'order_id': 'order_Unknown', 'notes': []}}},
        }
        response = self.webhook(event)
        self.assertEqual(response.status_code, 404)


class EmergencyTripTests(TestCase):
    """A full trip: locate, accept, pay, complete."""

    @patch('payments.gateway.requests.post')
    def test_trip_end_to_end(self, mock_post):
        requester = User.objects.create_user(
            username='caller', password='pass1234', role='requester', phone_number='9000000001',
            last_latitude=10.0, last_longitude=10.0,
        )
        operator = User.objects.create_user(
            username='medic', password='pass1234', role='operator', phone_number='9100000001'
        )
        ambulance = Ambulance.objects.create(
            operator=operator, operator_name='Medic', contact_number='9100000001',
            license_number='LIC-E2E', vehicle_number='AMB-E2E',
            latitude=10.0 + 500 / METERS_PER_DEGREE_LAT, longitude=10.0, is_verified=True,
        )

        booking = booking_management.create_booking(requester, 10.02, 10.02, search_radius=2000).booking
        self.assertEqual(booking.ambulance_id, ambulance.id)
        ambulance.refresh_from_db()
        self.assertFalse(ambulance.is_available)

        booking_management.accept_booking(booking.id, ambulance.id)

        mock_post.return_value = order_response('order_Trip', 4500)
        txn = payment_correlation.create_order(booking.id, 4500)
        payment_correlation.report_outcome(booking.id, txn.order_ref, 'success', payment_ref='pay_Trip')

        booking.refresh_from_db()
        self.assertTrue(booking.payment_status)
        self.assertEqual(booking.status, 'accepted')

        booking_management.complete_booking(booking.id, ambulance.id)

        booking = Booking.objects.get(pk=booking.id)
        self.assertEqual(booking.status, 'completed')
        self.assertTrue(booking.payment_status)
        ambulance.refresh_from_db()
        self.assertTrue(ambulance.is_available)
