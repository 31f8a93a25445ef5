import threading
from datetime import timedelta

from django.core.management import call_command
from django.db import connection, transaction
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate
from unittest.mock import patch, MagicMock

from accounts.models import User
from ambulances.models import Ambulance
from services import availability, booking_management
from services.exceptions import (
    ActiveBookingExistsError,
    AlreadyHandledError,
    BookingNotFoundError,
    InvalidCoordinatesError,
    InvalidTransitionError,
    NoResourceAvailableError,
)
from .models import Booking
from .tasks import expire_pending_booking_task
from . import views

METERS_PER_DEGREE_LAT = 111194.93


def make_operator(name, lat, lon):
    operator = User.objects.create_user(
        username=name,
        password='operator1234',
        role='operator',
        phone_number='9100000000'
    )
    ambulance = Ambulance.objects.create(
        operator=operator,
        operator_name=name,
        contact_number='9100000000',
        license_number=f'LIC-{name}',
        vehicle_number=f'AMB-{name}',
        latitude=lat,
        longitude=lon,
        is_verified=True,
    )
    return operator, ambulance


class BookingTestCase(TestCase):
    def setUp(self):
        self.requester = User.objects.create_user(
            username='requester',
            password='pass1234',
            role='requester',
            phone_number='9000000000',
            last_latitude=10.0,
            last_longitude=10.0,
        )
        self.operator_one, self.ambulance_one = make_operator(
            'operator_one', 10.0 + 500 / METERS_PER_DEGREE_LAT, 10.0
        )
        self.operator_two, self.ambulance_two = make_operator(
            'operator_two', 10.0 + 1500 / METERS_PER_DEGREE_LAT, 10.0
        )

    def create_booking(self, **kwargs):
        return booking_management.create_booking(
            self.requester, 10.05, 10.05, search_radius=2000, **kwargs
        ).booking

    def assertAvailable(self, ambulance, expected):
        ambulance.refresh_from_db()
        self.assertEqual(ambulance.is_available, expected)


class CreateBookingTests(BookingTestCase):
    def test_create_claims_nearest_ambulance(self):
        result = booking_management.create_booking(self.requester, 10.05, 10.05, search_radius=2000)

        booking = result.booking
        self.assertTrue(result.success)
        self.assertEqual(booking.status, 'pending')
        self.assertEqual(booking.ambulance_id, self.ambulance_one.id)
        self.assertGreater(booking.estimated_cost, 0)
        self.assertFalse(result.extra['eta_available'])
        self.assertAvailable(self.ambulance_one, False)
        self.assertAvailable(self.ambulance_two, True)

    def test_no_ambulance_in_radius(self):
        with self.assertRaises(NoResourceAvailableError):
            booking_management.create_booking(self.requester, 10.05, 10.05, search_radius=100)
        self.assertFalse(Booking.objects.exists())

    def test_explicit_pickup_refreshes_requester_location(self):
        booking = self.create_booking(pickup_latitude=10.001, pickup_longitude=10.0)

        self.requester.refresh_from_db()
        self.assertAlmostEqual(float(self.requester.last_latitude), 10.001)
        self.assertAlmostEqual(float(booking.pickup_latitude), 10.001)

    def test_unknown_pickup_is_rejected(self):
        self.requester.last_latitude = None
        self.requester.last_longitude = None
        self.requester.save()

        with self.assertRaises(InvalidCoordinatesError):
            self.create_booking()

    def test_invalid_destination_is_rejected(self):
        with self.assertRaises(InvalidCoordinatesError):
            booking_management.create_booking(self.requester, 95.0, 10.0)

    def test_second_active_booking_is_refused(self):
        self.create_booking()
        with self.assertRaises(ActiveBookingExistsError):
            self.create_booking()
        self.assertAvailable(self.ambulance_two, True)

    def test_lost_claim_retries_locator_once(self):
        # ambulance_one is taken between the locator read and the claim
        booking_management.booking_lifecycle.availability.claim(self.ambulance_one.id)
        with patch(
            'services.booking_management.booking_lifecycle.find_nearest',
            side_effect=[self.ambulance_one, self.ambulance_two],
        ) as mock_find:
            booking = self.create_booking()

        self.assertEqual(mock_find.call_count, 2)
        self.assertEqual(booking.ambulance_id, self.ambulance_two.id)

    def test_two_lost_claims_give_up(self):
        booking_management.booking_lifecycle.availability.claim(self.ambulance_one.id)
        with patch(
            'services.booking_management.booking_lifecycle.find_nearest',
            return_value=self.ambulance_one,
        ) as mock_find:
            with self.assertRaises(NoResourceAvailableError):
                self.create_booking()

        self.assertEqual(mock_find.call_count, 2)
        self.assertFalse(Booking.objects.exists())

    @override_settings(ROUTING_ENABLED=True)
    @patch('services.routing.eta.requests.get')
    def test_route_estimate_is_stored(self, mock_get):
        mock_get.return_value = MagicMock(
            status_code=200,
            json=MagicMock(return_value={
                'code': 'Ok',
                'routes': [{
                    'duration': 95.4,
                    'distance': 612.0,
                    'geometry': {'coordinates': [[10.0, 10.0045], [10.0, 10.0]]},
                }],
            }),
        )

        result = booking_management.create_booking(self.requester, 10.05, 10.05, search_radius=2000)

        self.assertTrue(result.extra['eta_available'])
        booking = Booking.objects.get(pk=result.booking.id)
        self.assertEqual(booking.estimated_time_seconds, 95)
        self.assertEqual(booking.route_distance_meters, 612)

    @override_settings(ROUTING_ENABLED=True)
    @patch('services.routing.eta.requests.get')
    def test_routing_failure_leaves_eta_unknown(self, mock_get):
        import requests
        mock_get.side_effect = requests.Timeout('slow')

        result = booking_management.create_booking(self.requester, 10.05, 10.05, search_radius=2000)

        self.assertEqual(result.booking.status, 'pending')
        self.assertFalse(result.extra['eta_available'])
        self.assertFalse(result.booking.eta_available)

    @override_settings(BOOKING_ACCEPT_TIMEOUT_SECONDS=120)
    @patch('bookings.tasks.expire_pending_booking_task.apply_async')
    def test_acceptance_timeout_is_scheduled_after_commit(self, mock_apply):
        with self.captureOnCommitCallbacks(execute=True):
            booking = self.create_booking()
            mock_apply.assert_not_called()

        mock_apply.assert_called_once_with((booking.id,), countdown=120)


class TransitionTests(BookingTestCase):
    def setUp(self):
        super().setUp()
        self.booking = self.create_booking()

    def test_second_accept_is_already_handled(self):
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)
        with self.assertRaises(AlreadyHandledError):
            booking_management.accept_booking(self.booking.id, self.ambulance_one.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'accepted')
        self.assertEqual(self.booking.ambulance_id, self.ambulance_one.id)
        self.assertIsNotNone(self.booking.accepted_at)

    def test_two_operators_racing_leave_one_assigned(self):
        with self.assertRaises(AlreadyHandledError):
            booking_management.accept_booking(self.booking.id, self.ambulance_two.id)
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'accepted')
        self.assertEqual(self.booking.ambulance_id, self.ambulance_one.id)
        self.assertAvailable(self.ambulance_two, True)

    def test_accept_keeps_ambulance_unavailable(self):
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)
        self.assertAvailable(self.ambulance_one, False)

    def test_reject_releases_ambulance(self):
        booking_management.reject_booking(self.booking.id, self.ambulance_one.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'rejected')
        self.assertAvailable(self.ambulance_one, True)

    def test_complete_releases_ambulance(self):
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)
        booking_management.complete_booking(self.booking.id, self.ambulance_one.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'completed')
        self.assertAvailable(self.ambulance_one, True)

    def test_cancel_accepted_booking_releases_ambulance(self):
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)
        result = booking_management.cancel_booking(
            self.booking.id, requester_id=self.requester.id, reason='Found a ride'
        )

        self.assertTrue(result.extra['was_accepted'])
        self.assertEqual(result.booking.status, 'cancelled')
        self.assertEqual(result.booking.cancelled_by, 'requester')
        self.assertAvailable(self.ambulance_one, True)

    def test_complete_on_pending_is_invalid(self):
        with self.assertRaises(InvalidTransitionError):
            booking_management.complete_booking(self.booking.id, self.ambulance_one.id)
        self.assertAvailable(self.ambulance_one, False)

    def test_accept_on_completed_is_invalid(self):
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)
        booking_management.complete_booking(self.booking.id, self.ambulance_one.id)

        with self.assertRaises(InvalidTransitionError):
            booking_management.accept_booking(self.booking.id, self.ambulance_one.id)

    def test_cancel_after_reject_is_invalid(self):
        booking_management.reject_booking(self.booking.id, self.ambulance_one.id)
        with self.assertRaises(InvalidTransitionError):
            booking_management.cancel_booking(self.booking.id, requester_id=self.requester.id)

    def test_reject_on_accepted_is_invalid(self):
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)
        with self.assertRaises(InvalidTransitionError):
            booking_management.reject_booking(self.booking.id, self.ambulance_one.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'accepted')
        self.assertAvailable(self.ambulance_one, False)

    def test_cancel_on_completed_is_invalid(self):
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)
        booking_management.complete_booking(self.booking.id, self.ambulance_one.id)

        with self.assertRaises(InvalidTransitionError):
            booking_management.cancel_booking(self.booking.id, requester_id=self.requester.id)

    def test_complete_on_cancelled_is_invalid(self):
        booking_management.cancel_booking(self.booking.id, requester_id=self.requester.id)
        with self.assertRaises(InvalidTransitionError):
            booking_management.complete_booking(self.booking.id, self.ambulance_one.id)

    def test_second_cancel_is_already_handled(self):
        booking_management.cancel_booking(self.booking.id, requester_id=self.requester.id)
        with self.assertRaises(AlreadyHandledError):
            booking_management.cancel_booking(self.booking.id, requester_id=self.requester.id)

    def test_other_requester_cannot_cancel(self):
        with self.assertRaises(BookingNotFoundError):
            booking_management.cancel_booking(self.booking.id, requester_id=self.requester.id + 100)

    def test_unknown_booking(self):
        with self.assertRaises(BookingNotFoundError):
            booking_management.accept_booking(999999, self.ambulance_one.id)

    def test_payment_flag_does_not_touch_status(self):
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)
        booking = booking_management.mark_payment_received(self.booking.id)
        booking_management.mark_payment_received(self.booking.id)

        self.assertTrue(booking.payment_status)
        self.assertEqual(booking.status, 'accepted')

    @patch('realtime.notifications.send_to_groups')
    def test_accept_notifies_requester_and_ambulance(self, mock_send):
        with self.captureOnCommitCallbacks(execute=True):
            booking_management.accept_booking(self.booking.id, self.ambulance_one.id)

        groups, payload = mock_send.call_args[0]
        self.assertIn(f'requester_{self.requester.id}', groups)
        self.assertIn(f'ambulance_{self.ambulance_one.id}', groups)
        self.assertIn(f'booking_{self.booking.id}', groups)
        self.assertEqual(payload['event'], 'booking_accepted')
        self.assertEqual(payload['status'], 'accepted')

    @patch('realtime.notifications.send_to_groups')
    def test_failed_transition_publishes_nothing(self, mock_send):
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(InvalidTransitionError):
                booking_management.complete_booking(self.booking.id, self.ambulance_one.id)
        mock_send.assert_not_called()


class TimeoutTests(BookingTestCase):
    def setUp(self):
        super().setUp()
        self.booking = self.create_booking()

    def test_expire_cancels_pending_booking(self):
        booking = booking_management.expire_pending_booking(self.booking.id)

        self.assertEqual(booking.status, 'cancelled')
        self.assertEqual(booking.cancelled_by, 'system')
        self.assertAvailable(self.ambulance_one, True)

    def test_expire_leaves_accepted_booking_alone(self):
        booking_management.accept_booking(self.booking.id, self.ambulance_one.id)

        self.assertIsNone(booking_management.expire_pending_booking(self.booking.id))
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'accepted')
        self.assertAvailable(self.ambulance_one, False)

    def test_celery_task_expires_booking(self):
        result = expire_pending_booking_task.apply(args=(self.booking.id,))

        self.assertTrue(result.get())
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'cancelled')

    def test_process_booking_timeouts_expires_stale_bookings(self):
        Booking.objects.filter(pk=self.booking.pk).update(
            created_at=timezone.now() - timedelta(seconds=300)
        )

        call_command('process_booking_timeouts', timeout=120)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'cancelled')
        self.assertAvailable(self.ambulance_one, True)

    def test_process_booking_timeouts_skips_fresh_bookings(self):
        self.assertEqual(booking_management.process_booking_timeouts(timeout_seconds=120), 0)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, 'pending')


class DashboardStatsTests(BookingTestCase):
    def test_stats(self):
        booking = self.create_booking()
        booking_management.accept_booking(booking.id, self.ambulance_one.id)
        Booking.objects.filter(pk=booking.pk).update(
            accepted_at=booking.created_at + timedelta(seconds=30)
        )

        stats = booking_management.get_dashboard_stats()
        self.assertEqual(stats.available_ambulances, 1)
        self.assertEqual(stats.active_bookings, 1)
        self.assertAlmostEqual(stats.average_response_seconds, 30.0, places=1)

    def test_stats_without_bookings(self):
        stats = booking_management.get_dashboard_stats(requester=self.requester)
        self.assertEqual(stats.available_ambulances, 2)
        self.assertEqual(stats.active_bookings, 0)
        self.assertIsNone(stats.average_response_seconds)


class BookingViewTests(BookingTestCase):
    def setUp(self):
        super().setUp()
        self.factory = APIRequestFactory()

    def post(self, view, user, data=None, **kwargs):
        request = self.factory.post('/api/bookings/', data or {}, format='json')
        force_authenticate(request, user=user)
        return view(request, **kwargs)

    def get(self, view, user, **kwargs):
        request = self.factory.get('/api/bookings/')
        force_authenticate(request, user=user)
        return view(request, **kwargs)

    def test_booking_flow(self):
        response = self.post(views.create_booking, self.requester, {
            'destination_latitude': '10.050000',
            'destination_longitude': '10.050000',
            'destination_name': 'City Hospital',
            'search_radius': 2000,
        })
        self.assertEqual(response.status_code, 201)
        booking_id = response.data['booking']['id']
        self.assertEqual(response.data['booking']['ambulance']['id'], self.ambulance_one.id)

        response = self.get(views.get_current_booking, self.requester)
        self.assertTrue(response.data['has_active_booking'])
        self.assertEqual(response.data['status'], 'pending')

        response = self.post(views.accept_booking, self.operator_one, booking_id=booking_id)
        self.assertEqual(response.status_code, 200)

        response = self.post(views.accept_booking, self.operator_one, booking_id=booking_id)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'already_handled')

        response = self.post(views.complete_booking, self.operator_one, booking_id=booking_id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['status'], 'completed')

        response = self.get(views.booking_history, self.requester)
        self.assertEqual(response.data['count'], 1)

    def test_create_without_ambulances_is_conflict(self):
        Ambulance.objects.update(is_available=False)
        response = self.post(views.create_booking, self.requester, {
            'destination_latitude': '10.050000',
            'destination_longitude': '10.050000',
        })
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data['error'], 'no_resource_available')

    def test_operator_cannot_create(self):
        response = self.post(views.create_booking, self.operator_one, {
            'destination_latitude': '10.050000',
            'destination_longitude': '10.050000',
        })
        self.assertEqual(response.status_code, 403)

    def test_requester_cannot_accept(self):
        booking = self.create_booking()
        response = self.post(views.accept_booking, self.requester, booking_id=booking.id)
        self.assertEqual(response.status_code, 403)

    def test_operator_cancel(self):
        booking = self.create_booking()
        response = self.post(views.cancel_booking, self.operator_one, {'reason': 'Vehicle breakdown'}, booking_id=booking.id)

        self.assertEqual(response.status_code, 200)
        booking.refresh_from_db()
        self.assertEqual(booking.cancelled_by, 'operator')
        self.assertAvailable(self.ambulance_one, True)

    def test_detail_hidden_from_other_operators(self):
        booking = self.create_booking()

        response = self.get(views.booking_detail, self.operator_two, booking_id=booking.id)
        self.assertEqual(response.status_code, 404)

        response = self.get(views.booking_detail, self.operator_one, booking_id=booking.id)
        self.assertEqual(response.status_code, 200)

    def test_complete_pending_is_bad_request(self):
        booking = self.create_booking()
        response = self.post(views.complete_booking, self.operator_one, booking_id=booking.id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data['error'], 'invalid_transition')

    def test_stats_endpoint(self):
        response = self.get(views.dashboard_stats, self.requester)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['available_ambulances'], 2)


class ConcurrentBookingTests(TransactionTestCase):
    """Callers really running at the same time, each on its own connection."""

    def setUp(self):
        self.requesters = [
            User.objects.create_user(
                username=f'requester_{i}',
                password='pass1234',
                role='requester',
                phone_number='9000000000',
                last_latitude=10.0,
                last_longitude=10.0,
            )
            for i in range(2)
        ]
        self.operator, self.ambulance = make_operator('only_operator', 10.0 + 500 / METERS_PER_DEGREE_LAT, 10.0)

    def run_together(self, *calls):
        """Start every call behind one barrier; return results or raised exceptions."""
        barrier = threading.Barrier(len(calls))
        results = [None] * len(calls)

        def worker(index, call):
            try:
                barrier.wait()
                results[index] = call()
            except Exception as e:
                results[index] = e
            finally:
                connection.close()

        threads = [threading.Thread(target=worker, args=(i, call)) for i, call in enumerate(calls)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return results

    def test_concurrent_accepts_have_one_winner(self):
        booking = booking_management.create_booking(
            self.requesters[0], 10.05, 10.05, search_radius=2000
        ).booking

        results = self.run_together(
            lambda: booking_management.accept_booking(booking.id, self.ambulance.id),
            lambda: booking_management.accept_booking(booking.id, self.ambulance.id),
        )

        winners = [r for r in results if isinstance(r, booking_management.BookingResult)]
        losers = [r for r in results if isinstance(r, AlreadyHandledError)]
        self.assertEqual((len(winners), len(losers)), (1, 1), results)
        booking.refresh_from_db()
        self.assertEqual(booking.status, 'accepted')
        self.assertEqual(booking.ambulance_id, self.ambulance.id)

    def test_concurrent_claims_have_one_winner(self):
        def claim():
            with transaction.atomic():
                return availability.claim(self.ambulance.id)

        results = self.run_together(claim, claim)

        self.assertEqual(sorted(results), [False, True])
        self.ambulance.refresh_from_db()
        self.assertFalse(self.ambulance.is_available)

    def test_two_requesters_one_ambulance(self):
        results = self.run_together(*[
            lambda requester=requester: booking_management.create_booking(
                requester, 10.05, 10.05, search_radius=2000
            )
            for requester in self.requesters
        ])

        created = [r for r in results if isinstance(r, booking_management.BookingResult)]
        refused = [r for r in results if isinstance(r, NoResourceAvailableError)]
        self.assertEqual((len(created), len(refused)), (1, 1), results)
        self.assertEqual(Booking.objects.filter(ambulance=self.ambulance).count(), 1)
        self.ambulance.refresh_from_db()
        self.assertFalse(self.ambulance.is_available)
