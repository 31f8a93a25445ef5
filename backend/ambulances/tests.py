from django.contrib import admin
from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate
from unittest.mock import patch, MagicMock

from accounts.models import User
from services import availability
from services.exceptions import AmbulanceNotFoundError, InvalidCoordinatesError
from services.matching import find_nearest, nearest_available
from .admin import AmbulanceAdmin
from .models import Ambulance
from .views import (
    AmbulanceLocationUpdateView,
    AmbulanceProfileView,
    AmbulanceQueueView,
    NearbyAmbulancesView,
)

# One degree of latitude in meters on a 6 371 km sphere
METERS_PER_DEGREE_LAT = 111194.93


def make_ambulance(name, lat, lon, available=True, verified=True):
    operator = User.objects.create_user(
        username=name,
        password='operator1234',
        role='operator',
        phone_number='9100000000'
    )
    return Ambulance.objects.create(
        operator=operator,
        operator_name=name,
        contact_number='9100000000',
        license_number=f'LIC-{name}',
        vehicle_number=f'AMB-{name}',
        latitude=lat,
        longitude=lon,
        is_available=available,
        is_verified=verified,
    )


class AvailabilityLedgerTests(TestCase):
    def setUp(self):
        self.ambulance = make_ambulance('ledger', 10.0, 10.0)

    def test_claim_succeeds_once(self):
        self.assertTrue(availability.claim(self.ambulance.id))
        self.assertFalse(availability.claim(self.ambulance.id))
        self.assertFalse(availability.is_available(self.ambulance.id))

    def test_release_makes_ambulance_claimable_again(self):
        availability.claim(self.ambulance.id)
        self.assertTrue(availability.release(self.ambulance.id))

        self.ambulance.refresh_from_db()
        self.assertTrue(self.ambulance.is_available)
        self.assertIsNotNone(self.ambulance.availability_changed_at)
        self.assertTrue(availability.claim(self.ambulance.id))

    def test_expected_value_mismatch_writes_nothing(self):
        self.assertFalse(availability.set_available(self.ambulance.id, True, expected=False))
        self.assertTrue(availability.is_available(self.ambulance.id))

    def test_missing_ambulance_raises(self):
        with self.assertRaises(AmbulanceNotFoundError):
            availability.is_available(999999)
        with self.assertRaises(AmbulanceNotFoundError):
            availability.claim(999999)

    @patch('realtime.notifications.send_to_groups')
    def test_write_is_published_after_commit(self, mock_send):
        with self.captureOnCommitCallbacks(execute=True):
            availability.claim(self.ambulance.id)
            mock_send.assert_not_called()

        mock_send.assert_called_once()
        groups, payload = mock_send.call_args[0]
        self.assertEqual(groups, [f'ambulance_{self.ambulance.id}', 'fleet'])
        self.assertEqual(payload['event'], 'ambulance_availability_changed')
        self.assertFalse(payload['is_available'])

    @patch('realtime.notifications.send_to_groups')
    def test_lost_claim_publishes_nothing(self, mock_send):
        availability.claim(self.ambulance.id)
        with self.captureOnCommitCallbacks(execute=True):
            availability.claim(self.ambulance.id)
        mock_send.assert_not_called()


class LocatorTests(TestCase):
    def test_closest_wins_and_ties_go_to_lowest_id(self):
        # A at 3.0 km, B and C both at 1.2 km
        a = make_ambulance('a', 10.0 + 3000 / METERS_PER_DEGREE_LAT, 10.0)
        b = make_ambulance('b', 10.0 + 1200 / METERS_PER_DEGREE_LAT, 10.0)
        c = make_ambulance('c', 10.0 + 1200 / METERS_PER_DEGREE_LAT, 10.0)

        nearest = find_nearest(10.0, 10.0, 5000)
        self.assertEqual(nearest.id, b.id)

        ids = [candidate.ambulance_id for candidate in nearest_available(10.0, 10.0, 5000)]
        self.assertEqual(ids, [b.id, c.id, a.id])

    def test_candidates_outside_radius_are_excluded(self):
        make_ambulance('far', 10.0 + 3000 / METERS_PER_DEGREE_LAT, 10.0)
        self.assertIsNone(find_nearest(10.0, 10.0, 2000))

    def test_unavailable_and_unverified_are_skipped(self):
        make_ambulance('busy', 10.001, 10.0, available=False)
        make_ambulance('unverified', 10.001, 10.0, verified=False)
        ready = make_ambulance('ready', 10.01, 10.0)

        self.assertEqual(find_nearest(10.0, 10.0, 5000).id, ready.id)

    def test_distance_is_reported(self):
        make_ambulance('d', 10.0 + 500 / METERS_PER_DEGREE_LAT, 10.0)
        candidate = nearest_available(10.0, 10.0, 2000)[0]
        self.assertAlmostEqual(candidate.distance_meters, 500, delta=1)

    def test_invalid_coordinates_raise(self):
        with self.assertRaises(InvalidCoordinatesError):
            find_nearest(91, 0)
        with self.assertRaises(InvalidCoordinatesError):
            nearest_available(0, -181)

    def test_search_across_antimeridian_falls_back_to_scan(self):
        across = make_ambulance('east', 0.0, 179.999)
        self.assertEqual(find_nearest(0.0, -179.999, 1000).id, across.id)

    def test_search_near_pole(self):
        polar = make_ambulance('polar', 89.99, 45.0)
        self.assertEqual(find_nearest(89.995, -135.0, 5000).id, polar.id)

    def test_locator_never_touches_the_ledger(self):
        ambulance = make_ambulance('readonly', 10.001, 10.0)
        find_nearest(10.0, 10.0)
        ambulance.refresh_from_db()
        self.assertTrue(ambulance.is_available)

    def test_geohash_follows_location(self):
        ambulance = make_ambulance('moving', 10.0, 10.0)
        first = ambulance.geohash
        self.assertEqual(len(first), 6)

        ambulance.latitude = 28.6139
        ambulance.longitude = 77.2090
        ambulance.save(update_fields=['latitude', 'longitude'])
        ambulance.refresh_from_db()
        self.assertNotEqual(ambulance.geohash, first)
        self.assertEqual(find_nearest(28.6139, 77.2090, 100).id, ambulance.id)


class AmbulanceViewTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.ambulance = make_ambulance('view', 10.0, 10.0)
        self.requester = User.objects.create_user(
            username='requester',
            password='pass1234',
            role='requester',
            phone_number='9000000000'
        )

    @patch('realtime.notifications.send_to_groups')
    def test_location_update_moves_ambulance(self, mock_send):
        request = self.factory.post('/api/ambulance/location/', {'latitude': '10.010000', 'longitude': '10.020000'})
        force_authenticate(request, user=self.ambulance.operator)
        with self.captureOnCommitCallbacks(execute=True):
            response = AmbulanceLocationUpdateView.as_view()(request)

        self.assertEqual(response.status_code, 200)
        self.ambulance.refresh_from_db()
        self.assertAlmostEqual(float(self.ambulance.latitude), 10.01)
        self.assertEqual(mock_send.call_args[0][1]['event'], 'ambulance_location_changed')

    def test_location_update_requires_operator(self):
        request = self.factory.post('/api/ambulance/location/', {'latitude': '10', 'longitude': '10'})
        force_authenticate(request, user=self.requester)
        response = AmbulanceLocationUpdateView.as_view()(request)
        self.assertEqual(response.status_code, 403)

    def test_nearby_lists_closest_first(self):
        farther = make_ambulance('farther', 10.0005, 10.0)
        request = self.factory.get('/api/ambulance/nearby/', {'latitude': 10.0, 'longitude': 10.0, 'radius': 2000})
        force_authenticate(request, user=self.requester)
        response = NearbyAmbulancesView.as_view()(request)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [row['id'] for row in response.data['ambulances']],
            [self.ambulance.id, farther.id]
        )

    def test_queue_is_empty_without_bookings(self):
        request = self.factory.get('/api/ambulance/queue/')
        force_authenticate(request, user=self.ambulance.operator)
        response = AmbulanceQueueView.as_view()(request)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['count'], 0)
        self.assertTrue(response.data['is_available'])

    def test_profile_edit_keeps_ledger_claim(self):
        operator = User.objects.get(pk=self.ambulance.operator_id)
        stale = operator.ambulance
        self.assertTrue(stale.is_available)
        availability.claim(self.ambulance.id)

        request = self.factory.post('/api/ambulance/profile/', {'vehicle_number': 'NEW-1'})
        force_authenticate(request, user=operator)
        response = AmbulanceProfileView.as_view()(request)

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data['is_available'])
        self.ambulance.refresh_from_db()
        self.assertEqual(self.ambulance.vehicle_number, 'NEW-1')
        self.assertFalse(self.ambulance.is_available)

    def test_admin_edit_keeps_ledger_claim(self):
        stale = Ambulance.objects.get(pk=self.ambulance.id)
        availability.claim(self.ambulance.id)

        stale.is_verified = False
        model_admin = AmbulanceAdmin(Ambulance, admin.site)
        model_admin.save_model(None, stale, MagicMock(changed_data=['is_verified']), change=True)

        self.ambulance.refresh_from_db()
        self.assertFalse(self.ambulance.is_verified)
        self.assertFalse(self.ambulance.is_available)
