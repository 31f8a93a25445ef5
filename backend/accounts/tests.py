from django.test import TestCase
from rest_framework.test import APIRequestFactory, force_authenticate
from rest_framework_simplejwt.tokens import AccessToken

from .models import User
from .views import LoginView, LocationRefreshView, ProfileView


class AccountTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.requester = User.objects.create_user(
            username='requester',
            password='pass1234',
            role='requester',
            phone_number='9000000000'
        )
        self.operator = User.objects.create_user(
            username='operator',
            password='operator1234',
            role='operator',
            phone_number='9100000000'
        )

    def test_login_returns_tokens(self):
        request = self.factory.post('/api/auth/login/', {'username': 'requester', 'password': 'pass1234'}, format='json')
        response = LoginView.as_view()(request)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data['user']['role'], 'requester')
        access = AccessToken(response.data['tokens']['access'])
        self.assertEqual(str(access['user_id']), str(self.requester.id))

    def test_login_with_wrong_password(self):
        request = self.factory.post('/api/auth/login/', {'username': 'requester', 'password': 'nope'}, format='json')
        response = LoginView.as_view()(request)
        self.assertEqual(response.status_code, 400)

    def test_requester_refreshes_location(self):
        request = self.factory.post('/api/auth/location/', {'latitude': '12.971599', 'longitude': '77.594566'}, format='json')
        force_authenticate(request, user=self.requester)
        response = LocationRefreshView.as_view()(request)

        self.assertEqual(response.status_code, 200)
        self.requester.refresh_from_db()
        self.assertAlmostEqual(float(self.requester.last_latitude), 12.971599)
        self.assertIsNotNone(self.requester.last_location_update)

    def test_location_out_of_range(self):
        request = self.factory.post('/api/auth/location/', {'latitude': '91', 'longitude': '0'}, format='json')
        force_authenticate(request, user=self.requester)
        response = LocationRefreshView.as_view()(request)
        self.assertEqual(response.status_code, 400)

    def test_operator_cannot_refresh_requester_location(self):
        request = self.factory.post('/api/auth/location/', {'latitude': '10', 'longitude': '10'}, format='json')
        force_authenticate(request, user=self.operator)
        response = LocationRefreshView.as_view()(request)
        self.assertEqual(response.status_code, 403)

    def test_profile(self):
        request = self.factory.get('/api/auth/profile/')
        force_authenticate(request, user=self.operator)
        response = ProfileView.as_view()(request)
        self.assertEqual(response.data['role'], 'operator')
