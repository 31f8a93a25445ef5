from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.db import transaction
from django.test import SimpleTestCase, TestCase, TransactionTestCase
from rest_framework_simplejwt.tokens import AccessToken
from unittest.mock import patch, AsyncMock, MagicMock

from accounts.models import User
from ambulances.models import Ambulance
from bookings.models import Booking
from .consumers import BookingConsumer, RequesterConsumer
from .middleware import get_user_for_token
from . import notifications


class NotificationTests(TestCase):
    def setUp(self):
        self.requester = User.objects.create_user(
            username='requester', password='pass1234', role='requester', phone_number='9000000000'
        )
        operator = User.objects.create_user(
            username='operator', password='pass1234', role='operator', phone_number='9100000000'
        )
        self.ambulance = Ambulance.objects.create(
            operator=operator,
            operator_name='Operator',
            contact_number='9100000000',
            license_number='LIC-RT',
            vehicle_number='AMB-RT',
            latitude=10.0,
            longitude=10.0,
            is_available=False,
            is_verified=True,
        )
        self.booking = Booking.objects.create(
            requester=self.requester,
            ambulance=self.ambulance,
            pickup_latitude=10.0,
            pickup_longitude=10.0,
            destination_latitude=10.01,
            destination_longitude=10.01,
        )

    def test_booking_change_reaches_requester_group(self):
        layer = get_channel_layer()
        channel = async_to_sync(layer.new_channel)()
        async_to_sync(layer.group_add)(notifications.requester_group(self.requester.id), channel)

        with self.captureOnCommitCallbacks(execute=True):
            notifications.publish_booking_change(self.booking, 'booking_accepted', 'On the way')

        message = async_to_sync(layer.receive)(channel)
        self.assertEqual(message['type'], 'booking.changed')
        self.assertEqual(message['event'], 'booking_accepted')
        self.assertEqual(message['booking_id'], self.booking.id)
        self.assertEqual(message['message'], 'On the way')

    @patch('realtime.notifications.send_to_groups')
    def test_booking_change_groups(self, mock_send):
        with self.captureOnCommitCallbacks(execute=True):
            notifications.publish_booking_change(self.booking, 'booking_created')

        groups, payload = mock_send.call_args[0]
        self.assertEqual(groups, [
            f'requester_{self.requester.id}',
            f'booking_{self.booking.id}',
            f'ambulance_{self.ambulance.id}',
        ])
        self.assertEqual(payload['status'], 'pending')
        self.assertNotIn('message', payload)

    @patch('realtime.notifications.send_to_groups')
    def test_nothing_is_sent_before_commit(self, mock_send):
        notifications.publish_booking_change(self.booking, 'booking_created')
        mock_send.assert_not_called()

    @patch('realtime.notifications.send_to_groups')
    def test_rolled_back_change_is_never_sent(self, mock_send):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            try:
                with transaction.atomic():
                    notifications.publish_booking_change(self.booking, 'booking_cancelled')
                    raise RuntimeError('write failed')
            except RuntimeError:
                pass

        self.assertEqual(len(callbacks), 0)
        mock_send.assert_not_called()

    @patch('realtime.notifications.send_to_groups')
    def test_ambulance_change_goes_to_fleet(self, mock_send):
        with self.captureOnCommitCallbacks(execute=True):
            notifications.publish_ambulance_change(self.ambulance.id, 'ambulance_location_changed', {'latitude': 10.0})

        groups, payload = mock_send.call_args[0]
        self.assertEqual(groups, [f'ambulance_{self.ambulance.id}', 'fleet'])
        self.assertEqual(payload['type'], 'ambulance.changed')
        self.assertEqual(payload['latitude'], 10.0)

    @patch('realtime.notifications.get_channel_layer')
    def test_delivery_failure_is_contained(self, mock_layer):
        mock_layer.return_value = MagicMock(
            group_send=AsyncMock(side_effect=[RuntimeError('redis down'), None])
        )

        delivered = notifications.send_to_groups(['requester_1', 'fleet'], {'type': 'booking.changed', 'event': 'x'})
        self.assertEqual(delivered, 1)

    @patch('realtime.notifications.get_channel_layer', return_value=None)
    def test_missing_channel_layer(self, mock_layer):
        self.assertEqual(notifications.send_to_groups(['fleet'], {'event': 'x'}), 0)


class TokenAuthTests(TransactionTestCase):
    def test_valid_token_resolves_user(self):
        user = User.objects.create_user(username='ws', password='pass1234', role='requester', phone_number='1')
        token = str(AccessToken.for_user(user))

        resolved = async_to_sync(get_user_for_token)(token)
        self.assertEqual(resolved.id, user.id)

    def test_inactive_user_is_anonymous(self):
        user = User.objects.create_user(username='gone', password='pass1234', role='requester', phone_number='1')
        token = str(AccessToken.for_user(user))
        user.is_active = False
        user.save()

        self.assertTrue(async_to_sync(get_user_for_token)(token).is_anonymous)

    def test_garbage_token_is_anonymous(self):
        self.assertTrue(async_to_sync(get_user_for_token)('not-a-jwt').is_anonymous)


class ConsumerTests(SimpleTestCase):
    async def test_requester_receives_forwarded_signal(self):
        communicator = WebsocketCommunicator(RequesterConsumer.as_asgi(), '/ws/requester/')
        communicator.scope['user'] = User(id=41, username='ws_requester', role='requester')

        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        greeting = await communicator.receive_json_from()
        self.assertEqual(greeting['type'], 'connection_established')

        await get_channel_layer().group_send('requester_41', {
            'type': 'booking.changed',
            'event': 'booking_accepted',
            'booking_id': 7,
            'status': 'accepted',
        })
        message = await communicator.receive_json_from()
        self.assertEqual(message['type'], 'booking_accepted')
        self.assertEqual(message['booking_id'], 7)

        await communicator.send_json_to({'type': 'subscribe_fleet'})
        self.assertEqual((await communicator.receive_json_from())['type'], 'fleet_subscribed')

        await communicator.disconnect()

    async def test_anonymous_connection_is_refused(self):
        communicator = WebsocketCommunicator(RequesterConsumer.as_asgi(), '/ws/requester/')
        communicator.scope['user'] = AnonymousUser()

        connected, _ = await communicator.connect()
        self.assertFalse(connected)

    async def test_booking_consumer_rejects_bad_messages(self):
        communicator = WebsocketCommunicator(BookingConsumer.as_asgi(), '/ws/booking/')
        communicator.scope['user'] = User(id=42, username='ws_watcher', role='requester')

        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        await communicator.receive_json_from()

        await communicator.send_json_to({'type': 'watch_booking'})
        self.assertEqual((await communicator.receive_json_from())['type'], 'error')

        await communicator.send_json_to({'type': 'dance'})
        error = await communicator.receive_json_from()
        self.assertEqual(error['message'], 'Unknown message type: dance')

        await communicator.send_json_to({'booking_id': 1})
        error = await communicator.receive_json_from()
        self.assertEqual(error['message'], 'Message type is required')

        await communicator.disconnect()

    async def test_watch_joins_group_for_normalised_id(self):
        communicator = WebsocketCommunicator(BookingConsumer.as_asgi(), '/ws/booking/')
        communicator.scope['user'] = User(id=43, username='ws_operator', role='operator')
        await communicator.connect()
        await communicator.receive_json_from()

        with patch.object(BookingConsumer, '_validate_participant', AsyncMock(return_value=True)) as mock_validate:
            for raw_id in (' 5', 5.0):
                await communicator.send_json_to({'type': 'watch_booking', 'booking_id': raw_id})
                reply = await communicator.receive_json_from()
                self.assertEqual(reply['type'], 'watching_booking')
                self.assertEqual(reply['booking_id'], 5)
            mock_validate.assert_called_with(5)

            await communicator.send_json_to({'type': 'watch_booking', 'booking_id': '5.5'})
            self.assertEqual((await communicator.receive_json_from())['type'], 'error')

        await get_channel_layer().group_send('booking_5', {
            'type': 'booking.changed',
            'event': 'booking_completed',
            'booking_id': 5,
            'status': 'completed',
        })
        message = await communicator.receive_json_from()
        self.assertEqual(message['type'], 'booking_completed')

        await communicator.disconnect()
