"""WebSocket URL routing for the realtime app."""

from django.urls import re_path

from .consumers.requester_consumer import RequesterConsumer
from .consumers.operator_consumer import OperatorConsumer
from .consumers.booking_consumer import BookingConsumer

websocket_urlpatterns = [
    # Requester-specific WebSocket endpoint
    # URL: ws://localhost:8000/ws/requester/?token=<access>
    re_path(
        r"ws/requester/$",
        RequesterConsumer.as_asgi(),
        name="requester-ws"
    ),
    
    # Ambulance operator WebSocket endpoint
    # URL: ws://localhost:8000/ws/operator/?token=<access>
    re_path(
        r"ws/operator/$",
        OperatorConsumer.as_asgi(),
        name="operator-ws"
    ),
    
    # Booking tracking WebSocket endpoint (shared by both roles)
    # URL: ws://localhost:8000/ws/booking/?token=<access>
    re_path(
        r"ws/booking/$",
        BookingConsumer.as_asgi(),
        name="booking-ws"
    ),
]
