"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .requester_consumer import RequesterConsumer
from .operator_consumer import OperatorConsumer
from .booking_consumer import BookingConsumer

__all__ = [
    "BaseConsumer",
    "RequesterConsumer",
    "OperatorConsumer",
    "BookingConsumer",
]
