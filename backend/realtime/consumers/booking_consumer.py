"""Booking tracking WebSocket consumer for single-booking updates."""

import logging
from typing import Dict, Any, Optional

from channels.db import database_sync_to_async

from .base import BaseConsumer
from realtime.notifications import booking_group

logger = logging.getLogger(__name__)


class BookingConsumer(BaseConsumer):
    """
    WebSocket consumer for watching individual bookings.
    
    Used by both requesters and operators to follow status and payment
    changes of a booking they take part in.
    """

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle booking watch messages."""
        
        if msg_type == "watch_booking":
            await self._handle_watch(data)
        elif msg_type == "unwatch_booking":
            await self._handle_unwatch(data)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    @staticmethod
    def _booking_id(data: Dict[str, Any]) -> Optional[int]:
        """booking_id as an int, or None if missing or malformed."""
        value = data.get("booking_id")
        if isinstance(value, bool):
            return None
        if isinstance(value, float):
            return int(value) if value.is_integer() else None
        try:
            return int(str(value).strip())
        except (TypeError, ValueError):
            return None

    async def _handle_watch(self, data: Dict[str, Any]):
        booking_id = self._booking_id(data)
        
        if booking_id is None:
            await self.send_error("watch_booking requires a numeric booking_id")
            return

        # Validate booking exists and user is part of it
        is_valid = await self._validate_participant(booking_id)
        if not is_valid:
            await self.send_error("You are not authorized to watch this booking")
            return

        await self._join_group(booking_group(booking_id))
        await self.send_success("watching_booking", booking_id=booking_id)

    async def _handle_unwatch(self, data: Dict[str, Any]):
        booking_id = self._booking_id(data)
        
        if booking_id is None:
            return

        await self._leave_group(booking_group(booking_id))
        await self.send_success("unwatched_booking", booking_id=booking_id)

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _validate_participant(self, booking_id: int) -> bool:
        """Check if user is the requester or the assigned ambulance's operator."""
        from services.booking_management import get_booking_for_participant
        from services.exceptions import NotFoundError

        try:
            get_booking_for_participant(booking_id, self.user)
        except NotFoundError:
            return False
        return True
