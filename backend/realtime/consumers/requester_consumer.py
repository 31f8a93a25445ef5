"""Requester WebSocket consumer: own booking signals and optional fleet feed."""

import logging
from typing import Dict, Any, Optional

from channels.db import database_sync_to_async

from .base import BaseConsumer
from realtime.notifications import FLEET_GROUP, requester_group

logger = logging.getLogger(__name__)


class RequesterConsumer(BaseConsumer):
    """
    WebSocket consumer for requesters.
    
    Handles:
        - Change signals for bookings the requester owns
        - Opt-in fleet feed (ambulance availability/location changes) for the map
        - ``refresh`` snapshot of the active booking
    """

    async def on_connect(self):
        """Set up requester-specific groups on connection."""
        if self.role != "requester":
            await self.send_error("This endpoint is for requesters only")
            await self.close()
            return

        await self._join_group(requester_group(self.user_id))

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "message": "Requester connected successfully",
        })

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle requester-specific messages."""
        
        if msg_type == "subscribe_fleet":
            await self._join_group(FLEET_GROUP)
            await self.send_success("fleet_subscribed")
        elif msg_type == "unsubscribe_fleet":
            await self._leave_group(FLEET_GROUP)
            await self.send_success("fleet_unsubscribed")
        elif msg_type == "refresh":
            booking = await self._get_active_booking()
            await self.send_success("snapshot", booking=booking)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _get_active_booking(self) -> Optional[Dict[str, Any]]:
        from bookings.serializers import BookingSerializer
        from services.booking_management import get_active_booking_for_requester

        booking = get_active_booking_for_requester(self.user)
        if booking is None:
            return None
        return BookingSerializer(booking).data
