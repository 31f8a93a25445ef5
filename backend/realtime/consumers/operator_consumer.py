"""Operator WebSocket consumer: the ambulance's queue signals and live location."""

import logging
from typing import Dict, Any, Optional

from channels.db import database_sync_to_async

from .base import BaseConsumer
from common.utils import is_valid_coordinate
from realtime.notifications import ambulance_group

logger = logging.getLogger(__name__)


class OperatorConsumer(BaseConsumer):
    """
    WebSocket consumer for ambulance operators.
    
    Handles:
        - Change signals for bookings assigned to the operator's ambulance
        - Live location updates (keeps the locator's grid index current)
        - ``refresh`` snapshot of the pending queue and current booking
    """

    async def on_connect(self):
        """Set up operator-specific groups on connection."""
        if self.role != "operator":
            await self.send_error("This endpoint is for ambulance operators only")
            await self.close()
            return

        self.ambulance_id = await self._get_ambulance_id()
        if self.ambulance_id is None:
            await self.send_error("Ambulance profile not found")
            await self.close()
            return

        await self._join_group(ambulance_group(self.ambulance_id))

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "ambulance_id": self.ambulance_id,
            "message": "Operator connected successfully",
        })

    async def handle_message(self, msg_type: str, data: Dict[str, Any]):
        """Handle operator-specific messages."""
        
        if msg_type == "location_update":
            await self._handle_location_update(data)
        elif msg_type == "refresh":
            snapshot = await self._get_snapshot()
            await self.send_success("snapshot", **snapshot)
        else:
            await self.send_error(f"Unknown message type: {msg_type}")

    # ---------------------- Message Handlers ----------------------

    async def _handle_location_update(self, data: Dict[str, Any]):
        lat = data.get("latitude")
        lon = data.get("longitude")

        try:
            valid = lat is not None and lon is not None and is_valid_coordinate(lat, lon)
        except (TypeError, ValueError):
            valid = False
        if not valid:
            await self.send_error("location_update requires valid latitude and longitude")
            return

        await self._update_location_db(float(lat), float(lon))
        await self.send_success("location_updated", latitude=float(lat), longitude=float(lon))

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _get_ambulance_id(self) -> Optional[int]:
        from ambulances.models import Ambulance
        return (
            Ambulance.objects.filter(operator_id=self.user_id)
            .values_list("id", flat=True)
            .first()
        )

    @database_sync_to_async
    def _update_location_db(self, lat: float, lon: float):
        from ambulances.models import Ambulance
        from ambulances.services import update_ambulance_location

        ambulance = Ambulance.objects.get(pk=self.ambulance_id)
        update_ambulance_location(ambulance, lat, lon)

    @database_sync_to_async
    def _get_snapshot(self) -> Dict[str, Any]:
        from ambulances.models import Ambulance
        from bookings.serializers import BookingSerializer
        from services.booking_management import (
            get_active_booking_for_ambulance,
            get_pending_queue,
        )

        current = get_active_booking_for_ambulance(self.ambulance_id)
        return {
            "is_available": Ambulance.objects.filter(pk=self.ambulance_id)
            .values_list("is_available", flat=True).first(),
            "queue": BookingSerializer(get_pending_queue(self.ambulance_id), many=True).data,
            "current_booking": BookingSerializer(current).data if current else None,
        }
