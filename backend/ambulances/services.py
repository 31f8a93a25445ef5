from django.utils import timezone

from ambulances.models import Ambulance
from realtime.notifications import publish_ambulance_change


def update_ambulance_location(ambulance: Ambulance, lat, lon):
    """
    Update ambulance position. Used by:
    - HTTP fallback
    - WebSocket operator tracking events

    Saving refreshes the geohash so the locator's grid index stays current.
    """
    ambulance.latitude = lat
    ambulance.longitude = lon
    ambulance.last_location_update = timezone.now()
    ambulance.save(update_fields=["latitude", "longitude", "last_location_update"])

    # Fleet watchers re-fetch positions on this signal
    publish_ambulance_change(
        ambulance.id,
        "ambulance_location_changed",
        {"latitude": float(lat), "longitude": float(lon)},
    )

    return ambulance
