"""
Route and ETA lookup against an OSRM-compatible routing service.

The routing service is optional: any failure (disabled, timeout, bad
response) yields an unavailable estimate instead of an error, and booking
creation carries on with an unknown ETA.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


@dataclass
class RouteEstimate:
    available: bool
    duration_seconds: Optional[int] = None
    distance_meters: Optional[int] = None
    # (latitude, longitude) points along the route
    polyline: List[Tuple[float, float]] = field(default_factory=list)

    @classmethod
    def unavailable(cls) -> "RouteEstimate":
        return cls(available=False)


def estimate_route(
    origin_lat: float,
    origin_lon: float,
    dest_lat: float,
    dest_lon: float,
) -> RouteEstimate:
    """
    Driving route between two points.
    
    Args:
        origin_lat: Origin latitude
        origin_lon: Origin longitude
        dest_lat: Destination latitude
        dest_lon: Destination longitude
    
    Returns:
        RouteEstimate; ``available`` is False when the service is disabled or
        did not answer usefully
    """
    if not settings.ROUTING_ENABLED:
        return RouteEstimate.unavailable()

    # OSRM takes lon,lat pairs
    url = (
        f"{settings.ROUTING_SERVICE_URL.rstrip('/')}/route/v1/driving/"
        f"{float(origin_lon)},{float(origin_lat)};{float(dest_lon)},{float(dest_lat)}"
    )
    try:
        response = requests.get(
            url,
            params={"overview": "full", "geometries": "geojson"},
            timeout=settings.ROUTING_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Routing service unavailable: %s", e)
        return RouteEstimate.unavailable()

    routes = data.get("routes") or []
    if data.get("code") != "Ok" or not routes:
        logger.warning("Routing service returned no route (code=%s)", data.get("code"))
        return RouteEstimate.unavailable()

    route = routes[0]
    coordinates = (route.get("geometry") or {}).get("coordinates") or []
    return RouteEstimate(
        available=True,
        duration_seconds=int(round(route.get("duration", 0))),
        distance_meters=int(round(route.get("distance", 0))),
        polyline=[(lat, lon) for lon, lat in coordinates],
    )
