"""
Nearest available ambulance lookup.

Candidates are ambulances that are available, verified and have a known
position. A geohash cell cover of the search circle narrows the query (grid
index); exact haversine distance then decides. Ties go to the lowest
ambulance id so results are deterministic.
"""

import logging
from dataclasses import dataclass
from functools import reduce
from operator import or_
from typing import List, Optional

from django.conf import settings
from django.db.models import Q

from ambulances.models import Ambulance
from common.utils import (
    calculate_distance,
    covering_precision,
    get_covering_geohashes,
    is_valid_coordinate,
)
from services.exceptions import InvalidCoordinatesError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """One row of the geospatial query result."""
    ambulance_id: int
    latitude: float
    longitude: float
    distance_meters: float


def default_radius() -> int:
    return settings.LOCATOR_DEFAULT_RADIUS_METERS


def _bookable_ambulances():
    return Ambulance.objects.filter(
        is_available=True,
        is_verified=True,
        latitude__isnull=False,
        longitude__isnull=False,
    )


def _index_filter(lat: float, lon: float, radius_meters: float) -> Optional[Q]:
    """Geohash prefix filter covering the search circle, or None for a full scan."""
    precision = covering_precision(lat, lon, radius_meters, max_precision=settings.GEOHASH_PRECISION)
    if precision is None:
        return None
    cells = get_covering_geohashes(lat, lon, radius_meters, precision=precision)
    return reduce(or_, (Q(geohash__startswith=cell) for cell in sorted(cells)))


def nearest_available(
    latitude: float,
    longitude: float,
    radius_meters: Optional[float] = None,
    limit: Optional[int] = None,
) -> List[Candidate]:
    """
    Available, verified ambulances within ``radius_meters``, closest first.
    
    Args:
        latitude: Search centre latitude
        longitude: Search centre longitude
        radius_meters: Search radius (defaults to LOCATOR_DEFAULT_RADIUS_METERS)
        limit: Maximum number of candidates to return
    
    Returns:
        Candidates sorted by (distance, ambulance id)
    
    Raises:
        InvalidCoordinatesError: If the coordinates are out of range
    """
    if not is_valid_coordinate(latitude, longitude):
        raise InvalidCoordinatesError()

    lat = float(latitude)
    lon = float(longitude)
    radius = float(radius_meters if radius_meters is not None else default_radius())

    queryset = _bookable_ambulances()
    index_filter = _index_filter(lat, lon, radius)
    if index_filter is not None:
        queryset = queryset.filter(index_filter)

    candidates: List[Candidate] = []
    for ambulance_id, amb_lat, amb_lon in queryset.values_list("id", "latitude", "longitude"):
        distance = calculate_distance(lat, lon, float(amb_lat), float(amb_lon))
        if distance <= radius:
            candidates.append(Candidate(ambulance_id, float(amb_lat), float(amb_lon), distance))

    # Millimetre rounding keeps float noise from breaking id tie-breaks
    candidates.sort(key=lambda c: (round(c.distance_meters, 3), c.ambulance_id))

    logger.debug(
        "Locator at (%s, %s) radius=%sm: %d candidate(s), indexed=%s",
        lat, lon, radius, len(candidates), index_filter is not None,
    )

    if limit is not None:
        return candidates[:limit]
    return candidates


def find_nearest(
    latitude: float,
    longitude: float,
    radius_meters: Optional[float] = None,
) -> Optional[Ambulance]:
    """
    The closest bookable ambulance, or None when nothing lies within the radius.

    Read-only: never touches the availability ledger.
    """
    candidates = nearest_available(latitude, longitude, radius_meters, limit=1)
    if not candidates:
        return None
    return Ambulance.objects.select_related("operator").get(pk=candidates[0].ambulance_id)
