"""
Geographic utility functions.

This module provides core geospatial calculations used throughout the application:
haversine distance, geohash encoding and the geohash cell cover used by the
ambulance locator as a grid index.
"""

import math
from math import radians, cos, sin, asin, sqrt
from typing import Optional, Set

EARTH_RADIUS_METERS = 6371000

# Meters per degree of latitude, rounded down so covers err on the large side.
_METERS_PER_DEGREE = 111000.0

# Sample steps on each side of the centre used by get_covering_geohashes.
_COVER_STEPS = 3


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.
    
    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point
    
    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return c * EARTH_RADIUS_METERS


def is_valid_coordinate(lat, lon) -> bool:
    """True if lat/lon are finite numbers inside [-90, 90] / [-180, 180]."""
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


# Base32 alphabet for geohash
_BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"


def encode_geohash(lat: float, lon: float, precision: int = 6) -> str:
    """
    Encode latitude/longitude to geohash string.
    
    Args:
        lat: Latitude (-90 to 90)
        lon: Longitude (-180 to 180)
        precision: Number of characters (1-12)
    
    Returns:
        Geohash string
    """
    lat = float(lat)
    lon = float(lon)
    lat_range = (-90.0, 90.0)
    lon_range = (-180.0, 180.0)
    
    geohash = []
    bits = [16, 8, 4, 2, 1]
    bit = 0
    ch = 0
    is_lon = True
    
    while len(geohash) < precision:
        if is_lon:
            mid = (lon_range[0] + lon_range[1]) / 2
            if lon >= mid:
                ch |= bits[bit]
                lon_range = (mid, lon_range[1])
            else:
                lon_range = (lon_range[0], mid)
        else:
            mid = (lat_range[0] + lat_range[1]) / 2
            if lat >= mid:
                ch |= bits[bit]
                lat_range = (mid, lat_range[1])
            else:
                lat_range = (lat_range[0], mid)
        
        is_lon = not is_lon
        
        if bit < 4:
            bit += 1
        else:
            geohash.append(_BASE32[ch])
            bit = 0
            ch = 0
    
    return "".join(geohash)


def _search_offsets(lat: float, radius_meters: float):
    """Degree half-widths (lat, lon) of the box around a search circle."""
    lat_offset = radius_meters / _METERS_PER_DEGREE
    cos_lat = abs(math.cos(math.radians(lat)))
    if cos_lat < 1e-9:
        return lat_offset, 360.0
    return lat_offset, radius_meters / (_METERS_PER_DEGREE * cos_lat)


def _cell_size_degrees(precision: int):
    """Height and width in degrees of a geohash cell of the given length."""
    total_bits = 5 * precision
    lon_bits = (total_bits + 1) // 2
    lat_bits = total_bits // 2
    return 180.0 / (2 ** lat_bits), 360.0 / (2 ** lon_bits)


def covering_precision(lat: float, lon: float, radius_meters: float, max_precision: int = 6) -> Optional[int]:
    """
    Pick the longest geohash whose cells are at least as large as the sampling
    step of get_covering_geohashes, so the cover never skips a cell.

    Returns None when no safe precision exists (search box crosses a pole or
    the antimeridian, or is wider than a 1-character cell); callers then fall
    back to a full scan.
    """
    lat_offset, lon_offset = _search_offsets(lat, radius_meters)
    if lat - lat_offset < -90.0 or lat + lat_offset > 90.0:
        return None
    if lon - lon_offset < -180.0 or lon + lon_offset > 180.0:
        return None

    lat_step = lat_offset / _COVER_STEPS
    lon_step = lon_offset / _COVER_STEPS
    for precision in range(max_precision, 0, -1):
        cell_height, cell_width = _cell_size_degrees(precision)
        if cell_height >= lat_step and cell_width >= lon_step:
            return precision
    return None


def get_covering_geohashes(lat: float, lon: float, radius_meters: float, precision: int = 6) -> Set[str]:
    """
    Get all geohash cells that cover the circular area around a point.
    
    Args:
        lat: Center latitude
        lon: Center longitude
        radius_meters: Search radius in meters
        precision: Geohash precision
    
    Returns:
        Set of geohash strings covering the area
    """
    lat = float(lat)
    lon = float(lon)
    lat_offset, lon_offset = _search_offsets(lat, radius_meters)
    
    geohashes = set()
    
    # Sample points in a grid pattern
    steps = _COVER_STEPS
    for lat_step in range(-steps, steps + 1):
        for lon_step in range(-steps, steps + 1):
            sample_lat = lat + (lat_step * lat_offset / steps)
            sample_lon = lon + (lon_step * lon_offset / steps)
            gh = encode_geohash(sample_lat, sample_lon, precision)
            geohashes.add(gh)
    
    return geohashes
