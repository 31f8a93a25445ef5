"""Common utility functions."""

from .geo import (
    calculate_distance,
    covering_precision,
    encode_geohash,
    get_covering_geohashes,
    is_valid_coordinate,
)

__all__ = [
    "calculate_distance",
    "covering_precision",
    "encode_geohash",
    "get_covering_geohashes",
    "is_valid_coordinate",
]
