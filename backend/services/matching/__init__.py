"""
Ambulance matching service.

This module handles:
    - Finding the nearest available, verified ambulance
    - Listing nearby candidates for the geospatial query API
"""

from .locator import Candidate, nearest_available, find_nearest, default_radius

__all__ = [
    "Candidate",
    "nearest_available",
    "find_nearest",
    "default_radius",
]
