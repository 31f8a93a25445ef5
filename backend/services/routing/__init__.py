"""Routing/ETA adapter for the external routing service."""

from .eta import RouteEstimate, estimate_route

__all__ = ["RouteEstimate", "estimate_route"]
