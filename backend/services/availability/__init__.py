"""
Availability ledger for ambulances.

This package is the only code allowed to write Ambulance.is_available.
"""

from .ledger import set_available, is_available, claim, release

__all__ = [
    "set_available",
    "is_available",
    "claim",
    "release",
]
