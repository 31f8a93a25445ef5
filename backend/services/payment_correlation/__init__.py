"""
Payment correlation service.

This module handles:
    - Creating a gateway order for an accepted booking
    - Reconciling gateway outcomes back into the booking's payment flag
    - Cancelling a pending payment attempt
"""

from .orders import (
    create_order,
    report_outcome,
    cancel_order,
    get_pending_transaction,
    booking_id_for_order,
)

__all__ = [
    "create_order",
    "report_outcome",
    "cancel_order",
    "get_pending_transaction",
    "booking_id_for_order",
]
