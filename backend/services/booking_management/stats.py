"""Dashboard numbers shown on the requester home screen."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from django.db.models import Avg, ExpressionWrapper, DurationField, F
from django.utils import timezone

from ambulances.models import Ambulance
from bookings.models import Booking

RESPONSE_TIME_WINDOW = timedelta(hours=24)


@dataclass
class DashboardStats:
    available_ambulances: int
    active_bookings: int
    # None when nothing was accepted inside the window
    average_response_seconds: Optional[float]

    def as_dict(self):
        return {
            "available_ambulances": self.available_ambulances,
            "active_bookings": self.active_bookings,
            "average_response_seconds": self.average_response_seconds,
        }


def get_dashboard_stats(requester=None) -> DashboardStats:
    """
    Collect dashboard statistics.

    Args:
        requester: When given, ``active_bookings`` only counts this
            requester's bookings; otherwise it is system-wide.
    """
    available = Ambulance.objects.filter(is_available=True, is_verified=True).count()

    active_qs = Booking.objects.filter(status__in=Booking.ACTIVE_STATUSES)
    if requester is not None:
        active_qs = active_qs.filter(requester=requester)

    since = timezone.now() - RESPONSE_TIME_WINDOW
    average = (
        Booking.objects.filter(accepted_at__isnull=False, created_at__gte=since)
        .annotate(
            response_time=ExpressionWrapper(
                F('accepted_at') - F('created_at'), output_field=DurationField()
            )
        )
        .aggregate(avg=Avg('response_time'))['avg']
    )

    return DashboardStats(
        available_ambulances=available,
        active_bookings=active_qs.count(),
        average_response_seconds=round(average.total_seconds(), 1) if average is not None else None,
    )
