from django.db import models
from django.conf import settings


class Booking(models.Model):
    """
    One requester-to-ambulance engagement.

    Status only moves along TRANSITIONS, and only through
    services.booking_management. Bookings are never deleted.
    """

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('accepted', 'Accepted'),
        ('rejected', 'Rejected'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    # Allowed edges of the lifecycle graph
    TRANSITIONS = {
        'pending': ('accepted', 'rejected', 'cancelled'),
        'accepted': ('completed', 'cancelled'),
    }

    ACTIVE_STATUSES = ('pending', 'accepted')
    TERMINAL_STATUSES = ('rejected', 'completed', 'cancelled')

    CANCELLED_BY_CHOICES = [
        ('requester', 'Requester'),
        ('operator', 'Ambulance Operator'),
        ('system', 'System'),
    ]

    # Foreign keys
    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='bookings'
    )

    # Set once at creation, never reassigned
    ambulance = models.ForeignKey(
        'ambulances.Ambulance',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='bookings'
    )

    # Pickup (requester position at booking time)
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)

    # Destination (usually a hospital)
    destination_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    destination_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    destination_name = models.CharField(max_length=255, blank=True)

    # Status & searching radius
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', db_index=True)
    search_radius = models.IntegerField(default=5000)

    # Estimates; a null ETA means the routing service could not answer
    estimated_cost = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    estimated_time_seconds = models.IntegerField(null=True, blank=True)
    route_distance_meters = models.IntegerField(null=True, blank=True)

    payment_status = models.BooleanField(default=False)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    cancellation_reason = models.TextField(blank=True)
    cancelled_by = models.CharField(max_length=10, choices=CANCELLED_BY_CHOICES, blank=True)

    class Meta:
        db_table = 'bookings'
        ordering = ['-created_at']

    def __str__(self):
        return f"Booking #{self.id} - {self.requester} - {self.status}"

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    @property
    def eta_available(self):
        return self.estimated_time_seconds is not None
