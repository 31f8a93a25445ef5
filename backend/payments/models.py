from django.db import models
from django.db.models import Q


class PaymentTransaction(models.Model):
    """
    Correlates a booking with one external payment order.

    ``outcome`` is written by services.payment_correlation only. ``success``
    and ``failed`` are final; ``cancelled`` may still be settled by a late
    gateway confirmation.
    """

    OUTCOME_CHOICES = [
        ('pending', 'Pending'),
        ('success', 'Success'),
        ('failed', 'Failed'),
        ('cancelled', 'Cancelled'),
    ]

    FINAL_OUTCOMES = ('success', 'failed')

    booking = models.ForeignKey(
        'bookings.Booking',
        on_delete=models.PROTECT,
        related_name='payments'
    )

    # Gateway references; order_ref stays empty until the gateway answers
    order_ref = models.CharField(max_length=64, blank=True, db_index=True)
    payment_ref = models.CharField(max_length=64, blank=True)

    amount = models.PositiveIntegerField(help_text="Minor currency units (paise)")
    currency = models.CharField(max_length=3, default='INR')

    outcome = models.CharField(max_length=10, choices=OUTCOME_CHOICES, default='pending')
    failure_reason = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payment_transactions'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['booking'],
                condition=Q(outcome='pending'),
                name='one_pending_payment_per_booking',
            ),
            models.UniqueConstraint(
                fields=['order_ref'],
                condition=~Q(order_ref=''),
                name='unique_payment_order_ref',
            ),
        ]

    def __str__(self):
        return f"Payment #{self.id} - Booking {self.booking_id} - {self.outcome}"

    @property
    def is_final(self):
        return self.outcome in self.FINAL_OUTCOMES
