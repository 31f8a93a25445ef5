from django.conf import settings
from django.db import models
from django.utils import timezone

from common.utils.geo import encode_geohash

User = settings.AUTH_USER_MODEL


class Ambulance(models.Model):
    """
    A transport unit and its operator.

    ``is_available`` belongs to the availability ledger
    (services.availability); nothing else writes it.
    ``is_verified`` is granted by staff through the admin.
    """

    operator = models.OneToOneField(User, on_delete=models.CASCADE, related_name='ambulance')

    # Operator & vehicle details
    operator_name = models.CharField(max_length=150)
    contact_number = models.CharField(max_length=15)
    license_number = models.CharField(max_length=50, unique=True)
    vehicle_number = models.CharField(max_length=20, blank=True)

    # Live position; geohash is derived from it on save and used as a grid index
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    geohash = models.CharField(max_length=12, blank=True, db_index=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    is_available = models.BooleanField(default=True)
    is_verified = models.BooleanField(default=False)
    availability_changed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'ambulances'
        indexes = [
            models.Index(fields=['is_available', 'is_verified'], name='ambulance_bookable_idx'),
        ]

    def __str__(self):
        return f"{self.operator_name} - {self.license_number}"

    def save(self, *args, **kwargs):
        if self.latitude is not None and self.longitude is not None:
            self.geohash = encode_geohash(self.latitude, self.longitude, settings.GEOHASH_PRECISION)
        else:
            self.geohash = ""

        update_fields = kwargs.get('update_fields')
        if update_fields is not None and {'latitude', 'longitude'} & set(update_fields):
            kwargs['update_fields'] = set(update_fields) | {'geohash'}

        super().save(*args, **kwargs)
