from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Extended user model: emergency requesters and ambulance operators"""
    ROLE_CHOICES = [
        ('requester', 'Requester'),
        ('operator', 'Ambulance Operator'),
    ]
    
    # Role & basic info
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='requester')
    phone_number = models.CharField(max_length=15)
    display_name = models.CharField(max_length=150, blank=True)

    # Last known position, refreshed by the requester app
    last_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    last_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(null=True, blank=True)
    
    class Meta:
        db_table = 'users'
        
    def __str__(self):
        return f"{self.display_name or self.username} ({self.get_role_display()})"

    @property
    def is_requester(self):
        return self.role == 'requester'

    @property
    def is_operator(self):
        return self.role == 'operator'
