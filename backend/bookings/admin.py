"""Tells what to show in the Django admin interface for bookings app"""

from django.contrib import admin
from .models import Booking


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    """Booking admin; lifecycle fields only move through the booking service"""
    list_display = ['id', 'requester', 'ambulance', 'status', 'payment_status', 'created_at', 'accepted_at', 'completed_at']
    list_filter = ['status', 'payment_status', 'created_at']
    search_fields = ['requester__username', 'ambulance__license_number', 'destination_name']
    readonly_fields = ['status', 'payment_status', 'ambulance', 'created_at', 'accepted_at',
                       'rejected_at', 'completed_at', 'cancelled_at', 'cancelled_by']
    date_hierarchy = 'created_at'
