from rest_framework import serializers

from .models import Booking

from accounts.serializers import RequesterBasicSerializer
from ambulances.serializers import AmbulanceBasicSerializer


class BookingSerializer(serializers.ModelSerializer):
    """Serializer for Bookings"""
    requester = RequesterBasicSerializer(read_only=True)
    ambulance = AmbulanceBasicSerializer(read_only=True)
    eta_available = serializers.BooleanField(read_only=True)

    class Meta:
        model = Booking
        fields = ['id', 'requester', 'ambulance', 'pickup_latitude', 'pickup_longitude',
                  'destination_latitude', 'destination_longitude', 'destination_name',
                  'status', 'search_radius', 'estimated_cost', 'estimated_time_seconds',
                  'route_distance_meters', 'eta_available', 'payment_status',
                  'created_at', 'accepted_at', 'rejected_at', 'completed_at',
                  'cancelled_at', 'cancellation_reason', 'cancelled_by']
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    """Serializer for creating bookings; pickup defaults to the last known position"""
    destination_latitude = serializers.DecimalField(max_digits=9, decimal_places=6)
    destination_longitude = serializers.DecimalField(max_digits=9, decimal_places=6)
    destination_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    pickup_latitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False)
    pickup_longitude = serializers.DecimalField(max_digits=9, decimal_places=6, required=False)
    search_radius = serializers.IntegerField(min_value=100, max_value=50000, required=False)

    def validate(self, data):
        if ('pickup_latitude' in data) != ('pickup_longitude' in data):
            raise serializers.ValidationError("Provide both pickup_latitude and pickup_longitude, or neither")
        return data


class BookingCancelSerializer(serializers.Serializer):
    """Serializer for booking cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True)
