from rest_framework import serializers

from ambulances.models import Ambulance
from accounts.serializers import UserSerializer


class AmbulanceProfileSerializer(serializers.ModelSerializer):
    """
    Full ambulance profile serializer (operator's own view)
    """
    operator = UserSerializer(read_only=True)

    class Meta:
        model = Ambulance
        fields = [
            "id",
            "operator",
            "operator_name",
            "contact_number",
            "license_number",
            "vehicle_number",
            "latitude",
            "longitude",
            "last_location_update",
            "is_available",
            "is_verified",
        ]
        read_only_fields = [
            "id", "license_number", "latitude", "longitude",
            "last_location_update", "is_available", "is_verified",
        ]

    def update(self, instance, validated_data):
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        # Write only the edited columns; is_available belongs to the ledger
        instance.save(update_fields=list(validated_data))
        instance.refresh_from_db(fields=["is_available", "availability_changed_at"])
        return instance


class AmbulanceBasicSerializer(serializers.ModelSerializer):
    """
    Lite version of ambulance info for booking details (sent to requesters).
    """

    class Meta:
        model = Ambulance
        fields = [
            "id",
            "operator_name",
            "contact_number",
            "vehicle_number",
            "latitude",
            "longitude",
        ]


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating ambulance GPS location.
    """
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-90, max_value=90)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-180, max_value=180)


class NearbyQuerySerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    radius = serializers.IntegerField(min_value=1, max_value=50000, required=False)
    limit = serializers.IntegerField(min_value=1, max_value=50, default=10)
