from rest_framework import serializers
from django.contrib.auth import authenticate

from .models import User


class UserSerializer(serializers.ModelSerializer):

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "display_name",
            "email",
            "role",
            "phone_number",
            "last_latitude",
            "last_longitude",
            "last_location_update",
        ]
        read_only_fields = ["id", "role", "last_latitude", "last_longitude", "last_location_update"]


class RequesterBasicSerializer(serializers.ModelSerializer):
    """Lite requester info embedded in bookings (sent to ambulance operators)."""

    class Meta:
        model = User
        fields = ["id", "username", "display_name", "phone_number"]


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField()
    password = serializers.CharField(write_only=True)

    def validate(self, data):
        user = authenticate(username=data["username"], password=data["password"])
        if not user:
            raise serializers.ValidationError("Invalid username or password")
        return user


class LocationRefreshSerializer(serializers.Serializer):
    latitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-90, max_value=90)
    longitude = serializers.DecimalField(max_digits=9, decimal_places=6, min_value=-180, max_value=180)
