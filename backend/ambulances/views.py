from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from ambulances.models import Ambulance
from ambulances.serializers import (
    AmbulanceProfileSerializer,
    LocationUpdateSerializer,
    NearbyQuerySerializer,
)
from bookings.models import Booking
from bookings.serializers import BookingSerializer
from common.api import error_response
from services.booking_management import get_active_booking_for_ambulance, get_pending_queue
from services.exceptions import DispatchError
from services.matching import nearest_available

from ambulances import services


# Utility: Ensure request.user operates an ambulance
def require_ambulance(user):
    if user.role != "operator":
        return False, Response({"error": "Only ambulance operators allowed"}, status=403)
    try:
        return True, user.ambulance
    except Ambulance.DoesNotExist:
        return False, Response({"error": "Ambulance profile not found"}, status=404)


class AmbulanceProfileView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, ambulance = require_ambulance(request.user)
        if ok is False:
            return ambulance  # Response object

        serializer = AmbulanceProfileSerializer(ambulance, context={"request": request})
        return Response(serializer.data)

    def post(self, request):
        ok, ambulance = require_ambulance(request.user)
        if ok is False:
            return ambulance

        serializer = AmbulanceProfileSerializer(
            ambulance, data=request.data, partial=True, context={"request": request}
        )
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data, status=200)


#    A candidate to move fully to WS. Keep HTTP fallback.
class AmbulanceLocationUpdateView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, ambulance = require_ambulance(request.user)
        if ok is False:
            return ambulance

        return Response({
            "latitude": float(ambulance.latitude) if ambulance.latitude is not None else None,
            "longitude": float(ambulance.longitude) if ambulance.longitude is not None else None,
            "last_updated": ambulance.last_location_update,
            "is_available": ambulance.is_available,
        })

    def post(self, request):
        ok, ambulance = require_ambulance(request.user)
        if ok is False:
            return ambulance

        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        lat = serializer.validated_data["latitude"]
        lon = serializer.validated_data["longitude"]

        services.update_ambulance_location(ambulance, lat, lon)

        return Response({
            "message": "Location updated",
            "latitude": float(lat),
            "longitude": float(lon),
            "is_available": ambulance.is_available,
        })


class AmbulanceQueueView(APIView):
    """
    Pending bookings waiting on this ambulance (POLLING ENDPOINT).

    Operator app polls this when its WebSocket is down.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, ambulance = require_ambulance(request.user)
        if ok is False:
            return ambulance

        queue = get_pending_queue(ambulance.id)
        serializer = BookingSerializer(queue, many=True, context={"request": request})
        return Response({
            "count": len(queue),
            "bookings": serializer.data,
            "is_available": ambulance.is_available,
        })


class AmbulanceCurrentBookingView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, ambulance = require_ambulance(request.user)
        if ok is False:
            return ambulance

        booking = get_active_booking_for_ambulance(ambulance.id)
        if not booking:
            return Response({"message": "No active booking"}, status=404)

        serializer = BookingSerializer(booking, context={"request": request})
        return Response(serializer.data)


class AmbulanceBookingHistoryView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, ambulance = require_ambulance(request.user)
        if ok is False:
            return ambulance

        completed = Booking.objects.filter(ambulance=ambulance, status="completed")
        serializer = BookingSerializer(completed, many=True, context={"request": request})

        return Response({"count": completed.count(), "bookings": serializer.data})


class NearbyAmbulancesView(APIView):
    """
    Nearest available ambulances around a point.

    Query params: latitude, longitude, radius (meters, optional), limit (optional)
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        serializer = NearbyQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            candidates = nearest_available(
                data["latitude"],
                data["longitude"],
                data.get("radius"),
                limit=data["limit"],
            )
        except DispatchError as e:
            return error_response(e)

        return Response({
            "count": len(candidates),
            "ambulances": [
                {
                    "id": c.ambulance_id,
                    "latitude": c.latitude,
                    "longitude": c.longitude,
                    "distance_meters": round(c.distance_meters, 1),
                }
                for c in candidates
            ],
        })
