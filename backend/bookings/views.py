from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from ambulances.views import require_ambulance
from common.api import error_response, forbidden
from services.exceptions import DispatchError
from services import booking_management
from .models import Booking
from .serializers import (
    BookingSerializer,
    BookingCreateSerializer,
    BookingCancelSerializer
)


# ==================== Requester Booking APIs ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def create_booking(request):
    """Create a new booking (Requester taps Book Ambulance)"""
    if request.user.role != 'requester':
        return forbidden('Only requesters can create bookings')

    serializer = BookingCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        result = booking_management.create_booking(
            request.user,
            data['destination_latitude'],
            data['destination_longitude'],
            pickup_latitude=data.get('pickup_latitude'),
            pickup_longitude=data.get('pickup_longitude'),
            destination_name=data.get('destination_name', ''),
            search_radius=data.get('search_radius'),
        )
    except DispatchError as e:
        return error_response(e)

    return Response({
        'success': True,
        'booking': BookingSerializer(result.booking).data,
        'message': result.message,
        'eta_available': result.extra['eta_available'],
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def get_current_booking(request):
    """
    Get requester's current active booking (POLLING ENDPOINT)

    Requester app re-fetches this whenever a change signal arrives, or on a
    timer when the WebSocket is down.
    """
    if request.user.role != 'requester':
        return forbidden('Only requesters can access this endpoint')

    booking = booking_management.get_active_booking_for_requester(request.user)
    if not booking:
        return Response(
            {
                'has_active_booking': False,
                'message': 'No active booking found'
            },
            status=status.HTTP_200_OK
        )

    response_data = {
        'has_active_booking': True,
        'booking': BookingSerializer(booking, context={'request': request}).data,
        'status': booking.status,
    }

    # Add helpful messages based on status
    if booking.status == 'pending':
        response_data['message'] = 'Waiting for the ambulance to accept...'
    elif booking.status == 'accepted':
        response_data['message'] = 'Ambulance is on the way!'

    return Response(response_data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def booking_history(request):
    """All bookings of the requester, newest first"""
    if request.user.role != 'requester':
        return forbidden('Only requesters can access this endpoint')

    bookings = Booking.objects.filter(requester=request.user).select_related('ambulance')
    serializer = BookingSerializer(bookings, many=True, context={'request': request})
    return Response({'count': len(serializer.data), 'bookings': serializer.data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def dashboard_stats(request):
    """Available ambulances, active bookings and average response time"""
    requester = request.user if request.user.role == 'requester' else None
    stats = booking_management.get_dashboard_stats(requester=requester)
    return Response(stats.as_dict())


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def booking_detail(request, booking_id):
    """A booking seen by its requester or by the operator of its ambulance"""
    try:
        booking = booking_management.get_booking_for_participant(booking_id, request.user)
    except DispatchError as e:
        return error_response(e)

    return Response(BookingSerializer(booking, context={'request': request}).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_booking(request, booking_id):
    """
    Cancel a booking, by its requester or by the assigned ambulance operator

    Pending and accepted bookings can be cancelled; the ambulance becomes
    available again.
    """
    serializer = BookingCancelSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    reason = serializer.validated_data.get('reason', '')
    try:
        if request.user.role == 'operator':
            ok, ambulance = require_ambulance(request.user)
            if ok is False:
                return ambulance
            result = booking_management.cancel_booking(
                booking_id,
                ambulance_id=ambulance.id,
                reason=reason or 'Cancelled by ambulance operator',
                cancelled_by='operator',
            )
        else:
            result = booking_management.cancel_booking(
                booking_id,
                requester_id=request.user.id,
                reason=reason,
                cancelled_by='requester',
            )
    except DispatchError as e:
        return error_response(e, booking_id=booking_id)

    booking = result.booking
    return Response({
        'success': True,
        'message': result.message,
        'booking_id': booking.id,
        'status': booking.status,
        'was_accepted': result.extra['was_accepted'],
        'cancelled_at': booking.cancelled_at
    })


# ==================== Ambulance Booking Actions ====================

@api_view(['POST'])
@permission_classes([IsAuthenticated])
def accept_booking(request, booking_id):
    """Accept a pending booking assigned to this operator's ambulance."""
    ok, ambulance = require_ambulance(request.user)
    if ok is False:
        return ambulance

    try:
        result = booking_management.accept_booking(booking_id, ambulance.id)
    except DispatchError as e:
        return error_response(e, booking_id=booking_id)

    return Response({
        'success': True,
        'booking': BookingSerializer(result.booking).data,
        'message': result.message
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def reject_booking(request, booking_id):
    """Decline a pending booking; the ambulance returns to the pool."""
    ok, ambulance = require_ambulance(request.user)
    if ok is False:
        return ambulance

    try:
        result = booking_management.reject_booking(booking_id, ambulance.id)
    except DispatchError as e:
        return error_response(e, booking_id=booking_id)

    return Response({
        'success': True,
        'booking_id': result.booking.id,
        'status': result.booking.status,
        'message': result.message
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def complete_booking(request, booking_id):
    """
    Complete a booking - CALLED BY OPERATOR

    Operator taps "Complete" when the patient reaches the destination.
    Changes status: accepted → completed and makes the ambulance available.
    """
    ok, ambulance = require_ambulance(request.user)
    if ok is False:
        return ambulance

    try:
        result = booking_management.complete_booking(booking_id, ambulance.id)
    except DispatchError as e:
        return error_response(e, booking_id=booking_id)

    booking = result.booking
    return Response({
        'success': True,
        'message': result.message,
        'booking_id': booking.id,
        'status': booking.status,
        'completed_at': booking.completed_at,
        'payment_status': booking.payment_status,
    })
