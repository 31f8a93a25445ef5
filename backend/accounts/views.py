from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework_simplejwt.tokens import RefreshToken

from .permissions import IsRequester
from .serializers import LoginSerializer, UserSerializer, LocationRefreshSerializer
from .services import refresh_requester_location


class LoginView(APIView):
    """
    Login with username and password to get JWT tokens
    
    POST Body:
    {
        "username": "john_doe",
        "password": "password123"
    }
    """
    permission_classes = (AllowAny,)
    authentication_classes = []
    
    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        # Get the user object from the validated data
        user = serializer.validated_data
        
        # Generate JWT tokens
        refresh = RefreshToken.for_user(user)
        
        return Response({
            "message": "Login successful",
            "user": UserSerializer(user).data,
            "tokens": {
                "refresh": str(refresh),
                "access": str(refresh.access_token)
            }
        }, status=status.HTTP_200_OK)


class ProfileView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(UserSerializer(request.user).data)


class LocationRefreshView(APIView):
    """
    Requester app reports its current position.
    
    POST Body:
    {
        "latitude": 28.6139,
        "longitude": 77.2090
    }
    """
    permission_classes = [IsAuthenticated, IsRequester]

    def post(self, request):
        serializer = LocationRefreshSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = refresh_requester_location(
            request.user,
            serializer.validated_data["latitude"],
            serializer.validated_data["longitude"],
        )
        return Response({
            "message": "Location updated",
            "latitude": float(user.last_latitude),
            "longitude": float(user.last_longitude),
            "last_location_update": user.last_location_update,
        })
