from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint
    
    # Authentication endpoints (at /api/auth/)
    path('api/auth/', include('accounts.urls')),  # login, token refresh, profile, requester location
    
    # Ambulance APIs (profile, location, queue, history, nearby search)
    path('api/ambulance/', include('ambulances.urls')),
    
    # Booking endpoints (at /api/bookings/)
    path('api/bookings/', include('bookings.urls')),  # create, current, accept/reject/complete/cancel

    # Payment endpoints (at /api/payments/)
    path('api/payments/', include('payments.urls')),  # Razorpay orders, checkout verify, webhook
]
