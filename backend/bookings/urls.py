from django.urls import path
from . import views

app_name = 'bookings'

urlpatterns = [
    # Requester APIs
    path('', views.create_booking, name='create-booking'),
    path('current/', views.get_current_booking, name='current-booking'),
    path('history/', views.booking_history, name='booking-history'),
    path('stats/', views.dashboard_stats, name='dashboard-stats'),
    path('<int:booking_id>/', views.booking_detail, name='booking-detail'),
    path('<int:booking_id>/cancel/', views.cancel_booking, name='cancel-booking'),

    # Ambulance Booking Actions
    path('<int:booking_id>/accept/', views.accept_booking, name='accept-booking'),
    path('<int:booking_id>/reject/', views.reject_booking, name='reject-booking'),
    path('<int:booking_id>/complete/', views.complete_booking, name='complete-booking'),
]
