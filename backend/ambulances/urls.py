from django.urls import path
from .views import (
    AmbulanceProfileView,
    AmbulanceLocationUpdateView,
    AmbulanceQueueView,
    AmbulanceCurrentBookingView,
    AmbulanceBookingHistoryView,
    NearbyAmbulancesView,
)

urlpatterns = [
    path("profile/", AmbulanceProfileView.as_view(), name="ambulance-profile"),
    path("location/", AmbulanceLocationUpdateView.as_view(), name="ambulance-location"),
    path("queue/", AmbulanceQueueView.as_view(), name="ambulance-queue"),
    path("current/", AmbulanceCurrentBookingView.as_view(), name="ambulance-current-booking"),
    path("history/", AmbulanceBookingHistoryView.as_view(), name="ambulance-history"),
    path("nearby/", NearbyAmbulancesView.as_view(), name="ambulance-nearby"),
]
