from django.contrib import admin
from ambulances.models import Ambulance


@admin.register(Ambulance)
class AmbulanceAdmin(admin.ModelAdmin):
    """Admin panel for ambulances; verification is granted here."""

    list_display = [
        "operator_name",
        "license_number",
        "vehicle_number",
        "is_available",
        "is_verified",
        "latitude",
        "longitude",
        "last_location_update",
    ]

    list_filter = [
        "is_available",
        "is_verified",
        "last_location_update",
    ]

    search_fields = [
        "operator__username",
        "operator_name",
        "license_number",
        "vehicle_number",
    ]

    # Availability is owned by the booking lifecycle, never edited by hand.
    readonly_fields = [
        "is_available",
        "availability_changed_at",
        "geohash",
        "last_location_update",
    ]

    ordering = ("operator_name",)

    def save_model(self, request, obj, form, change):
        if not change:
            super().save_model(request, obj, form, change)
            return
        # The row may have been claimed since the form was loaded
        if form.changed_data:
            obj.save(update_fields=form.changed_data)
