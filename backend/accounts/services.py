from django.utils import timezone


def refresh_requester_location(user, lat, lon):
    """
    Store the requester's latest coordinates.
    The previous position is superseded, never kept.
    """
    user.last_latitude = lat
    user.last_longitude = lon
    user.last_location_update = timezone.now()
    user.save(update_fields=["last_latitude", "last_longitude", "last_location_update"])
    return user
