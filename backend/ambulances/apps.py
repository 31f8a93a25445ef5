from django.apps import AppConfig


class AmbulancesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'ambulances'
