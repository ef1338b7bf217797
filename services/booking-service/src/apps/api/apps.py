# services/booking-service/src/apps/api/apps.py
from django.apps import AppConfig


class ApiConfig(AppConfig):
    """HTTP surface over the booking facade; owns no models."""

    name = 'apps.api'
    label = 'booking_api'
    verbose_name = 'Booking HTTP API'
