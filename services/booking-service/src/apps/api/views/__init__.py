# services/booking-service/src/apps/api/views/__init__.py
"""
Booking API Views
"""

from .booking_views import BookingViewSet
from .availability_views import ProviderAvailabilityViewSet


__all__ = [
    'BookingViewSet',
    'ProviderAvailabilityViewSet',
]
