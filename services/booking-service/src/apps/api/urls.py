# services/booking-service/src/apps/api/urls.py
"""
Routes under ``/api/v1/``.

    bookings/                      list, create
    bookings/<id>/                 retrieve, partial update of details
    bookings/<id>/<action>/        accept, reject, reassign, start, cancel,
                                   complete, no-show, rate, pay
    bookings/<id>/reassignments/   reassignment history
    bookings/pending/              inbox of the approval authority
    providers/<id>/slots/          one day of availability
    providers/<id>/week-slots/     the next seven days
    providers/<id>/schedule/       weekly hours and overrides
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import BookingViewSet, ProviderAvailabilityViewSet

app_name = 'api'

router = DefaultRouter()
router.register(r'bookings', BookingViewSet, basename='booking')
router.register(r'providers', ProviderAvailabilityViewSet, basename='provider')

urlpatterns = [
    path('', include(router.urls)),
]
