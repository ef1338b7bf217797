# services/booking-service/src/apps/api/views/filters.py
"""
API Filters

Django Filter classes for booking API.
"""

import django_filters

from apps.core.constants import OCCUPYING_STATUSES
from apps.core.models import Booking


class BookingFilter(django_filters.FilterSet):
    """Filter for booking queries."""

    # Date filters
    date = django_filters.DateFilter(field_name='booking_date')
    date_from = django_filters.DateFilter(field_name='booking_date', lookup_expr='gte')
    date_to = django_filters.DateFilter(field_name='booking_date', lookup_expr='lte')

    # Status filters match the status as the caller is shown it
    status = django_filters.ChoiceFilter(field_name='visible_status', choices=Booking.Status.choices)
    status_in = django_filters.BaseInFilter(field_name='visible_status')
    active = django_filters.BooleanFilter(method='filter_active')

    # Parties
    provider_id = django_filters.UUIDFilter()
    shop_id = django_filters.UUIDFilter(field_name='provider__shop_id')
    customer_id = django_filters.UUIDFilter()

    service_type = django_filters.ChoiceFilter(choices=Booking.ServiceType.choices)
    payment_status = django_filters.ChoiceFilter(choices=Booking.PaymentStatus.choices)

    uid = django_filters.CharFilter(lookup_expr='iexact')

    class Meta:
        model = Booking
        fields = ['status', 'customer_id', 'service_type', 'payment_status']

    def filter_active(self, queryset, name, value):
        """Bookings that still hold provider time."""
        if value:
            return queryset.filter(visible_status__in=OCCUPYING_STATUSES)
        return queryset.exclude(visible_status__in=OCCUPYING_STATUSES)
