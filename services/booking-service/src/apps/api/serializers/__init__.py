# services/booking-service/src/apps/api/serializers/__init__.py
"""
Booking API Serializers
"""

from .booking_serializers import (
    BookingSerializer,
    BookingDetailSerializer,
    BookingCreateSerializer,
    BookingDetailsUpdateSerializer,
    BookingRejectSerializer,
    BookingCancelSerializer,
    BookingReassignSerializer,
    BookingRateSerializer,
    BookingPaySerializer,
    ReassignmentRecordSerializer,
)

from .availability_serializers import (
    SlotSerializer,
    DayAvailabilitySerializer,
    SlotQuerySerializer,
    WeekSlotQuerySerializer,
    DayEntrySerializer,
    ScheduleSerializer,
    ScheduleUpdateSerializer,
)


__all__ = [
    # Booking
    'BookingSerializer',
    'BookingDetailSerializer',
    'BookingCreateSerializer',
    'BookingDetailsUpdateSerializer',
    'BookingRejectSerializer',
    'BookingCancelSerializer',
    'BookingReassignSerializer',
    'BookingRateSerializer',
    'BookingPaySerializer',
    'ReassignmentRecordSerializer',

    # Availability
    'SlotSerializer',
    'DayAvailabilitySerializer',
    'SlotQuerySerializer',
    'WeekSlotQuerySerializer',
    'DayEntrySerializer',
    'ScheduleSerializer',
    'ScheduleUpdateSerializer',
]
