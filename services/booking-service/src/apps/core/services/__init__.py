# services/booking-service/src/apps/core/services/__init__.py
"""
Booking Service Business Logic
"""

from apps.core.exceptions import (
    AlreadyProcessed,
    AlreadyRated,
    AuthorizationError,
    BookingError,
    ExternalDependencyError,
    InvalidStateTransition,
    NotFoundError,
    SlotUnavailable,
    ValidationError,
)

from .provider_resolution import ProviderResolution, resolve
from .availability_service import AvailabilityService, DayAvailability, compute_slots
from .notification_policy import NotificationIntent, plan_notifications
from .booking_service import BookingService

__all__ = [
    'AvailabilityService',
    'BookingService',
    'DayAvailability',
    'NotificationIntent',
    'ProviderResolution',
    'compute_slots',
    'plan_notifications',
    'resolve',
    # Exceptions
    'AlreadyProcessed',
    'AlreadyRated',
    'AuthorizationError',
    'BookingError',
    'ExternalDependencyError',
    'InvalidStateTransition',
    'NotFoundError',
    'SlotUnavailable',
    'ValidationError',
]
