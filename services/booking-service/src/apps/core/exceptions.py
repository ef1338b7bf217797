# services/booking-service/src/apps/core/exceptions.py
"""
Booking Error Taxonomy

Every failure a booking operation can produce. Each error carries its HTTP
status and error code so the API layer maps it without inspecting messages.
"""

from rest_framework import status

from shared.common.exceptions import BaseAPIException


class BookingError(BaseAPIException):
    """Base exception for booking service errors."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Booking operation failed.'
    default_code = 'booking_error'
    error_code = 'BOOKING_ERROR'


class ValidationError(BookingError):
    """Malformed input: missing field, bad enum, out-of-range value."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid booking request.'
    default_code = 'validation_error'
    error_code = 'VALIDATION_ERROR'


class NotFoundError(BookingError):
    """Booking, provider, service or schedule does not exist."""
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'
    default_code = 'not_found'
    error_code = 'NOT_FOUND'


class AuthorizationError(BookingError):
    """Actor lacks authority for the requested operation."""
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You are not allowed to perform this action on the booking.'
    default_code = 'forbidden'
    error_code = 'FORBIDDEN'


class InvalidStateTransition(BookingError):
    """Transition is not legal from the booking's current state."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The booking cannot make this transition from its current state.'
    default_code = 'invalid_state_transition'
    error_code = 'INVALID_STATE_TRANSITION'


class SlotUnavailable(BookingError):
    """Requested window is not (or no longer) free."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The requested time slot is no longer available.'
    default_code = 'slot_unavailable'
    error_code = 'SLOT_UNAVAILABLE'


class AlreadyProcessed(BookingError):
    """The booking request was already accepted or rejected."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This booking request has already been processed.'
    default_code = 'already_processed'
    error_code = 'ALREADY_PROCESSED'


class AlreadyRated(BookingError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'This booking has already been rated.'
    default_code = 'already_rated'
    error_code = 'ALREADY_RATED'


class ExternalDependencyError(BookingError):
    """Payment or notification collaborator failed."""
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'An external service failed to handle the request.'
    default_code = 'external_dependency_error'
    error_code = 'EXTERNAL_DEPENDENCY_ERROR'


__all__ = [
    'BookingError',
    'ValidationError',
    'NotFoundError',
    'AuthorizationError',
    'InvalidStateTransition',
    'SlotUnavailable',
    'AlreadyProcessed',
    'AlreadyRated',
    'ExternalDependencyError',
]
