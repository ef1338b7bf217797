"""
Booking Service Models
"""

from .provider import Shop, Service, Provider
from .schedule import ScheduleDay, ScheduleOverride, ensure_week, load_schedule
from .booking import Booking, SlotClaim, ReassignmentRecord, generate_booking_uid

__all__ = [
    'Shop',
    'Service',
    'Provider',
    'ScheduleDay',
    'ScheduleOverride',
    'ensure_week',
    'load_schedule',
    'Booking',
    'SlotClaim',
    'ReassignmentRecord',
    'generate_booking_uid',
]
