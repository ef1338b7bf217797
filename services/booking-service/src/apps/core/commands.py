# services/booking-service/src/apps/core/commands.py
"""
Update Commands

Each command enumerates exactly the fields an operation may change.
Unset fields are left alone.
"""

from dataclasses import dataclass, field
from datetime import date, time
from typing import Dict, Optional, Tuple
from uuid import UUID

from .schedule import DayEntry

UNSET = object()


@dataclass(frozen=True)
class CreateBookingCommand:
    provider_id: UUID
    service_id: UUID
    booking_date: date
    booking_time: time
    service_type: str
    address: Optional[Dict] = None
    notes: str = ''
    payment_method: str = ''
    customer_name: str = ''


@dataclass(frozen=True)
class BookingDetailsUpdate:
    """Customer-editable details of an open booking."""

    notes: object = UNSET
    address: object = UNSET
    payment_method: object = UNSET

    def changes(self) -> Dict:
        return {
            name: value
            for name, value in (
                ('notes', self.notes),
                ('address', self.address),
                ('payment_method', self.payment_method),
            )
            if value is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.changes()


@dataclass(frozen=True)
class ScheduleUpdate:
    """Replace some weekday entries and set or clear date overrides."""

    days: Dict[str, DayEntry] = field(default_factory=dict)
    overrides: Dict[date, DayEntry] = field(default_factory=dict)
    cleared_overrides: Tuple[date, ...] = ()

    def is_empty(self) -> bool:
        return not (self.days or self.overrides or self.cleared_overrides)

