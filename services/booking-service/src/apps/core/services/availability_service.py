# services/booking-service/src/apps/core/services/availability_service.py
"""
Availability Service

Slot computation from a provider's weekly schedule and existing bookings,
and maintenance of the schedule itself.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured, ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from apps.core.constants import OCCUPYING_STATUSES, SLOT_CLAIM_BUCKET_MINUTES
from apps.core.exceptions import ValidationError
from apps.core.models import Booking, Provider, ScheduleDay, ScheduleOverride, Service, load_schedule
from apps.core.schedule import Commitment, DayStatus, Schedule, TimeWindow, WEEKDAYS, to_minutes

logger = logging.getLogger(__name__)

DEFAULT_GRANULARITY_MINUTES = 15


@dataclass(frozen=True)
class DayAvailability:
    """
    Slots for one day. ``day_status`` tells a closed day apart from a day
    that is open but fully booked (both have no slots).
    """

    date: date
    day_status: str
    slots: List[TimeWindow]

    @property
    def is_closed(self) -> bool:
        return self.day_status == DayStatus.UNAVAILABLE

    @property
    def is_fully_booked(self) -> bool:
        return not self.is_closed and not self.slots


def compute_slots(
    schedule: Schedule,
    on_date: date,
    duration_minutes: int,
    existing_bookings: Iterable[Commitment],
    now: datetime,
    granularity: int = DEFAULT_GRANULARITY_MINUTES
) -> List[TimeWindow]:
    """
    Bookable windows of ``duration_minutes`` on ``on_date``, earliest first.

    Candidate starts step by ``granularity`` from the day's opening time
    and stay inside its opening hours. A candidate survives when it does
    not overlap any occupying booking and, for today, starts after ``now``.
    ``now`` must be in the provider's local time.
    """
    if duration_minutes <= 0:
        raise ValidationError('Service duration must be positive')
    if granularity <= 0:
        raise ValidationError('Slot granularity must be positive')

    today = now.date()
    if on_date < today:
        return []

    entry = schedule.entry_for(on_date)
    if not entry.is_available:
        return []

    day = entry.window
    busy = [
        booking.window for booking in existing_bookings
        if booking.status in OCCUPYING_STATUSES
    ]

    start = day.start_minute
    if on_date == today:
        elapsed = to_minutes(now) + 1 - start
        if elapsed > 0:
            start += -(-elapsed // granularity) * granularity

    slots = []
    while start + duration_minutes <= day.end_minute:
        candidate = TimeWindow(start, start + duration_minutes)
        if not any(candidate.overlaps(window) for window in busy):
            slots.append(candidate)
        start += granularity

    return slots


class AvailabilityService:
    """
    Service for provider availability.

    Handles:
    - Slot listing for a day or a week
    - Reading and updating weekly schedules and date overrides
    """

    def __init__(self, granularity: int = None, clock: Callable[[], datetime] = None):
        self.granularity = granularity or getattr(
            settings, 'BOOKING_SLOT_GRANULARITY_MINUTES', DEFAULT_GRANULARITY_MINUTES
        )
        if self.granularity % SLOT_CLAIM_BUCKET_MINUTES:
            raise ImproperlyConfigured(
                f"Slot granularity must be a multiple of {SLOT_CLAIM_BUCKET_MINUTES} minutes"
            )
        self.clock = clock or timezone.now

    def local_now(self) -> datetime:
        return timezone.localtime(self.clock())

    # ==========================================================================
    # Lookups
    # ==========================================================================

    def get_provider(self, provider_id: uuid.UUID) -> Provider:
        from . import NotFoundError

        try:
            return Provider.objects.select_related('shop').get(id=provider_id)
        except (Provider.DoesNotExist, DjangoValidationError):
            raise NotFoundError(f"Provider {provider_id} not found")

    def get_service(self, service_id: uuid.UUID) -> Service:
        from . import NotFoundError

        try:
            return Service.objects.get(id=service_id, is_active=True)
        except (Service.DoesNotExist, DjangoValidationError):
            raise NotFoundError(f"Service {service_id} not found")

    def occupying_bookings(self, provider: Provider, on_date: date) -> List[Commitment]:
        """Read path used by the slot calculator."""
        bookings = Booking.objects.occupying().for_provider_on(provider, on_date)
        return [booking.as_commitment() for booking in bookings]

    # ==========================================================================
    # Available Slots
    # ==========================================================================

    def get_available_slots(
        self,
        provider_id: uuid.UUID,
        service_id: uuid.UUID,
        target_date: date
    ) -> DayAvailability:
        """Find bookable slots for a provider's service on a date."""
        provider = self.get_provider(provider_id)
        service = self.get_service(service_id)
        return self.day_availability(provider, service, target_date)

    def day_availability(
        self,
        provider: Provider,
        service: Service,
        target_date: date,
        duration_minutes: int = None,
        schedule: Schedule = None
    ) -> DayAvailability:
        if not provider.offers(service):
            raise ValidationError(f"{provider.display_name} does not offer {service.name}")

        if not provider.is_bookable:
            return DayAvailability(date=target_date, day_status=DayStatus.UNAVAILABLE, slots=[])

        schedule = schedule or load_schedule(provider, target_date, target_date)
        entry = schedule.entry_for(target_date)
        slots = compute_slots(
            schedule,
            target_date,
            duration_minutes or service.duration_minutes,
            self.occupying_bookings(provider, target_date),
            self.local_now(),
            self.granularity,
        )
        return DayAvailability(date=target_date, day_status=entry.status, slots=slots)

    def get_provider_week_slots(
        self,
        provider_id: uuid.UUID,
        service_id: uuid.UUID,
        start: date = None,
        days: int = None
    ) -> List[DayAvailability]:
        """Slots for ``days`` consecutive days starting at ``start`` (today by default)."""
        days = days or getattr(settings, 'BOOKING_AVAILABILITY_DAYS', 7)
        if not 1 <= days <= 31:
            raise ValidationError('days must be between 1 and 31')

        provider = self.get_provider(provider_id)
        service = self.get_service(service_id)
        start = start or self.local_now().date()
        end = start + timedelta(days=days - 1)
        schedule = load_schedule(provider, start, end)

        return [
            self.day_availability(provider, service, start + timedelta(days=offset), schedule=schedule)
            for offset in range(days)
        ]

    # ==========================================================================
    # Schedule
    # ==========================================================================

    def get_schedule(self, provider_id: uuid.UUID, date_from: date = None) -> Schedule:
        provider = self.get_provider(provider_id)
        return load_schedule(provider, date_from or self.local_now().date())

    @transaction.atomic
    def update_schedule(self, provider_id: uuid.UUID, update, actor) -> Schedule:
        """
        Apply a ``ScheduleUpdate``. Only the provider, the owner of the
        provider's shop or an admin may change a schedule. Existing bookings
        are left untouched.
        """
        from . import AuthorizationError
        from .provider_resolution import resolve

        provider = self.get_provider(provider_id)
        resolution = resolve(provider)
        if not (resolution.has_authority(actor.id) or actor.is_admin):
            raise AuthorizationError('You cannot change this schedule')
        if update.is_empty():
            raise ValidationError('Schedule update is empty')

        current = load_schedule(provider)
        # Validates the whole result before anything is written.
        updated = current.with_days(update.days).with_overrides(
            update.overrides, update.cleared_overrides
        )

        for name, entry in update.days.items():
            row, _ = ScheduleDay.objects.get_or_create(provider=provider, weekday=WEEKDAYS.index(name))
            row.apply_entry(entry)
            row.save()

        if update.cleared_overrides:
            ScheduleOverride.objects.filter(provider=provider, date__in=update.cleared_overrides).delete()

        for on, entry in update.overrides.items():
            row, _ = ScheduleOverride.objects.get_or_create(provider=provider, date=on)
            row.apply_entry(entry)
            row.save()

        logger.info(
            f"Updated schedule for provider {provider.id}",
            extra={
                'provider_id': str(provider.id),
                'days': sorted(update.days),
                'overrides': len(update.overrides),
                'cleared_overrides': len(update.cleared_overrides),
                'actor_id': actor.id,
            }
        )

        return updated
