# services/booking-service/src/apps/core/models/schedule.py
"""
Schedule Models

Persistent form of a provider's weekly schedule: one row per weekday and
one row per date override.
"""

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models

from shared.common.mixins import UUIDPrimaryKeyMixin, TimestampMixin

from ..exceptions import ValidationError
from ..schedule import DayEntry, DayStatus, Schedule, WEEKDAYS
from .provider import Provider


class ScheduleEntryFields(models.Model):
    status = models.CharField(
        max_length=20,
        choices=DayStatus.choices,
        default=DayStatus.UNAVAILABLE
    )
    start_time = models.TimeField(null=True, blank=True)
    end_time = models.TimeField(null=True, blank=True)

    class Meta:
        abstract = True

    def to_entry(self) -> DayEntry:
        if self.status == DayStatus.AVAILABLE:
            return DayEntry.available(self.start_time, self.end_time)
        return DayEntry.unavailable()

    def clean(self):
        try:
            self.to_entry()
        except ValidationError as e:
            raise DjangoValidationError(str(e.detail))

    def apply_entry(self, entry: DayEntry):
        self.status = entry.status
        self.start_time = entry.start if entry.is_available else None
        self.end_time = entry.end if entry.is_available else None


class ScheduleDay(UUIDPrimaryKeyMixin, TimestampMixin, ScheduleEntryFields):
    """Recurring availability for one weekday (0 = Monday)."""

    provider = models.ForeignKey(Provider, on_delete=models.CASCADE, related_name='schedule_days')
    weekday = models.PositiveSmallIntegerField(
        choices=[(index, name.title()) for index, name in enumerate(WEEKDAYS)]
    )

    class Meta:
        db_table = 'schedule_days'
        ordering = ['provider', 'weekday']
        constraints = [
            models.UniqueConstraint(fields=['provider', 'weekday'], name='uniq_schedule_day'),
            models.CheckConstraint(
                condition=models.Q(status='unavailable') | models.Q(start_time__lt=models.F('end_time')),
                name='schedule_day_start_before_end',
            ),
        ]

    def __str__(self):
        return f"{self.provider} {WEEKDAYS[self.weekday]}: {self.status}"


class ScheduleOverride(UUIDPrimaryKeyMixin, TimestampMixin, ScheduleEntryFields):
    """Replaces the weekday entry for a single date (day off, short hours)."""

    provider = models.ForeignKey(Provider, on_delete=models.CASCADE, related_name='schedule_overrides')
    date = models.DateField()
    reason = models.CharField(max_length=255, blank=True, default='')

    class Meta:
        db_table = 'schedule_overrides'
        ordering = ['provider', 'date']
        constraints = [
            models.UniqueConstraint(fields=['provider', 'date'], name='uniq_schedule_override'),
        ]

    def __str__(self):
        return f"{self.provider} {self.date}: {self.status}"


def ensure_week(provider: Provider):
    """Create the seven weekday rows (closed) a provider is missing."""
    existing = set(provider.schedule_days.values_list('weekday', flat=True))
    ScheduleDay.objects.bulk_create([
        ScheduleDay(provider=provider, weekday=weekday)
        for weekday in range(len(WEEKDAYS))
        if weekday not in existing
    ])


def load_schedule(provider: Provider, date_from=None, date_to=None) -> Schedule:
    """Build the domain schedule for ``provider``; missing weekdays count as closed."""
    rows = {row.weekday: row.to_entry() for row in provider.schedule_days.all()}
    days = tuple(rows.get(index, DayEntry.unavailable()) for index in range(len(WEEKDAYS)))

    overrides = provider.schedule_overrides.all()
    if date_from is not None:
        overrides = overrides.filter(date__gte=date_from)
    if date_to is not None:
        overrides = overrides.filter(date__lte=date_to)

    return Schedule(days=days, overrides={row.date: row.to_entry() for row in overrides})
