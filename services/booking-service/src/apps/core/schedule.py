# services/booking-service/src/apps/core/schedule.py
"""
Provider Schedule

Weekly recurring availability plus per-date overrides. Pure value objects:
nothing in here touches the database or the clock.
"""

from dataclasses import dataclass, field
from datetime import date, time
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .constants import SLOT_CLAIM_BUCKET_MINUTES
from .exceptions import ValidationError

WEEKDAYS = (
    'monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday',
)

MINUTES_PER_DAY = 24 * 60


class DayStatus:
    AVAILABLE = 'available'
    UNAVAILABLE = 'unavailable'

    choices = [(AVAILABLE, 'Available'), (UNAVAILABLE, 'Unavailable')]


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValidationError(f"{minutes} minutes is outside a single day")
    return time(minutes // 60, minutes % 60)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end) within one day, in minutes since midnight."""

    start_minute: int
    end_minute: int

    def __post_init__(self):
        if self.start_minute >= self.end_minute:
            raise ValidationError('Time window must end after it starts')

    @classmethod
    def starting_at(cls, start: time, duration_minutes: int) -> 'TimeWindow':
        begin = to_minutes(start)
        return cls(begin, begin + duration_minutes)

    @property
    def start(self) -> time:
        return from_minutes(self.start_minute)

    @property
    def end(self) -> time:
        # A window may end exactly at midnight.
        if self.end_minute == MINUTES_PER_DAY:
            return time(23, 59, 59)
        return from_minutes(self.end_minute)

    @property
    def duration_minutes(self) -> int:
        return self.end_minute - self.start_minute

    def overlaps(self, other: 'TimeWindow') -> bool:
        return self.start_minute < other.end_minute and other.start_minute < self.end_minute

    def __str__(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


@dataclass(frozen=True)
class DayEntry:
    status: str = DayStatus.UNAVAILABLE
    start: Optional[time] = None
    end: Optional[time] = None

    def __post_init__(self):
        if self.status not in (DayStatus.AVAILABLE, DayStatus.UNAVAILABLE):
            raise ValidationError(f"Unknown day status: {self.status}")
        if self.status == DayStatus.AVAILABLE:
            if self.start is None or self.end is None:
                raise ValidationError('Available days need a start and an end time')
            if self.start >= self.end:
                raise ValidationError(
                    f"Day start {self.start:%H:%M} must be before end {self.end:%H:%M}"
                )
            for value in (self.start, self.end):
                if to_minutes(value) % SLOT_CLAIM_BUCKET_MINUTES:
                    raise ValidationError(
                        f"Opening hours must fall on a {SLOT_CLAIM_BUCKET_MINUTES}-minute boundary, got {value:%H:%M}"
                    )

    @classmethod
    def available(cls, start: time, end: time) -> 'DayEntry':
        return cls(DayStatus.AVAILABLE, start, end)

    @classmethod
    def unavailable(cls) -> 'DayEntry':
        return cls(DayStatus.UNAVAILABLE)

    @property
    def is_available(self) -> bool:
        return self.status == DayStatus.AVAILABLE

    @property
    def window(self) -> Optional[TimeWindow]:
        if not self.is_available:
            return None
        return TimeWindow(to_minutes(self.start), to_minutes(self.end))

    def as_dict(self) -> Dict:
        return {
            'status': self.status,
            'start': self.start.strftime('%H:%M') if self.start else None,
            'end': self.end.strftime('%H:%M') if self.end else None,
        }


@dataclass(frozen=True)
class Schedule:
    """
    Seven day entries, Monday first, plus date-specific overrides that
    replace the weekday entry for that one date.
    """

    days: Tuple[DayEntry, ...]
    overrides: Mapping[date, DayEntry] = field(default_factory=dict)

    def __post_init__(self):
        if len(self.days) != len(WEEKDAYS):
            raise ValidationError(
                f"A schedule needs exactly {len(WEEKDAYS)} day entries, got {len(self.days)}"
            )

    @classmethod
    def closed(cls) -> 'Schedule':
        return cls(days=tuple(DayEntry.unavailable() for _ in WEEKDAYS))

    @classmethod
    def from_weekdays(
        cls,
        days: Mapping[str, DayEntry],
        overrides: Optional[Mapping[date, DayEntry]] = None
    ) -> 'Schedule':
        """Build from a ``{'monday': DayEntry, ...}`` mapping naming every weekday once."""
        unknown = set(days) - set(WEEKDAYS)
        if unknown:
            raise ValidationError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
        missing = [name for name in WEEKDAYS if name not in days]
        if missing:
            raise ValidationError(f"Schedule is missing weekday(s): {', '.join(missing)}")
        return cls(days=tuple(days[name] for name in WEEKDAYS), overrides=dict(overrides or {}))

    def entry_for(self, on: date) -> DayEntry:
        override = self.overrides.get(on)
        if override is not None:
            return override
        return self.days[on.weekday()]

    def weekday_entry(self, name: str) -> DayEntry:
        try:
            return self.days[WEEKDAYS.index(name)]
        except ValueError:
            raise ValidationError(f"Unknown weekday: {name}")

    def as_weekdays(self) -> Dict[str, DayEntry]:
        return dict(zip(WEEKDAYS, self.days))

    def with_days(self, changes: Mapping[str, DayEntry]) -> 'Schedule':
        days = self.as_weekdays()
        for name, entry in changes.items():
            if name not in days:
                raise ValidationError(f"Unknown weekday: {name}")
            days[name] = entry
        return Schedule.from_weekdays(days, self.overrides)

    def with_overrides(
        self,
        set_overrides: Mapping[date, DayEntry],
        cleared: Iterable[date] = ()
    ) -> 'Schedule':
        overrides = dict(self.overrides)
        for on in cleared:
            overrides.pop(on, None)
        overrides.update(set_overrides)
        return Schedule(days=self.days, overrides=overrides)


@dataclass(frozen=True)
class Commitment:
    """An existing booking as the slot calculator sees it."""

    window: TimeWindow
    status: str
