# services/booking-service/src/apps/api/serializers/availability_serializers.py
"""
Availability Serializers

Serializers for slot listings and provider schedules.
"""

from rest_framework import serializers

from apps.core.commands import ScheduleUpdate
from apps.core.exceptions import BookingError
from apps.core.schedule import DayEntry, DayStatus, WEEKDAYS


class SlotSerializer(serializers.Serializer):
    """A bookable start time and when the service would end."""

    start = serializers.SerializerMethodField()
    end = serializers.SerializerMethodField()

    def get_start(self, obj) -> str:
        return obj.start.strftime('%H:%M')

    def get_end(self, obj) -> str:
        return obj.end.strftime('%H:%M')


class DayAvailabilitySerializer(serializers.Serializer):
    date = serializers.DateField()
    day_status = serializers.CharField()
    is_fully_booked = serializers.BooleanField()
    slots = SlotSerializer(many=True)


class SlotQuerySerializer(serializers.Serializer):
    """Query parameters for a single day of slots."""

    service_id = serializers.UUIDField()
    date = serializers.DateField()


class WeekSlotQuerySerializer(serializers.Serializer):
    service_id = serializers.UUIDField()
    start = serializers.DateField(required=False)
    days = serializers.IntegerField(required=False, min_value=1, max_value=31)


class DayEntrySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=DayStatus.choices)
    start = serializers.TimeField(required=False, allow_null=True, format='%H:%M')
    end = serializers.TimeField(required=False, allow_null=True, format='%H:%M')

    def validate(self, data):
        if data['status'] == DayStatus.UNAVAILABLE:
            return DayEntry.unavailable()
        try:
            return DayEntry(data['status'], data.get('start'), data.get('end'))
        except BookingError as e:
            raise serializers.ValidationError(str(e.detail))


class ScheduleSerializer(serializers.Serializer):
    """Read model of a provider schedule."""

    def to_representation(self, schedule):
        return {
            'days': {name: entry.as_dict() for name, entry in schedule.as_weekdays().items()},
            'overrides': {
                on.isoformat(): entry.as_dict()
                for on, entry in sorted(schedule.overrides.items())
            },
        }


class ScheduleUpdateSerializer(serializers.Serializer):
    """
    Replace weekday entries and set or clear date overrides, e.g.::

        {"days": {"monday": {"status": "available", "start": "09:00", "end": "17:00"}},
         "overrides": {"2026-12-24": {"status": "unavailable"}},
         "clear_overrides": ["2026-12-31"]}
    """

    days = serializers.DictField(child=DayEntrySerializer(), required=False, default=dict)
    overrides = serializers.DictField(child=DayEntrySerializer(), required=False, default=dict)
    clear_overrides = serializers.ListField(child=serializers.DateField(), required=False, default=list)

    def validate_days(self, value):
        unknown = sorted(set(value) - set(WEEKDAYS))
        if unknown:
            raise serializers.ValidationError(f"Unknown weekday(s): {', '.join(unknown)}")
        return value

    def validate_overrides(self, value):
        date_field = serializers.DateField()
        return {date_field.to_internal_value(key): entry for key, entry in value.items()}

    def validate(self, data):
        if not (data['days'] or data['overrides'] or data['clear_overrides']):
            raise serializers.ValidationError('Schedule update is empty.')
        return data

    def to_update(self) -> ScheduleUpdate:
        data = self.validated_data
        return ScheduleUpdate(
            days=dict(data['days']),
            overrides=dict(data['overrides']),
            cleared_overrides=tuple(data['clear_overrides']),
        )
