# services/booking-service/src/apps/api/serializers/booking_serializers.py
"""
Booking Serializers

Serializers for booking requests, lifecycle actions and read models.
"""

from rest_framework import serializers

from apps.core.commands import BookingDetailsUpdate, CreateBookingCommand, UNSET
from apps.core.constants import MAX_RATING, MIN_RATING, PaymentMethod, ServiceType
from apps.core.models import Booking, ReassignmentRecord


class BookingSerializer(serializers.ModelSerializer):
    """
    Booking read model. ``status`` is projected for the requesting account:
    a customer of a shop booking still sees a barber's rejection as pending
    while the shop owner can reassign it.
    """

    status = serializers.SerializerMethodField()
    provider_id = serializers.UUIDField(read_only=True)
    provider_name = serializers.CharField(source='provider.display_name', read_only=True)
    shop_id = serializers.UUIDField(source='provider.shop_id', read_only=True, allow_null=True)
    service_id = serializers.UUIDField(read_only=True)
    starts_at = serializers.DateTimeField(source='start_datetime', read_only=True)
    ends_at = serializers.DateTimeField(source='end_datetime', read_only=True)

    class Meta:
        model = Booking
        fields = [
            'id', 'uid', 'status',
            'customer_id', 'customer_name',
            'provider_id', 'provider_name', 'shop_id',
            'service_id', 'service_name', 'service_type', 'duration_minutes', 'price',
            'booking_date', 'booking_time', 'starts_at', 'ends_at',
            'payment_status', 'payment_method',
            'address', 'notes',
            'rating', 'review',
            'requested_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_status(self, obj) -> str:
        booking_service = self.context.get('booking_service')
        actor = self.context.get('actor')
        if booking_service is None or actor is None:
            return obj.status
        return booking_service.visible_status(obj, actor)


class BookingDetailSerializer(BookingSerializer):
    """Booking with lifecycle timestamps and reasons."""

    class Meta(BookingSerializer.Meta):
        fields = BookingSerializer.Meta.fields + [
            'rejection_reason', 'reviewed_at', 'started_at', 'completed_at',
            'cancelled_at', 'cancelled_by', 'cancellation_reason',
        ]
        read_only_fields = fields

    def to_representation(self, instance):
        data = super().to_representation(instance)
        # The rejection is hidden from customers together with the status.
        if data['status'] != instance.status:
            data['rejection_reason'] = ''
            data['reviewed_at'] = None
        return data


class BookingCreateSerializer(serializers.Serializer):
    """Serializer for booking requests."""

    provider_id = serializers.UUIDField()
    service_id = serializers.UUIDField()
    booking_date = serializers.DateField()
    booking_time = serializers.TimeField()
    service_type = serializers.ChoiceField(choices=ServiceType.choices)
    address = serializers.JSONField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices, required=False, allow_blank=True, default=''
    )
    customer_name = serializers.CharField(required=False, allow_blank=True, default='', max_length=255)

    def validate(self, data):
        if data['service_type'] == ServiceType.HOME_BASED and not data.get('address'):
            raise serializers.ValidationError({'address': 'Home-based bookings need an address.'})
        return data

    def to_command(self) -> CreateBookingCommand:
        return CreateBookingCommand(**self.validated_data)


class BookingDetailsUpdateSerializer(serializers.Serializer):
    """Partial update of customer-editable details."""

    notes = serializers.CharField(required=False, allow_blank=True)
    address = serializers.JSONField(required=False, allow_null=True)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False, allow_blank=True)

    def validate(self, data):
        if not data:
            raise serializers.ValidationError('Provide at least one of notes, address or payment_method.')
        return data

    def to_update(self) -> BookingDetailsUpdate:
        data = self.validated_data
        return BookingDetailsUpdate(
            notes=data.get('notes', UNSET),
            address=data.get('address', UNSET),
            payment_method=data.get('payment_method', UNSET),
        )


class BookingRejectSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=1000)


class BookingCancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='', max_length=1000)


class BookingReassignSerializer(serializers.Serializer):
    """Either a provider of the same shop, or ``to_self`` for the shop owner."""

    provider_id = serializers.UUIDField(required=False, allow_null=True)
    to_self = serializers.BooleanField(required=False, default=False)

    def validate(self, data):
        if data.get('to_self') == bool(data.get('provider_id')):
            raise serializers.ValidationError('Provide exactly one of provider_id or to_self.')
        return data


class BookingRateSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=MIN_RATING, max_value=MAX_RATING)
    review = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)


class BookingPaySerializer(serializers.Serializer):
    method = serializers.ChoiceField(choices=PaymentMethod.choices, required=False)


class ReassignmentRecordSerializer(serializers.ModelSerializer):
    from_provider_name = serializers.CharField(source='from_provider.display_name', read_only=True)
    to_provider_name = serializers.CharField(source='to_provider.display_name', read_only=True)

    class Meta:
        model = ReassignmentRecord
        fields = [
            'id', 'from_provider_id', 'from_provider_name',
            'to_provider_id', 'to_provider_name',
            'actor_id', 'previous_status', 'resulting_status', 'created_at',
        ]
        read_only_fields = fields
