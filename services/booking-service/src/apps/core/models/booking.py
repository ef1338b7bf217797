# services/booking-service/src/apps/core/models/booking.py
"""
Booking Model

A customer's appointment with a provider. Bookings are never deleted; they
move through the lifecycle defined in ``apps.core.state_machine`` and end in
a terminal status.
"""

import math
import secrets
import string
from datetime import datetime, timedelta
from typing import List

from django.db import models
from django.db.models import Case, F, Q, Value, When
from django.utils import timezone

from shared.common.mixins import UUIDPrimaryKeyMixin, TimestampMixin

from ..constants import (
    BookingStatus,
    CancelledBy,
    OCCUPYING_STATUSES,
    PaymentMethod,
    PaymentStatus,
    ServiceType,
    SLOT_CLAIM_BUCKET_MINUTES,
)
from ..schedule import Commitment, TimeWindow
from .provider import Provider, Service


def generate_booking_uid() -> str:
    """Human readable reference: ``BK`` + two letters + eight digits."""
    letters = ''.join(secrets.choice(string.ascii_uppercase) for _ in range(2))
    digits = ''.join(secrets.choice(string.digits) for _ in range(8))
    return f"BK{letters}{digits}"


class BookingQuerySet(models.QuerySet):

    def occupying(self):
        return self.filter(status__in=OCCUPYING_STATUSES)

    def for_provider_on(self, provider, on_date):
        return self.filter(provider=provider, booking_date=on_date)

    def for_customer(self, customer_id):
        return self.filter(customer_id=customer_id)

    def visible_to(self, user_id):
        """Bookings the account takes part in as customer, provider or shop owner."""
        return self.filter(
            Q(customer_id=user_id)
            | Q(provider__user_id=user_id)
            | Q(provider__shop__owner_id=user_id)
        )

    def with_visible_status(self, user_id=None):
        """
        Annotate ``visible_status``, the status as ``user_id`` is shown it: a
        shop barber's rejection reads as pending to the booking's customer
        while the shop owner can still reassign.
        """
        if user_id is None:
            return self.annotate(visible_status=F('status'))
        hidden_rejection = Q(
            customer_id=user_id,
            status=BookingStatus.REJECTED_BY_PROVIDER,
            provider__shop__isnull=False,
        ) & ~Q(provider__user_id=F('provider__shop__owner_id'))
        return self.annotate(visible_status=Case(
            When(hidden_rejection, then=Value(BookingStatus.PENDING.value)),
            default=F('status'),
            output_field=models.CharField(),
        ))

    def awaiting_action_by(self, user_id):
        """
        Pending requests the account may accept, plus shop bookings rejected
        by a barber that the shop owner still has to reassign.
        """
        return self.filter(
            Q(status=BookingStatus.PENDING, provider__user_id=user_id)
            | Q(status=BookingStatus.PENDING, provider__shop__owner_id=user_id)
            | Q(status=BookingStatus.REJECTED_BY_PROVIDER, provider__shop__owner_id=user_id)
        )


class Booking(UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Booking of one service with one provider at a date and time.
    """

    Status = BookingStatus
    PaymentStatus = PaymentStatus
    PaymentMethod = PaymentMethod
    ServiceType = ServiceType
    CancelledBy = CancelledBy

    uid = models.CharField(max_length=12, unique=True, default=generate_booking_uid, editable=False)

    # Parties
    customer_id = models.UUIDField(db_index=True)
    customer_name = models.CharField(max_length=255, blank=True, default='')
    provider = models.ForeignKey(Provider, on_delete=models.PROTECT, related_name='bookings')

    # Service (copied at creation)
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name='bookings')
    service_name = models.CharField(max_length=255)
    service_type = models.CharField(max_length=20, choices=ServiceType.choices)
    duration_minutes = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=10, decimal_places=2)

    # Schedule
    booking_date = models.DateField(db_index=True)
    booking_time = models.TimeField()

    status = models.CharField(
        max_length=30,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING,
        db_index=True
    )

    # Payment
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING
    )
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, blank=True, default='')
    payment_reference = models.CharField(max_length=255, blank=True, default='')

    # Details
    address = models.JSONField(null=True, blank=True)
    notes = models.TextField(blank=True, default='')
    cancellation_reason = models.TextField(blank=True, default='')
    rejection_reason = models.TextField(blank=True, default='')

    # Feedback
    rating = models.PositiveSmallIntegerField(null=True, blank=True)
    review = models.TextField(blank=True, default='')

    # Audit
    requested_at = models.DateTimeField(default=timezone.now)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=20, choices=CancelledBy.choices, blank=True, default='')

    objects = BookingQuerySet.as_manager()

    class Meta:
        db_table = 'bookings'
        ordering = ['-booking_date', '-booking_time']
        indexes = [
            models.Index(fields=['provider', 'booking_date', 'status']),
            models.Index(fields=['customer_id', 'status']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(rating__isnull=True) | models.Q(rating__gte=1, rating__lte=5),
                name='booking_rating_range',
            ),
        ]

    def __str__(self):
        return f"{self.uid} - {self.service_name} ({self.status})"

    @property
    def window(self) -> TimeWindow:
        return TimeWindow.starting_at(self.booking_time, self.duration_minutes)

    @property
    def start_datetime(self) -> datetime:
        return timezone.make_aware(
            datetime.combine(self.booking_date, self.booking_time),
            timezone.get_current_timezone()
        )

    @property
    def end_datetime(self) -> datetime:
        return self.start_datetime + timedelta(minutes=self.duration_minutes)

    @property
    def is_occupying(self) -> bool:
        return self.status in OCCUPYING_STATUSES

    @property
    def is_rated(self) -> bool:
        return self.rating is not None

    def as_commitment(self) -> Commitment:
        return Commitment(window=self.window, status=self.status)

    def claim_buckets(self) -> List[int]:
        return bucket_range(self.window)


def bucket_range(window: TimeWindow) -> List[int]:
    """Indices of every claim bucket the window touches."""
    first = window.start_minute // SLOT_CLAIM_BUCKET_MINUTES
    last = math.ceil(window.end_minute / SLOT_CLAIM_BUCKET_MINUTES)
    return list(range(first, last))


class SlotClaimQuerySet(models.QuerySet):

    def claim(self, booking: Booking, provider: Provider = None):
        """
        Insert one row per bucket covered by ``booking``. Raises
        ``IntegrityError`` when any bucket is already held.
        """
        provider = provider or booking.provider
        return self.bulk_create([
            SlotClaim(
                provider=provider,
                date=booking.booking_date,
                bucket=bucket,
                booking=booking,
            )
            for bucket in booking.claim_buckets()
        ])

    def release(self, booking: Booking) -> int:
        deleted, _ = self.filter(booking=booking).delete()
        return deleted


class SlotClaim(models.Model):
    """
    Row-level reservation of a provider's time. The unique constraint makes
    two occupying bookings of the same provider impossible to commit over
    the same bucket, whatever each request read beforehand.
    """

    provider = models.ForeignKey(Provider, on_delete=models.CASCADE, related_name='slot_claims')
    date = models.DateField()
    bucket = models.PositiveSmallIntegerField()
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='slot_claims')

    objects = SlotClaimQuerySet.as_manager()

    class Meta:
        db_table = 'slot_claims'
        constraints = [
            models.UniqueConstraint(fields=['provider', 'date', 'bucket'], name='uniq_slot_claim_bucket'),
        ]

    def __str__(self):
        return f"{self.provider_id} {self.date} #{self.bucket}"


class ReassignmentRecord(UUIDPrimaryKeyMixin):
    """Append-only history of who a booking was moved from and to."""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='reassignments')
    from_provider = models.ForeignKey(
        Provider, on_delete=models.PROTECT, related_name='reassigned_from'
    )
    to_provider = models.ForeignKey(
        Provider, on_delete=models.PROTECT, related_name='reassigned_to'
    )
    actor_id = models.CharField(max_length=100)
    previous_status = models.CharField(max_length=30, choices=BookingStatus.choices)
    resulting_status = models.CharField(max_length=30, choices=BookingStatus.choices)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = 'booking_reassignments'
        ordering = ['created_at']

    def __str__(self):
        return f"{self.booking_id}: {self.from_provider_id} -> {self.to_provider_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError('Reassignment records cannot be modified')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError('Reassignment records cannot be deleted')
