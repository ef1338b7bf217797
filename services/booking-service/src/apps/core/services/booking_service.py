# services/booking-service/src/apps/core/services/booking_service.py
"""
Booking Service

Orchestrates the booking lifecycle: validates requests, runs the state
machine, persists results with compare-and-set updates, claims provider
time, and hands notifications and domain events over after commit.
"""

import logging
import uuid
from datetime import date, datetime, time
from typing import Callable, List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import QuerySet
from django.utils import timezone

from apps.core import state_machine
from apps.core.commands import BookingDetailsUpdate, CreateBookingCommand
from apps.core.constants import (
    BookingStatus,
    OCCUPYING_STATUSES,
    PaymentMethod,
    PaymentStatus,
    ServiceType,
)
from apps.core.events import EventPublisher, EventType, booking_payload, publish_domain_event
from apps.core.gateways import (
    CancellationPolicy,
    NotificationSink,
    PaymentGateway,
    get_notification_sink,
    get_payment_gateway,
)
from apps.core.models import (
    Booking,
    Provider,
    ReassignmentRecord,
    Service,
    Shop,
    SlotClaim,
    generate_booking_uid,
)
from apps.core.schedule import to_minutes
from apps.core.state_machine import Actor, BookingSnapshot, Transition, TransitionResult
from shared.common.middleware import get_request_id

from .availability_service import AvailabilityService, DayAvailability
from .notification_policy import NotificationIntent, plan_notifications
from .provider_resolution import ProviderResolution, resolve

logger = logging.getLogger(__name__)

UID_ATTEMPTS = 3

# Statuses in which a booking can still be paid for.
PAYABLE_STATUSES = frozenset({
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
    BookingStatus.COMPLETED,
})


class BookingService:
    """
    Service for managing bookings.

    Handles:
    - Booking requests and slot claiming
    - Status transitions (accept, reject, reassign, start, cancel, complete, no-show, rate)
    - Payment capture and refunds
    - Notification fan-out and domain events
    """

    def __init__(
        self,
        payment_gateway: PaymentGateway = None,
        notification_sink: NotificationSink = None,
        cancellation_policy: CancellationPolicy = None,
        availability_service: AvailabilityService = None,
        event_publisher: EventPublisher = None,
        clock: Callable[[], datetime] = None
    ):
        self.clock = clock or timezone.now
        self.availability = availability_service or AvailabilityService(clock=self.clock)
        self.payment_gateway = payment_gateway or get_payment_gateway()
        self.notification_sink = notification_sink or get_notification_sink()
        self.cancellation_policy = cancellation_policy or CancellationPolicy.from_settings()
        self.event_publisher = event_publisher or EventPublisher()

    def now(self) -> datetime:
        return self.clock()

    # ==========================================================================
    # Booking Requests
    # ==========================================================================

    def create_booking(self, actor: Actor, command: CreateBookingCommand) -> Booking:
        """
        Request a booking. The chosen start must be one of the provider's
        free slots; the slot is claimed in the same transaction as the
        insert, so of two racing requests for it only one commits.
        """
        now = self.now()
        provider = self.availability.get_provider(command.provider_id)
        service = self.availability.get_service(command.service_id)
        self._validate_request(provider, service, command, now)

        resolution = resolve(provider)
        booking_id = uuid.uuid4()
        result = state_machine.create(booking_id, actor, resolution, now)

        self._assert_slot_open(provider, service, command.booking_date, command.booking_time)

        booking = Booking(
            id=booking_id,
            customer_id=actor.id,
            customer_name=command.customer_name or actor.name,
            provider=provider,
            service=service,
            service_name=service.name,
            service_type=command.service_type,
            duration_minutes=service.duration_minutes,
            price=service.price,
            booking_date=command.booking_date,
            booking_time=command.booking_time,
            status=result.new_status,
            address=command.address if command.service_type == ServiceType.HOME_BASED else None,
            notes=(command.notes or '').strip(),
            payment_method=command.payment_method or '',
            **result.changes
        )

        with transaction.atomic():
            self._insert(booking)
            self._claim_slot(booking, provider)
            self._after_commit(result, booking, resolution, actor)

        logger.info(
            f"Created booking {booking.uid} with {provider.display_name} "
            f"on {booking.booking_date} at {booking.booking_time:%H:%M}",
            extra={'booking_id': str(booking.id), 'provider_id': str(provider.id)}
        )

        return booking

    def _validate_request(self, provider: Provider, service: Service, command: CreateBookingCommand,
                          now: datetime):
        from . import ValidationError

        if command.service_type not in ServiceType.values:
            raise ValidationError(f"Unknown service type: {command.service_type}")
        if command.payment_method and command.payment_method not in PaymentMethod.values:
            raise ValidationError(f"Unknown payment method: {command.payment_method}")
        if command.booking_time.second or command.booking_time.microsecond:
            raise ValidationError('Booking time must be on a whole minute')

        starts_at = timezone.make_aware(
            datetime.combine(command.booking_date, command.booking_time),
            timezone.get_current_timezone()
        )
        if starts_at <= now:
            raise ValidationError('Bookings cannot be made in the past')

        if not provider.is_bookable:
            raise ValidationError(f"{provider.display_name} is not accepting bookings")
        if not provider.offers(service):
            raise ValidationError(f"{provider.display_name} does not offer {service.name}")
        if not provider.can_perform(service, command.service_type):
            raise ValidationError(
                f"{service.name} is not available as {command.service_type} with {provider.display_name}"
            )
        if command.service_type == ServiceType.HOME_BASED and not command.address:
            raise ValidationError('Home-based bookings need an address')

    def _assert_slot_open(self, provider: Provider, service: Service, on_date: date, at: time,
                          duration_minutes: int = None) -> DayAvailability:
        from . import SlotUnavailable

        day = self.availability.day_availability(provider, service, on_date, duration_minutes)
        if day.is_closed:
            raise SlotUnavailable(f"{provider.display_name} is not available on {on_date}")

        start = to_minutes(at)
        if not any(slot.start_minute == start for slot in day.slots):
            raise SlotUnavailable(f"{at:%H:%M} on {on_date} is not available with {provider.display_name}")
        return day

    def _insert(self, booking: Booking):
        for attempt in range(1, UID_ATTEMPTS + 1):
            try:
                with transaction.atomic():
                    booking.save(force_insert=True)
                return
            except IntegrityError:
                # The uid is the only unique column a fresh row can collide on.
                if attempt == UID_ATTEMPTS:
                    raise
                booking.uid = generate_booking_uid()

    def _claim_slot(self, booking: Booking, provider: Provider):
        from . import SlotUnavailable

        try:
            with transaction.atomic():
                SlotClaim.objects.claim(booking, provider)
        except IntegrityError:
            logger.info(
                f"Slot claim lost for {provider.display_name} on {booking.booking_date} "
                f"at {booking.booking_time:%H:%M}",
                extra={'booking_id': str(booking.id), 'provider_id': str(provider.id)}
            )
            raise SlotUnavailable(
                f"{booking.booking_time:%H:%M} on {booking.booking_date} was just taken; "
                f"please choose another time"
            )

    # ==========================================================================
    # Status Transitions
    # ==========================================================================

    def accept(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        """Confirm a pending request. Provider or shop owner."""
        return self._transition(booking_id, actor, Transition.ACCEPT)

    def reject(self, booking_id: uuid.UUID, actor: Actor, reason: str) -> Booking:
        """Decline a pending request. Assigned provider only; a reason is required."""
        return self._transition(booking_id, actor, Transition.REJECT, reason=reason)

    def start(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        return self._transition(booking_id, actor, Transition.START)

    def complete(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        return self._transition(booking_id, actor, Transition.COMPLETE)

    def mark_no_show(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        return self._transition(booking_id, actor, Transition.MARK_NO_SHOW)

    def rate(self, booking_id: uuid.UUID, actor: Actor, rating: int, review: str = '') -> Booking:
        """Rate a completed booking once and fold the rating into provider and shop averages."""
        return self._transition(booking_id, actor, Transition.RATE, rating=rating, review=review)

    def _transition(self, booking_id: uuid.UUID, actor: Actor, transition: str, **payload) -> Booking:
        booking = self._get_booking(booking_id)
        resolution = resolve(booking.provider)
        result = state_machine.apply(
            transition, BookingSnapshot.from_booking(booking), actor, resolution, self.now(), **payload
        )

        guards = {'rating__isnull': True} if transition == Transition.RATE else {}

        with transaction.atomic():
            self._compare_and_set(booking, result, guards=guards)
            if result.new_status not in OCCUPYING_STATUSES:
                SlotClaim.objects.release(booking)
            if transition == Transition.RATE:
                self._record_rating(booking, result.changes['rating'])
            self._after_commit(result, booking, resolution, actor)

        logger.info(
            f"Booking {booking.uid}: {transition} by {actor.id} "
            f"({result.previous_status} -> {result.new_status})",
            extra={'booking_id': str(booking.id), 'transition': transition}
        )

        return booking

    def reassign(
        self,
        booking_id: uuid.UUID,
        actor: Actor,
        new_provider_id: uuid.UUID = None,
        to_self: bool = False
    ) -> Booking:
        """
        Move a pending or provider-rejected booking to another provider of
        the same shop. Shop owner only. With ``to_self`` the booking goes to
        the owner's own provider profile and is confirmed immediately.
        """
        from . import ValidationError

        now = self.now()

        with transaction.atomic():
            booking = self._get_booking(booking_id, for_update=True)
            previous_provider = booking.provider
            resolution = resolve(previous_provider)

            new_provider = self._reassignment_target(resolution, actor, new_provider_id, to_self)
            new_resolution = resolve(new_provider)
            result = state_machine.reassign(
                BookingSnapshot.from_booking(booking), actor, resolution, now,
                new_resolution=new_resolution,
            )

            if not new_provider.is_bookable:
                raise ValidationError(f"{new_provider.display_name} is not accepting bookings")
            if not new_provider.can_perform(booking.service, booking.service_type):
                raise ValidationError(f"{new_provider.display_name} cannot perform {booking.service_name}")
            self._assert_slot_open(
                new_provider, booking.service, booking.booking_date, booking.booking_time,
                duration_minutes=booking.duration_minutes,
            )

            self._compare_and_set(booking, result)
            SlotClaim.objects.release(booking)
            self._claim_slot(booking, new_provider)

            ReassignmentRecord.objects.create(
                booking=booking,
                from_provider=previous_provider,
                to_provider=new_provider,
                actor_id=actor.id,
                previous_status=result.previous_status,
                resulting_status=result.new_status,
                created_at=now,
            )
            self._after_commit(result, booking, resolution, actor, new_resolution)

        logger.info(
            f"Booking {booking.uid} reassigned from {previous_provider.display_name} "
            f"to {new_provider.display_name} ({result.new_status})",
            extra={'booking_id': str(booking.id), 'actor_id': actor.id}
        )

        return booking

    def _reassignment_target(self, resolution: ProviderResolution, actor: Actor,
                             new_provider_id: Optional[uuid.UUID], to_self: bool) -> Provider:
        from . import AuthorizationError, NotFoundError, ValidationError

        if not to_self:
            if new_provider_id is None:
                raise ValidationError('A provider to reassign to is required')
            return self.availability.get_provider(new_provider_id)

        if not resolution.is_shop_owner(actor.id):
            raise AuthorizationError("Only the owner of the provider's shop can take over this booking")
        provider = (
            Provider.objects.select_related('shop')
            .filter(user_id=actor.id, shop_id=resolution.shop_id)
            .first()
        )
        if provider is None:
            raise NotFoundError('You have no provider profile in this shop')
        return provider

    def cancel(self, booking_id: uuid.UUID, actor: Actor, reason: str = '') -> Booking:
        """
        Cancel a pending or confirmed booking. A paid booking is refunded
        first; if the refund fails the booking keeps its current status.
        """
        from . import ExternalDependencyError

        now = self.now()

        with transaction.atomic():
            booking = self._get_booking(booking_id, for_update=True)
            resolution = resolve(booking.provider)
            result = state_machine.cancel(
                BookingSnapshot.from_booking(booking), actor, resolution, now, reason=reason
            )

            extra_changes = {}
            refund = None
            if booking.payment_status == PaymentStatus.PAID:
                amount = self.cancellation_policy.refund_amount(
                    booking.price, booking.start_datetime, now, result.changes['cancelled_by']
                )
                if amount > 0:
                    refund = self.payment_gateway.refund(str(booking.id), amount)
                    if not refund.success:
                        raise ExternalDependencyError(
                            f"Refund for booking {booking.uid} was not accepted: {refund.message}"
                        )
                    extra_changes['payment_status'] = PaymentStatus.REFUNDED
                    logger.info(
                        f"Refunded {refund.amount} for booking {booking.uid}",
                        extra={'booking_id': str(booking.id), 'refund_reference': refund.reference}
                    )

            self._compare_and_set(booking, result, extra_changes=extra_changes)
            SlotClaim.objects.release(booking)
            self._after_commit(result, booking, resolution, actor)
            if refund is not None:
                self._publish_after_commit(
                    EventType.BOOKING_REFUNDED, booking, amount=refund.amount, reference=refund.reference
                )

        logger.info(
            f"Cancelled booking {booking.uid} by {result.changes['cancelled_by']}",
            extra={'booking_id': str(booking.id), 'actor_id': actor.id}
        )

        return booking

    def _compare_and_set(self, booking: Booking, result: TransitionResult, guards: dict = None,
                         extra_changes: dict = None):
        """
        Write the transition only if the booking still has the status the
        decision was based on.
        """
        changes = dict(result.changes)
        changes.update(extra_changes or {})
        updated = Booking.objects.filter(
            pk=booking.pk, status=result.previous_status, **(guards or {})
        ).update(status=result.new_status, updated_at=timezone.now(), **changes)

        if not updated:
            self._raise_conflict(booking.pk, result.transition)
        booking.refresh_from_db()

    def _raise_conflict(self, booking_id: uuid.UUID, transition: str):
        from . import AlreadyProcessed, AlreadyRated, InvalidStateTransition, NotFoundError

        current = Booking.objects.filter(pk=booking_id).values('status', 'rating').first()
        if current is None:
            raise NotFoundError(f"Booking {booking_id} not found")

        logger.info(
            f"Concurrent update on booking {booking_id}: {transition} lost, status is {current['status']}",
            extra={'booking_id': str(booking_id), 'transition': transition}
        )

        if transition == Transition.RATE and current['rating'] is not None:
            raise AlreadyRated()
        if transition in state_machine.DECISION_TRANSITIONS:
            raise AlreadyProcessed(f"Booking is already {current['status']}")
        raise InvalidStateTransition(
            f"Booking changed to {current['status']} before it could be {transition.replace('_', ' ')}"
        )

    def _record_rating(self, booking: Booking, rating: int):
        provider = Provider.objects.select_for_update().get(pk=booking.provider_id)
        provider.add_rating(rating)
        if provider.shop_id:
            shop = Shop.objects.select_for_update().get(pk=provider.shop_id)
            shop.add_rating(rating)

    # ==========================================================================
    # Payment and Details
    # ==========================================================================

    def pay(self, booking_id: uuid.UUID, actor: Actor, method: str = None) -> Booking:
        """
        Capture the booking price. A declined charge marks the booking's
        payment as failed; an unreachable gateway raises and changes nothing.
        """
        from . import AuthorizationError, InvalidStateTransition, ValidationError

        with transaction.atomic():
            booking = self._get_booking(booking_id, for_update=True)
            if actor.id != str(booking.customer_id) and not actor.is_admin:
                raise AuthorizationError('Only the customer can pay for this booking')

            method = method or booking.payment_method
            if method not in PaymentMethod.values:
                raise ValidationError('A valid payment method is required')
            if booking.status not in PAYABLE_STATUSES:
                raise InvalidStateTransition(f"A {booking.status} booking cannot be paid")
            if booking.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
                raise InvalidStateTransition(f"Booking payment is already {booking.payment_status}")

            result = self.payment_gateway.charge(str(booking.id), booking.price, method)
            payment_status = PaymentStatus.PAID if result.success else PaymentStatus.FAILED

            updated = Booking.objects.filter(
                pk=booking.pk, payment_status=booking.payment_status
            ).update(
                payment_status=payment_status,
                payment_method=method,
                payment_reference=result.reference,
                updated_at=timezone.now(),
            )
            if not updated:
                raise InvalidStateTransition('Booking payment changed while the charge was processed')
            booking.refresh_from_db()

            event_type = EventType.BOOKING_PAYMENT_CAPTURED if result.success else EventType.BOOKING_PAYMENT_FAILED
            self._publish_after_commit(event_type, booking)

        if result.success:
            logger.info(f"Payment captured for booking {booking.uid}", extra={'booking_id': str(booking.id)})
        else:
            logger.warning(
                f"Payment declined for booking {booking.uid}: {result.message}",
                extra={'booking_id': str(booking.id)}
            )

        return booking

    def update_booking_details(self, booking_id: uuid.UUID, actor: Actor,
                               update: BookingDetailsUpdate) -> Booking:
        """Change notes, address or payment method of an open booking."""
        from . import AuthorizationError, InvalidStateTransition, ValidationError

        if update.is_empty():
            raise ValidationError('Nothing to update')

        booking = self._get_booking(booking_id)
        if actor.id != str(booking.customer_id) and not actor.is_admin:
            raise AuthorizationError('Only the customer can change booking details')
        if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise InvalidStateTransition(f"A {booking.status} booking can no longer be changed")

        changes = update.changes()
        if 'notes' in changes:
            changes['notes'] = (changes['notes'] or '').strip()
        if 'payment_method' in changes:
            changes['payment_method'] = changes['payment_method'] or ''
            if changes['payment_method'] and changes['payment_method'] not in PaymentMethod.values:
                raise ValidationError(f"Unknown payment method: {changes['payment_method']}")
        if 'address' in changes:
            if booking.service_type == ServiceType.HOME_BASED and not changes['address']:
                raise ValidationError('Home-based bookings need an address')
            if booking.service_type == ServiceType.SHOP_BASED and changes['address']:
                raise ValidationError('Shop-based bookings do not take an address')

        with transaction.atomic():
            updated = Booking.objects.filter(pk=booking.pk, status=booking.status).update(
                updated_at=timezone.now(), **changes
            )
            if not updated:
                self._raise_conflict(booking.pk, 'update')
            booking.refresh_from_db()
            self._publish_after_commit(EventType.BOOKING_UPDATED, booking, changed=sorted(changes))

        logger.info(f"Updated booking {booking.uid}: {', '.join(sorted(changes))}")

        return booking

    # ==========================================================================
    # Queries
    # ==========================================================================

    def get_available_slots(self, provider_id: uuid.UUID, service_id: uuid.UUID,
                            target_date: date) -> DayAvailability:
        return self.availability.get_available_slots(provider_id, service_id, target_date)

    def get_booking(self, booking_id: uuid.UUID, actor: Actor) -> Booking:
        from . import AuthorizationError

        booking = self._get_booking(booking_id)
        if not self.can_view(booking, actor):
            raise AuthorizationError('You are not a party to this booking')
        return booking

    def list_bookings(
        self,
        actor: Actor,
        status: str = None,
        role: str = None,
        date_from: date = None,
        date_to: date = None
    ) -> QuerySet:
        """
        Bookings the actor takes part in. ``role`` narrows to ``customer``
        (own requests) or ``provider`` (bookings the actor serves or whose
        shop they own). Admins see everything.
        ``status`` matches the status each booking is shown to the actor with.
        """
        from . import ValidationError

        queryset = Booking.objects.select_related('provider__shop', 'service').with_visible_status(
            None if actor.is_system else actor.id
        )

        if role == 'customer':
            queryset = queryset.for_customer(actor.id)
        elif role == 'provider':
            queryset = queryset.visible_to(actor.id).exclude(customer_id=actor.id)
        elif role is not None:
            raise ValidationError(f"Unknown role filter: {role}")
        elif not (actor.is_admin or actor.is_system):
            queryset = queryset.visible_to(actor.id)

        if status is not None:
            if status not in BookingStatus.values:
                raise ValidationError(f"Unknown status: {status}")
            queryset = queryset.filter(visible_status=status)
        if date_from:
            queryset = queryset.filter(booking_date__gte=date_from)
        if date_to:
            queryset = queryset.filter(booking_date__lte=date_to)

        return queryset

    def list_pending_requests(self, actor: Actor) -> QuerySet:
        """Requests waiting on the actor: to accept, or (shop owners) to reassign."""
        return (
            Booking.objects.awaiting_action_by(actor.id)
            .select_related('provider__shop', 'service')
            .order_by('booking_date', 'booking_time')
        )

    def get_reassignment_history(self, booking_id: uuid.UUID, actor: Actor) -> List[ReassignmentRecord]:
        from . import AuthorizationError

        booking = self._get_booking(booking_id)
        resolution = resolve(booking.provider)
        provider_side = (
            resolution.has_authority(actor.id)
            or ReassignmentRecord.objects.filter(booking=booking, from_provider__user_id=actor.id).exists()
        )
        if not (provider_side or actor.is_admin):
            raise AuthorizationError('Only the shop and its providers can see reassignment history')
        return list(
            booking.reassignments.select_related('from_provider', 'to_provider').order_by('created_at')
        )

    def can_view(self, booking: Booking, actor: Actor) -> bool:
        if actor.is_admin or actor.is_system:
            return True
        if actor.id == str(booking.customer_id):
            return True
        return resolve(booking.provider).has_authority(actor.id)

    def visible_status(self, booking: Booking, actor: Actor) -> str:
        """The status as the given actor should see it."""
        if actor.id == str(booking.customer_id):
            return state_machine.customer_visible_status(booking.status, resolve(booking.provider))
        return booking.status

    def _get_booking(self, booking_id: uuid.UUID, for_update: bool = False) -> Booking:
        from . import NotFoundError

        queryset = Booking.objects.select_related('provider__shop', 'service')
        if for_update:
            queryset = queryset.select_for_update(of=('self',))
        try:
            return queryset.get(id=booking_id)
        except (Booking.DoesNotExist, DjangoValidationError):
            raise NotFoundError(f"Booking {booking_id} not found")

    # ==========================================================================
    # After Commit
    # ==========================================================================

    def _after_commit(self, result: TransitionResult, booking: Booking, resolution: ProviderResolution,
                      actor: Actor, new_resolution: ProviderResolution = None):
        """Plan notifications now, deliver them and publish events once the transaction commits."""
        snapshot = BookingSnapshot.from_booking(booking)
        intents = []
        for event in result.events:
            intents.extend(plan_notifications(event, snapshot, resolution, actor, new_resolution))
        request_id = get_request_id()

        def dispatch():
            for event in result.events:
                publish_domain_event(self.event_publisher, event, booking, correlation_id=request_id)
            self._dispatch_notifications(intents)

        transaction.on_commit(dispatch)

    def _publish_after_commit(self, event_type: str, booking: Booking, **data):
        payload = booking_payload(booking)
        payload.update(data)
        request_id = get_request_id()
        transaction.on_commit(
            lambda: self.event_publisher.publish(event_type, payload, correlation_id=request_id)
        )

    def _dispatch_notifications(self, intents: List[NotificationIntent]):
        for intent in intents:
            try:
                self.notification_sink.enqueue(
                    intent.recipient_id, intent.template_key, dict(intent.fields), intent.booking_id
                )
            except Exception:
                # Delivery problems never undo a committed transition.
                logger.exception(
                    f"Failed to enqueue {intent.template_key} for {intent.recipient_id}",
                    extra={'booking_id': intent.booking_id, 'template_key': intent.template_key}
                )
