# services/booking-service/src/tests/unit/test_booking_service.py
"""
Unit Tests for BookingService

Exercise the facade against the test database with an in-memory payment
gateway and a recording notification sink.
"""

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, time
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db import connection, connections

from apps.core.commands import BookingDetailsUpdate
from apps.core.constants import BookingStatus, PaymentStatus
from apps.core.models import Booking, ReassignmentRecord, Service, Shop, SlotClaim
from apps.core.services import (
    AlreadyProcessed,
    AlreadyRated,
    AuthorizationError,
    AvailabilityService,
    ExternalDependencyError,
    InvalidStateTransition,
    NotFoundError,
    SlotUnavailable,
    ValidationError,
)
from apps.core.services.notification_policy import TemplateKey

# 10:00-10:30 in five-minute claim buckets.
TEN_O_CLOCK_BUCKETS = list(range(120, 126))


def claimed_buckets(booking):
    return sorted(SlotClaim.objects.filter(booking=booking).values_list('bucket', flat=True))


@pytest.mark.django_db
class TestCreateBooking:

    def test_creates_pending_booking_and_claims_slot(self, booking_service, booking_command, customer,
                                                     shop_provider, service):
        booking = booking_service.create_booking(customer, booking_command(shop_provider, notes=' Short '))

        assert booking.status == BookingStatus.PENDING
        assert booking.provider == shop_provider
        assert booking.notes == 'Short'
        assert booking.customer_name == customer.name
        assert claimed_buckets(booking) == TEN_O_CLOCK_BUCKETS

    def test_notifies_after_commit(self, booking_service, booking_command, customer, shop_provider,
                                   shop_owner, notification_sink, event_publisher,
                                   django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            booking = booking_service.create_booking(customer, booking_command(shop_provider))

        assert notification_sink.pairs() == [
            (shop_owner.id, TemplateKey.NEW_BOOKING_REQUEST),
            (customer.id, TemplateKey.BOOKING_REQUESTED),
        ]
        assert notification_sink.sent[0]['booking_id'] == str(booking.id)
        assert [event['event_type'] for event in event_publisher.published] == ['booking.requested']

    def test_nothing_dispatched_before_commit(self, booking_service, booking_command, customer,
                                              shop_provider, notification_sink):
        booking_service.create_booking(customer, booking_command(shop_provider))
        assert notification_sink.sent == []

    def test_overlapping_time_is_unavailable(self, booking_service, booking_command, make_booking,
                                             shop_provider, other_customer):
        make_booking(shop_provider, at=time(10, 0))
        with pytest.raises(SlotUnavailable):
            booking_service.create_booking(other_customer, booking_command(shop_provider, at=time(10, 15)))

    def test_adjacent_time_is_free(self, booking_service, booking_command, make_booking,
                                   shop_provider, other_customer):
        make_booking(shop_provider, at=time(10, 0))
        booking = booking_service.create_booking(other_customer, booking_command(shop_provider, at=time(10, 30)))
        assert booking.status == BookingStatus.PENDING

    def test_opening_off_quarter_hour(self, booking_service, booking_command, make_provider,
                                      customer, other_customer):
        provider = make_provider(hours=(time(9, 10), time(10, 10)))

        first = booking_service.create_booking(customer, booking_command(provider, at=time(9, 10)))
        second = booking_service.create_booking(other_customer, booking_command(provider, at=time(9, 40)))

        assert claimed_buckets(first) == list(range(110, 116))
        assert claimed_buckets(second) == list(range(116, 122))

    @pytest.mark.parametrize('at, on', [
        (time(8, 30), date(2030, 1, 14)),   # before opening
        (time(16, 45), date(2030, 1, 14)),  # runs past closing
        (time(10, 5), date(2030, 1, 14)),   # off the slot grid
        (time(10, 0), date(2030, 1, 19)),   # Saturday, closed
    ])
    def test_time_outside_free_slots(self, booking_service, booking_command, customer, shop_provider, at, on):
        with pytest.raises(SlotUnavailable):
            booking_service.create_booking(customer, booking_command(shop_provider, at=at, on=on))

    def test_past_time_rejected(self, booking_service, booking_command, customer, shop_provider):
        with pytest.raises(ValidationError):
            booking_service.create_booking(customer, booking_command(shop_provider, on=date(2030, 1, 1)))

    def test_unknown_provider(self, booking_service, booking_command, customer, shop_provider):
        command = replace(booking_command(shop_provider), provider_id=uuid.uuid4())
        with pytest.raises(NotFoundError):
            booking_service.create_booking(customer, command)

    def test_inactive_service(self, booking_service, booking_command, customer, shop_provider, service):
        Service.objects.filter(pk=service.pk).update(is_active=False)
        with pytest.raises(NotFoundError):
            booking_service.create_booking(customer, booking_command(shop_provider))

    def test_service_not_offered(self, booking_service, booking_command, customer, make_provider, long_service):
        provider = make_provider(services=[long_service])
        with pytest.raises(ValidationError):
            booking_service.create_booking(customer, booking_command(provider))

    def test_blocked_provider(self, booking_service, booking_command, customer, make_provider):
        provider = make_provider(status='blocked')
        with pytest.raises(ValidationError):
            booking_service.create_booking(customer, booking_command(provider))

    def test_home_booking_needs_address(self, booking_service, booking_command, customer, make_provider,
                                        home_service):
        provider = make_provider(service_capability='homeBased', services=[home_service])
        with pytest.raises(ValidationError):
            booking_service.create_booking(
                customer, booking_command(provider, service_obj=home_service, service_type='homeBased')
            )

    def test_home_booking(self, booking_service, booking_command, customer, make_provider, home_service):
        provider = make_provider(service_capability='homeBased', services=[home_service])
        address = {'street': 'Storgata 1', 'city': 'Oslo'}

        booking = booking_service.create_booking(customer, booking_command(
            provider, service_obj=home_service, service_type='homeBased', address=address
        ))

        assert booking.address == address
        assert booking.duration_minutes == 45

    def test_shop_provider_cannot_do_home_visits(self, booking_service, booking_command, customer,
                                                 shop_provider):
        with pytest.raises(ValidationError):
            booking_service.create_booking(customer, booking_command(
                shop_provider, service_type='homeBased', address={'city': 'Oslo'}
            ))

    def test_provider_cannot_book_themselves(self, booking_service, booking_command, actor_for, shop_provider):
        with pytest.raises(ValidationError):
            booking_service.create_booking(actor_for(shop_provider), booking_command(shop_provider))

    def test_racing_requests_only_one_wins(self, booking_service, booking_command, make_actor, shop_provider):
        """
        Every request passes the free-slot read; the slot claim decides.
        Runs the requests one after another against a stale read, see
        TestConcurrentCreate for the threaded version.
        """
        results = []
        with patch.object(AvailabilityService, 'occupying_bookings', return_value=[]):
            for _ in range(5):
                try:
                    results.append(booking_service.create_booking(make_actor(), booking_command(shop_provider)))
                except SlotUnavailable as e:
                    results.append(e)

        winners = [result for result in results if isinstance(result, Booking)]
        assert len(winners) == 1
        assert sum(isinstance(result, SlotUnavailable) for result in results) == 4
        assert Booking.objects.filter(provider=shop_provider).count() == 1

    def test_racing_overlapping_request_loses(self, booking_service, booking_command, make_booking,
                                              other_customer, shop_provider):
        make_booking(shop_provider, at=time(10, 0))
        with patch.object(AvailabilityService, 'occupying_bookings', return_value=[]):
            with pytest.raises(SlotUnavailable):
                booking_service.create_booking(other_customer, booking_command(
                    shop_provider, at=time(9, 45)
                ))
        assert Booking.objects.count() == 1


@pytest.mark.django_db
class TestAcceptReject:

    def test_accept(self, booking_service, make_booking, actor_for, shop_provider, customer,
                    notification_sink, django_capture_on_commit_callbacks):
        booking = make_booking(shop_provider)

        with django_capture_on_commit_callbacks(execute=True):
            booking = booking_service.accept(booking.id, actor_for(shop_provider))

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.reviewed_at is not None
        assert (customer.id, TemplateKey.BOOKING_CONFIRMED) in notification_sink.pairs()

    def test_double_accept(self, booking_service, make_booking, actor_for, shop_provider, shop_owner, customer,
                           notification_sink, django_capture_on_commit_callbacks):
        booking = make_booking(shop_provider)

        with django_capture_on_commit_callbacks(execute=True):
            booking_service.accept(booking.id, actor_for(shop_provider))
            with pytest.raises(AlreadyProcessed):
                booking_service.accept(booking.id, shop_owner)

        confirmations = [pair for pair in notification_sink.pairs() if pair[1] == TemplateKey.BOOKING_CONFIRMED]
        assert confirmations == [(customer.id, TemplateKey.BOOKING_CONFIRMED)]
        assert Booking.objects.get(pk=booking.id).status == BookingStatus.CONFIRMED

    def test_stale_read_loses_compare_and_set(self, booking_service, make_booking, actor_for, shop_provider,
                                              shop_owner):
        booking = make_booking(shop_provider)
        stale = Booking.objects.get(pk=booking.pk)
        booking_service.reject(booking.id, actor_for(shop_provider), 'Ill')

        with patch.object(booking_service, '_get_booking', return_value=stale):
            with pytest.raises(AlreadyProcessed):
                booking_service.accept(booking.id, shop_owner)

        assert Booking.objects.get(pk=booking.pk).status == BookingStatus.REJECTED_BY_PROVIDER

    def test_customer_cannot_accept(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)
        with pytest.raises(AuthorizationError):
            booking_service.accept(booking.id, customer)

    def test_unknown_booking(self, booking_service, customer):
        with pytest.raises(NotFoundError):
            booking_service.accept(uuid.uuid4(), customer)

    def test_malformed_booking_id(self, booking_service, customer):
        with pytest.raises(NotFoundError):
            booking_service.accept('not-a-uuid', customer)

    def test_shop_reject_is_hidden_from_customer(self, booking_service, make_booking, actor_for, shop_provider,
                                                 shop_owner, customer, notification_sink,
                                                 django_capture_on_commit_callbacks):
        booking = make_booking(shop_provider)

        with django_capture_on_commit_callbacks(execute=True):
            booking = booking_service.reject(booking.id, actor_for(shop_provider), 'Fully booked')

        assert booking.status == BookingStatus.REJECTED_BY_PROVIDER
        assert booking.rejection_reason == 'Fully booked'
        assert booking_service.visible_status(booking, customer) == BookingStatus.PENDING
        assert booking_service.visible_status(booking, shop_owner) == BookingStatus.REJECTED_BY_PROVIDER
        assert notification_sink.pairs() == [(shop_owner.id, TemplateKey.BOOKING_REJECTED_BY_PROVIDER)]

    def test_reject_releases_slot(self, booking_service, make_booking, actor_for, independent_provider,
                                  booking_command, other_customer):
        booking = make_booking(independent_provider)
        booking_service.reject(booking.id, actor_for(independent_provider), 'Busy')

        assert claimed_buckets(booking) == []
        again = booking_service.create_booking(other_customer, booking_command(independent_provider))
        assert again.status == BookingStatus.PENDING

    def test_reject_needs_reason(self, booking_service, make_booking, actor_for, shop_provider):
        booking = make_booking(shop_provider)
        with pytest.raises(ValidationError):
            booking_service.reject(booking.id, actor_for(shop_provider), '')


@pytest.mark.django_db
class TestReassign:

    def test_reassign_rejected_booking_to_colleague(self, booking_service, make_booking, actor_for, shop_provider,
                                                    second_shop_provider, shop_owner, customer,
                                                    notification_sink, django_capture_on_commit_callbacks):
        booking = make_booking(shop_provider)
        booking_service.reject(booking.id, actor_for(shop_provider), 'Ill')

        with django_capture_on_commit_callbacks(execute=True):
            booking = booking_service.reassign(booking.id, shop_owner, new_provider_id=second_shop_provider.id)

        assert booking.status == BookingStatus.PENDING
        assert booking.provider_id == second_shop_provider.id
        assert booking.rejection_reason == ''
        assert SlotClaim.objects.filter(booking=booking, provider=second_shop_provider).count() == 2
        assert notification_sink.pairs() == [
            (str(second_shop_provider.user_id), TemplateKey.BOOKING_ASSIGNED),
            (customer.id, TemplateKey.BOOKING_REASSIGNED),
        ]

        history = booking_service.get_reassignment_history(booking.id, shop_owner)
        assert [(r.from_provider, r.to_provider) for r in history] == [(shop_provider, second_shop_provider)]
        assert history[0].previous_status == BookingStatus.REJECTED_BY_PROVIDER

    def test_reassign_to_self_confirms(self, booking_service, make_booking, shop_provider, owner_provider,
                                       shop_owner, customer, notification_sink,
                                       django_capture_on_commit_callbacks):
        booking = make_booking(shop_provider)

        with django_capture_on_commit_callbacks(execute=True):
            booking = booking_service.reassign(booking.id, shop_owner, to_self=True)

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.provider_id == owner_provider.id
        assert notification_sink.pairs() == [(customer.id, TemplateKey.BOOKING_CONFIRMED)]

    def test_new_provider_must_be_free(self, booking_service, make_booking, make_actor, shop_provider,
                                       second_shop_provider, shop_owner):
        make_booking(second_shop_provider, actor=make_actor())
        booking = make_booking(shop_provider)

        with pytest.raises(SlotUnavailable):
            booking_service.reassign(booking.id, shop_owner, new_provider_id=second_shop_provider.id)

        booking.refresh_from_db()
        assert booking.provider_id == shop_provider.id
        assert claimed_buckets(booking) == TEN_O_CLOCK_BUCKETS
        assert not ReassignmentRecord.objects.exists()

    def test_only_shop_owner(self, booking_service, make_booking, actor_for, shop_provider, second_shop_provider):
        booking = make_booking(shop_provider)
        with pytest.raises(AuthorizationError):
            booking_service.reassign(booking.id, actor_for(shop_provider), new_provider_id=second_shop_provider.id)

    def test_independent_booking(self, booking_service, make_booking, actor_for, independent_provider):
        booking = make_booking(independent_provider)
        with pytest.raises(AuthorizationError):
            booking_service.reassign(booking.id, actor_for(independent_provider), to_self=True)

    def test_to_self_needs_provider_profile(self, booking_service, make_booking, shop_provider, shop_owner):
        booking = make_booking(shop_provider)
        with pytest.raises(NotFoundError):
            booking_service.reassign(booking.id, shop_owner, to_self=True)

    def test_other_shop(self, booking_service, make_booking, make_provider, shop_provider, shop_owner):
        other_shop = Shop.objects.create(name='Elsewhere', owner_id=uuid.uuid4())
        stranger = make_provider('Far Away', shop=other_shop)
        booking = make_booking(shop_provider)

        with pytest.raises(ValidationError):
            booking_service.reassign(booking.id, shop_owner, new_provider_id=stranger.id)

    def test_customer_cannot_read_history(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)
        with pytest.raises(AuthorizationError):
            booking_service.get_reassignment_history(booking.id, customer)


@pytest.mark.django_db
class TestCancel:

    def test_customer_cancels_request_rejected_by_shop_barber(self, booking_service, make_booking, actor_for,
                                                              shop_provider, customer, shop_owner,
                                                              notification_sink,
                                                              django_capture_on_commit_callbacks):
        booking = make_booking(shop_provider)
        booking_service.reject(booking.id, actor_for(shop_provider), 'Busy')

        with django_capture_on_commit_callbacks(execute=True):
            booking = booking_service.cancel(booking.id, customer, 'Found another shop')

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancelled_by == 'customer'
        assert shop_owner.id in [recipient for recipient, _ in notification_sink.pairs()]

    def test_final_rejection_cannot_be_cancelled(self, booking_service, make_booking, actor_for,
                                                 independent_provider, customer):
        booking = make_booking(independent_provider)
        booking_service.reject(booking.id, actor_for(independent_provider), 'Busy')

        with pytest.raises(InvalidStateTransition):
            booking_service.cancel(booking.id, customer)

    def test_customer_cancels(self, booking_service, make_booking, independent_provider, customer,
                              notification_sink, django_capture_on_commit_callbacks):
        booking = make_booking(independent_provider, status='confirmed')

        with django_capture_on_commit_callbacks(execute=True):
            booking = booking_service.cancel(booking.id, customer, 'Changed plans')

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancelled_by == 'customer'
        assert booking.cancellation_reason == 'Changed plans'
        assert claimed_buckets(booking) == []
        assert notification_sink.pairs() == [
            (str(independent_provider.user_id), TemplateKey.BOOKING_CANCELLED),
        ]

    def test_paid_booking_refunded_in_full_when_early(self, booking_service, make_booking, independent_provider,
                                                      customer, payment_gateway):
        booking = make_booking(independent_provider)
        booking_service.pay(booking.id, customer, 'card')

        booking = booking_service.cancel(booking.id, customer)

        assert booking.payment_status == PaymentStatus.REFUNDED
        assert payment_gateway.refunds == [(str(booking.id), Decimal('300.00'))]

    def test_refund_is_published(self, booking_service, make_booking, independent_provider, customer,
                                 event_publisher, django_capture_on_commit_callbacks):
        booking = make_booking(independent_provider)
        booking_service.pay(booking.id, customer, 'card')

        with django_capture_on_commit_callbacks(execute=True):
            booking_service.cancel(booking.id, customer)

        event_types = [event['event_type'] for event in event_publisher.published]
        assert event_types == ['booking.cancelled', 'booking.refunded']
        assert event_publisher.published[-1]['payload']['amount'] == Decimal('300.00')

    def test_late_cancellation_refunds_half(self, booking_service, make_booking, independent_provider,
                                            customer, payment_gateway):
        booking = make_booking(independent_provider, at=time(16, 0), on=date(2030, 1, 7))
        booking_service.pay(booking.id, customer, 'card')

        booking_service.cancel(booking.id, customer)

        assert payment_gateway.refunds == [(str(booking.id), Decimal('150.00'))]

    def test_provider_cancellation_refunds_in_full(self, booking_service, make_booking, actor_for,
                                                   independent_provider, customer, payment_gateway):
        booking = make_booking(independent_provider, at=time(16, 0), on=date(2030, 1, 7))
        booking_service.pay(booking.id, customer, 'card')

        booking_service.cancel(booking.id, actor_for(independent_provider))

        assert payment_gateway.refunds == [(str(booking.id), Decimal('300.00'))]

    def test_refund_failure_keeps_booking(self, booking_service, make_booking, independent_provider, customer,
                                          payment_gateway, notification_sink,
                                          django_capture_on_commit_callbacks):
        booking = make_booking(independent_provider, status='confirmed')
        booking_service.pay(booking.id, customer, 'card')
        payment_gateway.refund_error = ExternalDependencyError('payment-service unavailable')

        with django_capture_on_commit_callbacks(execute=True):
            with pytest.raises(ExternalDependencyError):
                booking_service.cancel(booking.id, customer)

        booking.refresh_from_db()
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.payment_status == PaymentStatus.PAID
        assert claimed_buckets(booking) == TEN_O_CLOCK_BUCKETS
        assert notification_sink.sent == []

    def test_unpaid_booking_no_refund(self, booking_service, make_booking, shop_provider, customer,
                                      payment_gateway):
        booking = make_booking(shop_provider)
        booking_service.cancel(booking.id, customer)
        assert payment_gateway.refunds == []

    def test_stranger_cannot_cancel(self, booking_service, make_booking, shop_provider, other_customer):
        booking = make_booking(shop_provider)
        with pytest.raises(AuthorizationError):
            booking_service.cancel(booking.id, other_customer)

    def test_cannot_cancel_twice(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)
        booking_service.cancel(booking.id, customer)
        with pytest.raises(InvalidStateTransition):
            booking_service.cancel(booking.id, customer)


@pytest.mark.django_db
class TestServiceLifecycle:

    def test_start_and_complete(self, booking_service, make_booking, actor_for, shop_provider):
        booking = make_booking(shop_provider, status='confirmed')
        provider = actor_for(shop_provider)

        booking = booking_service.start(booking.id, provider)
        assert booking.status == BookingStatus.IN_PROGRESS
        assert booking.started_at is not None

        booking = booking_service.complete(booking.id, provider)
        assert booking.status == BookingStatus.COMPLETED
        assert claimed_buckets(booking) == []

    def test_no_show_by_system(self, booking_service, make_booking, shop_provider):
        from apps.core.state_machine import Actor

        booking = make_booking(shop_provider, status='confirmed')
        booking = booking_service.mark_no_show(booking.id, Actor.system())

        assert booking.status == BookingStatus.NO_SHOW
        assert claimed_buckets(booking) == []

    def test_complete_pending_booking_fails(self, booking_service, make_booking, actor_for, shop_provider):
        booking = make_booking(shop_provider)
        with pytest.raises(InvalidStateTransition):
            booking_service.complete(booking.id, actor_for(shop_provider))


@pytest.mark.django_db
class TestRate:

    def test_rating_updates_provider_and_shop(self, booking_service, make_booking, shop_provider, shop, customer):
        booking = make_booking(shop_provider, status='completed')

        booking = booking_service.rate(booking.id, customer, 4, 'Good cut')

        assert booking.rating == 4
        assert booking.review == 'Good cut'
        shop_provider.refresh_from_db()
        shop.refresh_from_db()
        assert shop_provider.rating_count == 1
        assert shop_provider.rating_average == Decimal('4.00')
        assert shop.rating_count == 1

    def test_rates_once(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider, status='completed')
        booking_service.rate(booking.id, customer, 5)

        with pytest.raises(AlreadyRated):
            booking_service.rate(booking.id, customer, 3)

        shop_provider.refresh_from_db()
        assert shop_provider.rating_count == 1

    def test_concurrent_rating_loses(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider, status='completed')
        stale = Booking.objects.get(pk=booking.pk)
        booking_service.rate(booking.id, customer, 5)

        with patch.object(booking_service, '_get_booking', return_value=stale):
            with pytest.raises(AlreadyRated):
                booking_service.rate(booking.id, customer, 1)

        assert Booking.objects.get(pk=booking.pk).rating == 5

    def test_independent_provider_rating(self, booking_service, make_booking, independent_provider, customer):
        booking = make_booking(independent_provider, status='completed')
        booking_service.rate(booking.id, customer, 3)

        independent_provider.refresh_from_db()
        assert independent_provider.rating_average == Decimal('3.00')


@pytest.mark.django_db
class TestPay:

    def test_pay(self, booking_service, make_booking, shop_provider, customer, payment_gateway):
        booking = make_booking(shop_provider)

        booking = booking_service.pay(booking.id, customer, 'card')

        assert booking.payment_status == PaymentStatus.PAID
        assert booking.payment_method == 'card'
        assert booking.payment_reference == 'ch_1'
        assert payment_gateway.charges == [(str(booking.id), Decimal('300.00'), 'card')]

    def test_uses_booking_payment_method(self, booking_service, make_booking, shop_provider, customer,
                                         payment_gateway):
        booking = make_booking(shop_provider, payment_method='wallet')
        booking_service.pay(booking.id, customer)
        assert payment_gateway.charges[0][2] == 'wallet'

    def test_method_required(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)
        with pytest.raises(ValidationError):
            booking_service.pay(booking.id, customer)

    def test_declined(self, booking_service, make_booking, shop_provider, customer, payment_gateway):
        payment_gateway.decline = True
        booking = make_booking(shop_provider)

        booking = booking_service.pay(booking.id, customer, 'card')

        assert booking.payment_status == PaymentStatus.FAILED
        assert booking.status == BookingStatus.PENDING

    def test_retry_after_decline(self, booking_service, make_booking, shop_provider, customer, payment_gateway):
        payment_gateway.decline = True
        booking = make_booking(shop_provider)
        booking_service.pay(booking.id, customer, 'card')

        payment_gateway.decline = False
        assert booking_service.pay(booking.id, customer, 'card').payment_status == PaymentStatus.PAID

    def test_pay_twice(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)
        booking_service.pay(booking.id, customer, 'card')
        with pytest.raises(InvalidStateTransition):
            booking_service.pay(booking.id, customer, 'card')

    def test_gateway_down(self, booking_service, make_booking, shop_provider, customer, payment_gateway):
        booking = make_booking(shop_provider)
        with patch.object(payment_gateway, 'charge', side_effect=ExternalDependencyError('down')):
            with pytest.raises(ExternalDependencyError):
                booking_service.pay(booking.id, customer, 'card')

        booking.refresh_from_db()
        assert booking.payment_status == PaymentStatus.PENDING

    def test_only_customer_pays(self, booking_service, make_booking, shop_provider, other_customer):
        booking = make_booking(shop_provider)
        with pytest.raises(AuthorizationError):
            booking_service.pay(booking.id, other_customer, 'card')

    def test_cancelled_booking_cannot_be_paid(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)
        booking_service.cancel(booking.id, customer)
        with pytest.raises(InvalidStateTransition):
            booking_service.pay(booking.id, customer, 'card')


@pytest.mark.django_db
class TestUpdateDetails:

    def test_update_notes_and_method(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)

        booking = booking_service.update_booking_details(
            booking.id, customer, BookingDetailsUpdate(notes=' Fade ', payment_method='cash')
        )

        assert booking.notes == 'Fade'
        assert booking.payment_method == 'cash'

    def test_empty_update(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)
        with pytest.raises(ValidationError):
            booking_service.update_booking_details(booking.id, customer, BookingDetailsUpdate())

    def test_shop_booking_takes_no_address(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)
        with pytest.raises(ValidationError):
            booking_service.update_booking_details(
                booking.id, customer, BookingDetailsUpdate(address={'city': 'Oslo'})
            )

    def test_closed_booking(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider, status='completed')
        with pytest.raises(InvalidStateTransition):
            booking_service.update_booking_details(booking.id, customer, BookingDetailsUpdate(notes='x'))

    def test_only_customer(self, booking_service, make_booking, actor_for, shop_provider):
        booking = make_booking(shop_provider)
        with pytest.raises(AuthorizationError):
            booking_service.update_booking_details(
                booking.id, actor_for(shop_provider), BookingDetailsUpdate(notes='x')
            )


@pytest.mark.django_db
class TestQueries:

    def test_get_booking_visibility(self, booking_service, make_booking, shop_provider, shop_owner, customer,
                                    other_customer, admin, actor_for):
        booking = make_booking(shop_provider)

        for actor in (customer, shop_owner, admin, actor_for(shop_provider)):
            assert booking_service.get_booking(booking.id, actor) == booking
        with pytest.raises(AuthorizationError):
            booking_service.get_booking(booking.id, other_customer)

    def test_list_bookings_by_role(self, booking_service, make_booking, make_actor, shop_provider,
                                   independent_provider, customer, admin, actor_for):
        mine = make_booking(shop_provider)
        theirs = make_booking(independent_provider, actor=make_actor())

        assert list(booking_service.list_bookings(customer)) == [mine]
        assert list(booking_service.list_bookings(customer, role='provider')) == []
        assert list(booking_service.list_bookings(actor_for(independent_provider), role='provider')) == [theirs]
        assert set(booking_service.list_bookings(admin)) == {mine, theirs}

    def test_list_bookings_filters(self, booking_service, make_booking, shop_provider, customer):
        booking = make_booking(shop_provider)

        assert list(booking_service.list_bookings(customer, status='pending')) == [booking]
        assert list(booking_service.list_bookings(customer, date_from=date(2030, 1, 15))) == []
        with pytest.raises(ValidationError):
            booking_service.list_bookings(customer, status='lost')
        with pytest.raises(ValidationError):
            booking_service.list_bookings(customer, role='landlord')

    def test_status_filter_follows_customer_view(self, booking_service, make_booking, actor_for, shop_provider,
                                                 customer, shop_owner):
        booking = make_booking(shop_provider)
        booking_service.reject(booking.id, actor_for(shop_provider), 'Busy')

        assert list(booking_service.list_bookings(customer, status='pending')) == [booking]
        assert list(booking_service.list_bookings(customer, status='rejected_by_provider')) == []
        assert list(booking_service.list_bookings(shop_owner, status='rejected_by_provider')) == [booking]
        assert list(booking_service.list_bookings(shop_owner, status='pending')) == []

    def test_final_rejection_listed_as_rejected(self, booking_service, make_booking, actor_for,
                                                independent_provider, customer):
        booking = make_booking(independent_provider)
        booking_service.reject(booking.id, actor_for(independent_provider), 'Busy')

        assert list(booking_service.list_bookings(customer, status='rejected_by_provider')) == [booking]
        assert list(booking_service.list_bookings(customer, status='pending')) == []

    def test_pending_requests(self, booking_service, make_booking, actor_for, shop_provider, shop_owner):
        first = make_booking(shop_provider, at=time(11, 0))
        second = make_booking(shop_provider, at=time(9, 0))
        booking_service.reject(first.id, actor_for(shop_provider), 'Busy')

        assert list(booking_service.list_pending_requests(actor_for(shop_provider))) == [second]
        assert list(booking_service.list_pending_requests(shop_owner)) == [second, first]

    def test_available_slots_exclude_bookings(self, booking_service, make_booking, shop_provider, service):
        make_booking(shop_provider, at=time(10, 0))

        day = booking_service.get_available_slots(shop_provider.id, service.id, date(2030, 1, 14))
        starts = [slot.start for slot in day.slots]

        assert time(9, 45) not in starts
        assert time(10, 0) not in starts
        assert time(10, 30) in starts


@pytest.mark.django_db
class TestNotificationFailures:

    def test_sink_failure_does_not_undo_transition(self, booking_service, make_booking, actor_for, shop_provider,
                                                   notification_sink, django_capture_on_commit_callbacks):
        booking = make_booking(shop_provider)

        with patch.object(notification_sink, 'enqueue', side_effect=ExternalDependencyError('down')):
            with django_capture_on_commit_callbacks(execute=True):
                booking_service.accept(booking.id, actor_for(shop_provider))

        assert Booking.objects.get(pk=booking.pk).status == BookingStatus.CONFIRMED


@pytest.mark.skipif(connection.vendor == 'sqlite', reason='SQLite serialises writers with table locks')
@pytest.mark.django_db(transaction=True)
class TestConcurrentCreate:

    def test_concurrent_requests_only_one_wins(self, booking_service, booking_command, make_actor,
                                               shop_provider):
        requests = 5
        barrier = threading.Barrier(requests)
        command = booking_command(shop_provider)

        def request(actor):
            barrier.wait()
            try:
                return booking_service.create_booking(actor, command)
            except SlotUnavailable as e:
                return e
            finally:
                connections.close_all()

        with ThreadPoolExecutor(max_workers=requests) as pool:
            results = list(pool.map(request, [make_actor() for _ in range(requests)]))

        assert sum(isinstance(result, Booking) for result in results) == 1
        assert sum(isinstance(result, SlotUnavailable) for result in results) == requests - 1
        assert Booking.objects.filter(provider=shop_provider).count() == 1
