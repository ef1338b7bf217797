# services/booking-service/src/tests/conftest.py
"""
Pytest Configuration and Fixtures

Provides common fixtures for booking service tests.
"""

import uuid
from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from decimal import Decimal

import jwt
import pytest
from django.conf import settings
from rest_framework.test import APIClient

# Monday 2030-01-07 08:00 UTC. Bookings default to the following Monday.
FIXED_NOW = datetime(2030, 1, 7, 8, 0, tzinfo=dt_timezone.utc)
NEXT_MONDAY = date(2030, 1, 14)


# =============================================================================
# Collaborators
# =============================================================================

class FakePaymentGateway:
    """In-memory payment gateway; set ``decline`` or ``refund_error`` to simulate failures."""

    def __init__(self):
        self.charges = []
        self.refunds = []
        self.decline = False
        self.refund_error = None

    def charge(self, booking_id, amount, method):
        from apps.core.gateways import PaymentResult

        self.charges.append((booking_id, amount, method))
        if self.decline:
            return PaymentResult(success=False, message='Card declined')
        return PaymentResult(success=True, reference=f"ch_{len(self.charges)}")

    def refund(self, booking_id, amount):
        from apps.core.gateways import RefundResult

        if self.refund_error is not None:
            raise self.refund_error
        self.refunds.append((booking_id, amount))
        return RefundResult(success=True, amount=amount, reference=f"re_{len(self.refunds)}")


class RecordingNotificationSink:
    """Keeps every enqueued notification."""

    def __init__(self):
        self.sent = []

    def enqueue(self, recipient_id, template_key, fields, related_booking_id):
        self.sent.append({
            'recipient_id': str(recipient_id),
            'template_key': template_key,
            'fields': dict(fields),
            'booking_id': str(related_booking_id),
        })

    def pairs(self):
        return [(item['recipient_id'], item['template_key']) for item in self.sent]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def payment_gateway():
    return FakePaymentGateway()


@pytest.fixture
def notification_sink():
    return RecordingNotificationSink()


@pytest.fixture
def event_publisher():
    from apps.core.events import EventPublisher

    return EventPublisher(backend='memory')


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def next_monday():
    return NEXT_MONDAY


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def availability_service(clock):
    from apps.core.services import AvailabilityService

    return AvailabilityService(clock=clock)


@pytest.fixture
def booking_service(payment_gateway, notification_sink, event_publisher, availability_service, clock):
    from apps.core.services import BookingService

    return BookingService(
        payment_gateway=payment_gateway,
        notification_sink=notification_sink,
        availability_service=availability_service,
        event_publisher=event_publisher,
        clock=clock,
    )


# =============================================================================
# Actors
# =============================================================================

@pytest.fixture
def make_actor():
    from apps.core.state_machine import Actor

    def _make_actor(user_id=None, *roles, name=''):
        return Actor(id=str(user_id or uuid.uuid4()), roles=frozenset(roles or ('customer',)), name=name)

    return _make_actor


@pytest.fixture
def customer(make_actor):
    return make_actor(None, 'customer', name='Kari Nordmann')


@pytest.fixture
def other_customer(make_actor):
    return make_actor(None, 'customer', name='Per Hansen')


@pytest.fixture
def admin(make_actor):
    return make_actor(None, 'admin', name='Support')


@pytest.fixture
def shop_owner(make_actor):
    return make_actor(None, 'shop_owner', name='Ali Owner')


@pytest.fixture
def actor_for(make_actor):
    """The account behind a provider profile."""
    def _actor_for(provider):
        return make_actor(provider.user_id, provider.provider_type, name=provider.display_name)

    return _actor_for


# =============================================================================
# Providers, Shops and Services
# =============================================================================

@pytest.fixture
def shop(db, shop_owner):
    from apps.core.models import Shop

    return Shop.objects.create(name='Sharp Cuts', owner_id=shop_owner.id, owner_name=shop_owner.name)


@pytest.fixture
def service(db):
    from apps.core.models import Service

    return Service.objects.create(name='Haircut', duration_minutes=30, price=Decimal('300.00'))


@pytest.fixture
def long_service(db):
    from apps.core.models import Service

    return Service.objects.create(name='Cut and Beard', duration_minutes=60, price=Decimal('450.00'))


@pytest.fixture
def home_service(db):
    from apps.core.models import Service

    return Service.objects.create(
        name='Home Haircut', duration_minutes=45, price=Decimal('500.00'), service_type='homeBased'
    )


@pytest.fixture
def set_hours():
    """Open ``weekdays`` (indexes, Monday = 0) from ``start`` to ``end``; close the rest."""
    def _set_hours(provider, start=time(9, 0), end=time(17, 0), weekdays=range(5)):
        from apps.core.models import ScheduleDay
        from apps.core.schedule import DayEntry

        for row in ScheduleDay.objects.filter(provider=provider):
            entry = DayEntry.available(start, end) if row.weekday in weekdays else DayEntry.unavailable()
            row.apply_entry(entry)
            row.save()

    return _set_hours


@pytest.fixture
def make_provider(db, service, long_service, set_hours):
    from apps.core.models import Provider

    def _make_provider(display_name='Jonas Barber', shop=None, user_id=None, services=None,
                       provider_type='barber', hours=(time(9, 0), time(17, 0)), **kwargs):
        provider = Provider.objects.create(
            user_id=user_id or uuid.uuid4(),
            display_name=display_name,
            shop=shop,
            provider_type=provider_type,
            **kwargs
        )
        provider.services.add(*(services if services is not None else (service, long_service)))
        if hours:
            set_hours(provider, *hours)
        return provider

    return _make_provider


@pytest.fixture
def independent_provider(make_provider):
    return make_provider('Freddy Freelance', provider_type='freelancer')


@pytest.fixture
def shop_provider(make_provider, shop):
    return make_provider('Sami Shopbarber', shop=shop)


@pytest.fixture
def second_shop_provider(make_provider, shop):
    return make_provider('Lina Shopbarber', shop=shop)


@pytest.fixture
def owner_provider(make_provider, shop, shop_owner):
    return make_provider(shop_owner.name, shop=shop, user_id=shop_owner.id, provider_type='shop_owner')


# =============================================================================
# Bookings
# =============================================================================

@pytest.fixture
def booking_command(service):
    from apps.core.commands import CreateBookingCommand

    def _booking_command(provider, at=time(10, 0), on=NEXT_MONDAY, service_obj=None, **kwargs):
        kwargs.setdefault('service_type', 'shopBased')
        return CreateBookingCommand(
            provider_id=provider.id,
            service_id=(service_obj or service).id,
            booking_date=on,
            booking_time=at,
            **kwargs
        )

    return _booking_command


@pytest.fixture
def make_booking(booking_service, booking_command, customer):
    """Create a booking through the service; ``status`` moves it along the happy path."""
    def _make_booking(provider, actor=None, status='pending', approver=None, **kwargs):
        booking = booking_service.create_booking(actor or customer, booking_command(provider, **kwargs))
        if status == 'pending':
            return booking
        from apps.core.state_machine import Actor

        approver = approver or Actor(id=str(provider.user_id), roles=frozenset({'barber'}))
        booking = booking_service.accept(booking.id, approver)
        if status in ('in_progress', 'completed'):
            booking = booking_service.start(booking.id, approver)
        if status == 'completed':
            booking = booking_service.complete(booking.id, approver)
        return booking

    return _make_booking


# =============================================================================
# API
# =============================================================================

def make_token(user_id, roles=('customer',), name='', lifetime=timedelta(hours=1)):
    now = datetime.now(tz=dt_timezone.utc)
    payload = {
        'sub': str(user_id),
        'name': name,
        'roles': list(roles),
        'iss': settings.JWT_SETTINGS['ISSUER'],
        'iat': now,
        'exp': now + lifetime,
    }
    return jwt.encode(payload, settings.JWT_SETTINGS['VERIFYING_KEY'], algorithm=settings.JWT_SETTINGS['ALGORITHM'])


@pytest.fixture
def api_client():
    """Provide API client for testing."""
    return APIClient()


@pytest.fixture
def client_for():
    """API client authenticated as the given actor."""
    def _client_for(actor):
        client = APIClient()
        token = make_token(actor.id, sorted(actor.roles), actor.name)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
        return client

    return _client_for
