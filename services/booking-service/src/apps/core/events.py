# services/booking-service/src/apps/core/events.py
"""
Booking Service Events

Domain events published for other services (reporting, payouts,
analytics) after a booking transition commits.
"""

import json
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List
from uuid import UUID

import httpx
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)


class EventType:
    """Event type constants for booking service."""

    BOOKING_REQUESTED = 'booking.requested'
    BOOKING_CONFIRMED = 'booking.confirmed'
    BOOKING_REJECTED = 'booking.rejected'
    BOOKING_REASSIGNED = 'booking.reassigned'
    BOOKING_STARTED = 'booking.started'
    BOOKING_CANCELLED = 'booking.cancelled'
    BOOKING_COMPLETED = 'booking.completed'
    BOOKING_NO_SHOW = 'booking.no_show'
    BOOKING_RATED = 'booking.rated'
    BOOKING_UPDATED = 'booking.updated'
    BOOKING_PAYMENT_CAPTURED = 'booking.payment_captured'
    BOOKING_PAYMENT_FAILED = 'booking.payment_failed'
    BOOKING_REFUNDED = 'booking.refunded'


class JSONEncoder(json.JSONEncoder):
    """Custom JSON encoder for event payloads."""

    def default(self, obj):
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date, time)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        return super().default(obj)


class EventPublisher:
    """
    Event publisher for booking service.

    Backends (``EVENT_BACKEND``): ``log`` writes the event to the log,
    ``webhook`` posts it to ``EVENT_WEBHOOK_URL``, ``memory`` keeps it in
    ``published`` for tests.
    """

    def __init__(self, backend: str = None):
        self.service_name = 'booking-service'
        self.backend = backend or getattr(settings, 'EVENT_BACKEND', 'log')
        self.published: List[Dict[str, Any]] = []

    def publish(
        self,
        event_type: str,
        payload: Dict[str, Any],
        correlation_id: str = None
    ) -> bool:
        """
        Publish an event. Failures are logged; callers never see them.

        Returns:
            True if published successfully, False otherwise
        """
        event = {
            'event_type': event_type,
            'service': self.service_name,
            'timestamp': timezone.now().isoformat(),
            'correlation_id': correlation_id,
            'payload': payload,
        }

        try:
            event_json = json.dumps(event, cls=JSONEncoder)
            logger.info(f"Publishing event: {event_type}", extra={'event_type': event_type})
            self._publish_to_backend(event_type, event, event_json)
            return True
        except (TypeError, ValueError, httpx.HTTPError) as e:
            logger.error(f"Failed to publish event {event_type}: {e}")
            return False

    def _publish_to_backend(self, event_type: str, event: Dict[str, Any], event_json: str):
        if self.backend == 'webhook':
            self._publish_webhook(event_json)
        elif self.backend == 'memory':
            self.published.append(event)
        else:
            logger.debug(f"Event payload: {event_json[:500]}")

    def _publish_webhook(self, event_json: str):
        webhook_url = getattr(settings, 'EVENT_WEBHOOK_URL', None)
        if not webhook_url:
            return

        response = httpx.post(
            webhook_url,
            content=event_json,
            headers={'Content-Type': 'application/json'},
            timeout=5
        )
        response.raise_for_status()


def booking_payload(booking) -> Dict[str, Any]:
    return {
        'booking_id': booking.id,
        'uid': booking.uid,
        'status': booking.status,
        'customer_id': booking.customer_id,
        'provider_id': booking.provider_id,
        'service_id': booking.service_id,
        'booking_date': booking.booking_date,
        'booking_time': booking.booking_time,
        'duration_minutes': booking.duration_minutes,
        'price': booking.price,
        'payment_status': booking.payment_status,
    }


def publish_domain_event(publisher: EventPublisher, event, booking, correlation_id: str = None) -> bool:
    """Publish a state-machine ``DomainEvent`` together with the booking's current state."""
    payload = booking_payload(booking)
    payload.update({
        'previous_status': event.previous_status,
        'actor_id': event.actor_id,
        'data': dict(event.data),
    })
    return publisher.publish(event.name, payload, correlation_id=correlation_id)
