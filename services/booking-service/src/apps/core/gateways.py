# services/booking-service/src/apps/core/gateways.py
"""
External Collaborators

Narrow interfaces to the payment and notification services, their default
implementations, and the cancellation refund policy.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Mapping

import httpx
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from shared.common.clients import CircuitBreakerError, PaymentServiceClient

from .constants import CancelledBy
from .exceptions import ExternalDependencyError

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')


# =============================================================================
# PAYMENT
# =============================================================================

@dataclass(frozen=True)
class PaymentResult:
    success: bool
    reference: str = ''
    message: str = ''


@dataclass(frozen=True)
class RefundResult:
    success: bool
    amount: Decimal
    reference: str = ''
    message: str = ''


class PaymentGateway(ABC):
    """Charge and refund capability keyed by booking id."""

    @abstractmethod
    def charge(self, booking_id: str, amount: Decimal, method: str) -> PaymentResult:
        """Capture ``amount``. Raises ExternalDependencyError when the gateway is unreachable."""

    @abstractmethod
    def refund(self, booking_id: str, amount: Decimal) -> RefundResult:
        """Refund ``amount``. Raises ExternalDependencyError when the gateway is unreachable."""


class PaymentServiceGateway(PaymentGateway):
    """Talks to the payment service over HTTP."""

    def __init__(self, client: PaymentServiceClient = None):
        self.client = client or PaymentServiceClient()

    def charge(self, booking_id: str, amount: Decimal, method: str) -> PaymentResult:
        try:
            data = self.client.charge(booking_id, amount, method, idempotency_key=f"charge:{booking_id}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code < 500:
                # Declined by the payment provider.
                return PaymentResult(success=False, message=_response_message(e.response))
            raise ExternalDependencyError(f"Payment service failed to charge booking {booking_id}") from e
        except (httpx.HTTPError, CircuitBreakerError) as e:
            raise ExternalDependencyError(f"Payment service unavailable: {e}") from e

        return PaymentResult(
            success=_succeeded(data),
            reference=str(data.get('reference') or data.get('id') or ''),
            message=data.get('message', ''),
        )

    def refund(self, booking_id: str, amount: Decimal) -> RefundResult:
        try:
            data = self.client.refund(booking_id, amount, idempotency_key=f"refund:{booking_id}")
        except (httpx.HTTPError, CircuitBreakerError) as e:
            raise ExternalDependencyError(f"Payment service failed to refund booking {booking_id}: {e}") from e

        return RefundResult(
            success=_succeeded(data),
            amount=Decimal(str(data.get('amount', amount))),
            reference=str(data.get('reference') or data.get('id') or ''),
            message=data.get('message', ''),
        )


def _succeeded(data: Mapping[str, Any]) -> bool:
    if 'success' in data:
        return bool(data['success'])
    return data.get('status') in ('succeeded', 'paid', 'refunded')


def _response_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        error = body.get('error')
        if isinstance(error, dict):
            return error.get('message', '')
        return body.get('message') or body.get('detail') or ''
    return ''


class CancellationPolicy:
    """
    Refund owed when a paid booking is cancelled.

    Cancellations by the provider side or an admin are refunded in full.
    A customer cancelling at least ``free_cancellation_hours`` ahead gets
    everything back; later than that, ``late_refund_percent`` of the price.
    """

    def __init__(self, free_cancellation_hours: int = 24, late_refund_percent: int = 50):
        if not 0 <= late_refund_percent <= 100:
            raise ImproperlyConfigured('Late cancellation refund percent must be between 0 and 100')
        self.free_cancellation_hours = free_cancellation_hours
        self.late_refund_percent = late_refund_percent

    @classmethod
    def from_settings(cls) -> 'CancellationPolicy':
        return cls(
            free_cancellation_hours=getattr(settings, 'BOOKING_FREE_CANCELLATION_HOURS', 24),
            late_refund_percent=getattr(settings, 'BOOKING_LATE_CANCELLATION_REFUND_PERCENT', 50),
        )

    def refund_amount(self, amount: Decimal, starts_at: datetime, cancelled_at: datetime,
                      cancelled_by: str) -> Decimal:
        amount = Decimal(amount)
        if cancelled_by != CancelledBy.CUSTOMER:
            return amount
        hours_ahead = (starts_at - cancelled_at).total_seconds() / 3600
        if hours_ahead >= self.free_cancellation_hours:
            return amount
        return (amount * self.late_refund_percent / 100).quantize(CENT, rounding=ROUND_HALF_UP)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationSink(ABC):
    """Accepts notifications for delivery; delivery is at-least-once downstream."""

    @abstractmethod
    def enqueue(self, recipient_id: str, template_key: str, fields: Dict[str, Any],
                related_booking_id: str) -> None:
        ...


class CeleryNotificationSink(NotificationSink):
    """Queues delivery to the notification service as a Celery task."""

    def enqueue(self, recipient_id, template_key, fields, related_booking_id):
        from .tasks import deliver_booking_notification

        deliver_booking_notification.delay(
            str(recipient_id), template_key, dict(fields), str(related_booking_id)
        )


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log. For local development."""

    def enqueue(self, recipient_id, template_key, fields, related_booking_id):
        logger.info(
            f"Notification {template_key} for {recipient_id}",
            extra={
                'recipient_id': str(recipient_id),
                'template_key': template_key,
                'fields': dict(fields),
                'booking_id': str(related_booking_id),
            }
        )


NOTIFICATION_SINKS = {
    'celery': CeleryNotificationSink,
    'logging': LoggingNotificationSink,
}


def get_notification_sink() -> NotificationSink:
    name = getattr(settings, 'NOTIFICATION_SINK', 'celery')
    try:
        return NOTIFICATION_SINKS[name]()
    except KeyError:
        raise ImproperlyConfigured(f"Unknown NOTIFICATION_SINK: {name}")


def get_payment_gateway() -> PaymentGateway:
    return PaymentServiceGateway()
