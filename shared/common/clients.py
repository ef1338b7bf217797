# shared/common/clients.py
"""
Service-to-service HTTP clients.

``BaseServiceClient`` posts JSON with the shared service token and trips a
``CircuitBreaker`` on transport errors and 5xx answers. Callers see the
``httpx`` exceptions unchanged, plus ``CircuitBreakerError`` while the
breaker is open.
"""

import httpx
import logging
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from django.conf import settings

logger = logging.getLogger(__name__)

CLOSED = 'closed'
OPEN = 'open'
HALF_OPEN = 'half_open'


class CircuitBreakerError(Exception):
    """Raised instead of calling a service whose breaker is open."""


class CircuitBreaker:
    """
    Opens after ``failure_threshold`` consecutive failures and rejects calls
    for ``reset_after`` seconds. The next call is let through as a trial;
    ``success_threshold`` successful trials close it again, one failed trial
    reopens it.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        reset_after: float = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_after = reset_after
        self.clock = clock
        self.state = CLOSED
        self.failures = 0
        self.trial_successes = 0
        self.opened_at: Optional[float] = None

    def allow(self) -> bool:
        if self.state == OPEN:
            if self.clock() - self.opened_at < self.reset_after:
                return False
            self.state = HALF_OPEN
            self.trial_successes = 0
        return True

    def record_success(self):
        if self.state == HALF_OPEN:
            self.trial_successes += 1
            if self.trial_successes >= self.success_threshold:
                self.state = CLOSED
                self.failures = 0
                logger.info("Circuit breaker closed")
        else:
            self.failures = 0

    def record_failure(self):
        self.failures += 1
        if self.state == HALF_OPEN or self.failures >= self.failure_threshold:
            self.state = OPEN
            self.opened_at = self.clock()
            logger.warning(f"Circuit breaker opened after {self.failures} failures")


class BaseServiceClient:
    """JSON over HTTP to another service of the platform."""

    def __init__(self, service_name: str, base_url: str = None, transport: httpx.BaseTransport = None,
                 circuit_breaker: CircuitBreaker = None):
        self.service_name = service_name
        self.base_url = (base_url or self._service_url(service_name)).rstrip('/')
        self.timeout = httpx.Timeout(10.0, connect=5.0)
        self.transport = transport
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

    @staticmethod
    def _service_url(service_name: str) -> str:
        return getattr(settings, 'SERVICE_URLS', {}).get(service_name, f'http://{service_name}:8000')

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            'Accept': 'application/json',
            'X-Service-Auth': getattr(settings, 'SERVICE_AUTH_TOKEN', ''),
            'X-Source-Service': getattr(settings, 'SERVICE_NAME', 'unknown'),
        }
        if idempotency_key:
            headers['Idempotency-Key'] = idempotency_key
        return headers

    def post(self, path: str, data: Dict[str, Any], idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        if not self.circuit_breaker.allow():
            raise CircuitBreakerError(f"Circuit breaker open for {self.service_name}")

        url = f"{self.base_url}{path}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, json=data, headers=self._headers(idempotency_key))
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"{self.service_name} answered {e.response.status_code}",
                extra={'url': url, 'status_code': e.response.status_code}
            )
            if e.response.status_code >= 500:
                self.circuit_breaker.record_failure()
            raise
        except httpx.RequestError as e:
            logger.error(f"Could not reach {self.service_name}: {e}", extra={'url': url})
            self.circuit_breaker.record_failure()
            raise

        self.circuit_breaker.record_success()
        return response.json() if response.content else {}


class PaymentServiceClient(BaseServiceClient):
    """Charges and refunds, keyed by booking id."""

    def __init__(self, base_url: str = None, transport: httpx.BaseTransport = None):
        super().__init__(
            'payment-service',
            base_url=base_url or getattr(settings, 'PAYMENT_SERVICE_URL', None),
            transport=transport,
        )

    def charge(self, booking_id: str, amount: Decimal, method: str,
               idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        return self.post(
            '/api/v1/payments/charges/',
            {'booking_id': str(booking_id), 'amount': str(amount), 'method': method},
            idempotency_key=idempotency_key,
        )

    def refund(self, booking_id: str, amount: Decimal,
               idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        return self.post(
            '/api/v1/payments/refunds/',
            {'booking_id': str(booking_id), 'amount': str(amount)},
            idempotency_key=idempotency_key,
        )


class NotificationServiceClient(BaseServiceClient):

    def __init__(self, base_url: str = None, transport: httpx.BaseTransport = None):
        super().__init__('notification-service', base_url=base_url, transport=transport)

    def send_notification(self, user_id: str, template: str, data: Dict[str, Any],
                          related_id: str = None, channels: List[str] = None) -> Dict[str, Any]:
        return self.post('/api/v1/notifications/send/', {
            'user_id': user_id,
            'template': template,
            'data': data,
            'channels': channels or ['push', 'in_app'],
            'related_entity_type': 'booking',
            'related_entity_id': related_id,
        })
