# services/booking-service/src/apps/core/tasks.py
"""
Celery Tasks for Booking Service

Delivery of booking notifications to the notification service.
"""

import logging
from typing import Any, Dict

import httpx
from celery import shared_task

from shared.common.clients import CircuitBreakerError, NotificationServiceClient

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=5, default_retry_delay=30, acks_late=True)
def deliver_booking_notification(
    self,
    recipient_id: str,
    template_key: str,
    fields: Dict[str, Any],
    booking_id: str
) -> Dict[str, Any]:
    """
    Post one booking notification to the notification service, retrying
    with backoff while the service is unreachable.
    """
    client = NotificationServiceClient()

    try:
        result = client.send_notification(
            user_id=recipient_id,
            template=template_key,
            data=fields,
            related_id=booking_id,
        )
    except (httpx.HTTPError, CircuitBreakerError) as exc:
        logger.warning(
            f"Notification {template_key} for {recipient_id} failed, retry {self.request.retries}",
            extra={'booking_id': booking_id, 'template_key': template_key}
        )
        raise self.retry(exc=exc, countdown=30 * (2 ** self.request.retries))

    logger.info(
        f"Delivered {template_key} to {recipient_id}",
        extra={'booking_id': booking_id, 'template_key': template_key}
    )
    return {'success': True, 'notification': result}
