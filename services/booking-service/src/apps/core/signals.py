# services/booking-service/src/apps/core/signals.py
"""
Django Signals for Booking Service

Keeps provider data consistent: every provider gets a full week of
schedule rows, and only services matching the provider's capability can
be attached.
"""

import logging

from django.db.models.signals import m2m_changed, post_save
from django.dispatch import receiver

from .exceptions import ValidationError
from .models import Provider, Service, ensure_week

logger = logging.getLogger(__name__)


@receiver(post_save, sender=Provider)
def provider_post_save(sender, instance, created, **kwargs):
    """Seed the weekly schedule of new providers."""
    if created:
        ensure_week(instance)
        logger.info(f"Provider created: {instance.display_name}", extra={'provider_id': str(instance.id)})


@receiver(m2m_changed, sender=Provider.services.through)
def provider_services_changed(sender, instance, action, reverse, pk_set, **kwargs):
    """Reject services the provider's capability does not cover."""
    if action != 'pre_add' or not pk_set:
        return

    if reverse:
        # instance is a Service being attached to providers
        pairs = [(provider, instance) for provider in Provider.objects.filter(pk__in=pk_set)]
    else:
        pairs = [(instance, service) for service in Service.objects.filter(pk__in=pk_set)]

    for provider, service in pairs:
        if not provider.can_offer(service):
            raise ValidationError(
                f"{provider.display_name} ({provider.service_capability}) cannot offer "
                f"{service.name} ({service.service_type})"
            )
