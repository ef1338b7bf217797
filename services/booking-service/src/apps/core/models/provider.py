# services/booking-service/src/apps/core/models/provider.py
"""
Provider, Shop and Service Models

Read-mostly projections of the profile data owned by the user and shop
services. Bookings reference them; the booking core only mutates the
rating aggregates.
"""

from django.db import models

from shared.common.mixins import UUIDPrimaryKeyMixin, TimestampMixin, RatingAggregateMixin

from ..constants import (
    ProviderStatus,
    ProviderType,
    ServiceCapability,
    ServiceType,
    capability_allows,
)


class Shop(UUIDPrimaryKeyMixin, TimestampMixin, RatingAggregateMixin):
    """A shop with exactly one owning account."""

    name = models.CharField(max_length=255)
    owner_id = models.UUIDField(db_index=True)
    owner_name = models.CharField(max_length=255, blank=True, default='')
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'shops'
        ordering = ['name']

    def __str__(self):
        return self.name


class Service(UUIDPrimaryKeyMixin, TimestampMixin):
    """A bookable service with a fixed duration."""

    name = models.CharField(max_length=255)
    duration_minutes = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=10, decimal_places=2)
    service_type = models.CharField(
        max_length=20,
        choices=ServiceCapability.choices,
        default=ServiceCapability.SHOP_BASED
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'services'
        ordering = ['name']
        constraints = [
            models.CheckConstraint(
                condition=models.Q(duration_minutes__gt=0),
                name='service_duration_positive',
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.duration_minutes} min)"

    def supports(self, service_type: str) -> bool:
        return capability_allows(self.service_type, service_type)


class ProviderQuerySet(models.QuerySet):

    def active(self):
        return self.filter(status=ProviderStatus.ACTIVE)

    def online(self):
        return self.active().filter(is_online=True)

    def for_shop(self, shop):
        return self.filter(shop=shop)


class Provider(UUIDPrimaryKeyMixin, TimestampMixin, RatingAggregateMixin):
    """
    Anyone who can be booked: an independent barber or freelancer, a barber
    working in a shop, or a shop owner taking bookings personally.
    """

    Type = ProviderType
    Status = ProviderStatus

    user_id = models.UUIDField(db_index=True)
    display_name = models.CharField(max_length=255)
    provider_type = models.CharField(
        max_length=20,
        choices=ProviderType.choices,
        default=ProviderType.BARBER
    )
    shop = models.ForeignKey(
        Shop,
        on_delete=models.PROTECT,
        related_name='providers',
        null=True,
        blank=True
    )
    service_capability = models.CharField(
        max_length=20,
        choices=ServiceCapability.choices,
        default=ServiceCapability.SHOP_BASED
    )
    status = models.CharField(
        max_length=20,
        choices=ProviderStatus.choices,
        default=ProviderStatus.ACTIVE,
        db_index=True
    )
    is_online = models.BooleanField(default=True)
    services = models.ManyToManyField(Service, related_name='providers', blank=True)

    objects = ProviderQuerySet.as_manager()

    class Meta:
        db_table = 'providers'
        ordering = ['display_name']
        constraints = [
            models.UniqueConstraint(fields=['user_id', 'shop'], name='uniq_provider_user_per_shop'),
        ]

    def __str__(self):
        return self.display_name

    @property
    def is_bookable(self) -> bool:
        return self.status == ProviderStatus.ACTIVE

    def can_offer(self, service: Service) -> bool:
        """A provider may only offer services its capability covers."""
        if service.service_type == ServiceCapability.BOTH:
            return True
        return capability_allows(self.service_capability, service.service_type)

    def can_perform(self, service: Service, service_type: str) -> bool:
        """Whether a booking of ``service`` as ``service_type`` fits this provider."""
        if service_type not in ServiceType.values:
            return False
        return (
            capability_allows(self.service_capability, service_type)
            and service.supports(service_type)
        )

    def offers(self, service: Service) -> bool:
        return self.services.filter(pk=service.pk).exists()
