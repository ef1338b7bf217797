# services/booking-service/src/apps/core/constants.py
"""
Booking Domain Constants

Enumerations shared by the models and the pure domain modules
(schedule, state machine, provider resolution, notification policy).
"""

from django.db import models


class BookingStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    CONFIRMED = 'confirmed', 'Confirmed'
    REJECTED_BY_PROVIDER = 'rejected_by_provider', 'Rejected by Provider'
    IN_PROGRESS = 'in_progress', 'In Progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'
    NO_SHOW = 'no_show', 'No Show'


# Marker carried by reassignment events; never stored on a booking.
REASSIGNED = 'reassigned'

# Statuses that consume a provider's time.
OCCUPYING_STATUSES = frozenset({
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
})

TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.NO_SHOW,
})


class PaymentStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PAID = 'paid', 'Paid'
    REFUNDED = 'refunded', 'Refunded'
    FAILED = 'failed', 'Failed'


class PaymentMethod(models.TextChoices):
    CASH = 'cash', 'Cash'
    CARD = 'card', 'Card'
    WALLET = 'wallet', 'Wallet'


class ServiceType(models.TextChoices):
    SHOP_BASED = 'shopBased', 'Shop Based'
    HOME_BASED = 'homeBased', 'Home Based'


class ServiceCapability(models.TextChoices):
    SHOP_BASED = 'shopBased', 'Shop Based'
    HOME_BASED = 'homeBased', 'Home Based'
    BOTH = 'both', 'Both'


class ProviderType(models.TextChoices):
    BARBER = 'barber', 'Barber'
    FREELANCER = 'freelancer', 'Freelancer'
    SHOP_OWNER = 'shop_owner', 'Shop Owner'


class ProviderStatus(models.TextChoices):
    ACTIVE = 'active', 'Active'
    BLOCKED = 'blocked', 'Blocked'
    ON_LEAVE = 'onLeave', 'On Leave'


class ProviderKind(models.TextChoices):
    INDEPENDENT = 'independent', 'Independent'
    SHOP_AFFILIATED = 'shopAffiliated', 'Shop Affiliated'
    SHOP_OWNER_DIRECT = 'shopOwnerDirect', 'Shop Owner Direct'


class CancelledBy(models.TextChoices):
    CUSTOMER = 'customer', 'Customer'
    PROVIDER = 'provider', 'Provider'
    ADMIN = 'admin', 'Admin'
    SYSTEM = 'system', 'System'


class ActorRole:
    """Role names carried in access tokens."""
    CUSTOMER = 'customer'
    BARBER = 'barber'
    FREELANCER = 'freelancer'
    SHOP_OWNER = 'shop_owner'
    ADMIN = 'admin'
    SYSTEM = 'system'


# Schedule hours sit on this grid and slot claims are recorded per bucket of it.
SLOT_CLAIM_BUCKET_MINUTES = 5

MIN_RATING = 1
MAX_RATING = 5


def capability_allows(capability: str, service_type: str) -> bool:
    """Whether a provider capability (or service type) admits a booking service type."""
    return capability == ServiceCapability.BOTH or capability == service_type
