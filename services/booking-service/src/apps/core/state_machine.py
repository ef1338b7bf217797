# services/booking-service/src/apps/core/state_machine.py
"""
Booking Lifecycle State Machine

Every transition is a pure function of the booking snapshot, the acting
account, the provider resolution and the payload. It either returns a
``TransitionResult`` (new status, field changes, domain events) or raises
one of the typed booking errors. Persisting the result is the facade's job.

    pending ──accept──> confirmed ──start──> in_progress ──complete──> completed ──rate
       │                   │  └───────complete / no-show───┘   └──no-show──> no_show
       ├──reject──> rejected_by_provider ──reassign──> pending | confirmed
       ├──reassign──> pending | confirmed
       └──cancel──> cancelled <──cancel── confirmed
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Tuple, TYPE_CHECKING

from .constants import (
    ActorRole,
    BookingStatus,
    CancelledBy,
    MAX_RATING,
    MIN_RATING,
    REASSIGNED,
)
from .exceptions import (
    AlreadyProcessed,
    AlreadyRated,
    AuthorizationError,
    InvalidStateTransition,
    ValidationError,
)

if TYPE_CHECKING:
    from .services.provider_resolution import ProviderResolution


class Transition:
    CREATE = 'create'
    ACCEPT = 'accept'
    REJECT = 'reject'
    REASSIGN = 'reassign'
    START = 'start'
    CANCEL = 'cancel'
    COMPLETE = 'complete'
    MARK_NO_SHOW = 'mark_no_show'
    RATE = 'rate'


ALLOWED_SOURCES: Dict[str, FrozenSet[str]] = {
    Transition.ACCEPT: frozenset({BookingStatus.PENDING}),
    Transition.REJECT: frozenset({BookingStatus.PENDING}),
    Transition.REASSIGN: frozenset({BookingStatus.PENDING, BookingStatus.REJECTED_BY_PROVIDER}),
    Transition.START: frozenset({BookingStatus.CONFIRMED}),
    Transition.CANCEL: frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED}),
    Transition.COMPLETE: frozenset({BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}),
    Transition.MARK_NO_SHOW: frozenset({BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}),
    Transition.RATE: frozenset({BookingStatus.COMPLETED}),
}

# Re-requesting a decision that was already taken is an idempotency failure,
# not an illegal transition.
DECISION_TRANSITIONS = frozenset({Transition.ACCEPT, Transition.REJECT})

EVENT_NAMES = {
    Transition.CREATE: 'booking.requested',
    Transition.ACCEPT: 'booking.confirmed',
    Transition.REJECT: 'booking.rejected',
    Transition.REASSIGN: 'booking.reassigned',
    Transition.START: 'booking.started',
    Transition.CANCEL: 'booking.cancelled',
    Transition.COMPLETE: 'booking.completed',
    Transition.MARK_NO_SHOW: 'booking.no_show',
    Transition.RATE: 'booking.rated',
}


@dataclass(frozen=True)
class Actor:
    """The account performing an operation."""

    id: str
    roles: FrozenSet[str] = frozenset()
    name: str = ''

    @classmethod
    def from_user(cls, user) -> 'Actor':
        return cls(
            id=str(user.id),
            roles=frozenset(getattr(user, 'roles', None) or ()),
            name=getattr(user, 'name', '') or '',
        )

    @classmethod
    def system(cls, name: str = 'scheduler') -> 'Actor':
        return cls(id=f"system:{name}", roles=frozenset({ActorRole.SYSTEM}), name=name)

    @property
    def is_admin(self) -> bool:
        return ActorRole.ADMIN in self.roles

    @property
    def is_system(self) -> bool:
        return ActorRole.SYSTEM in self.roles


@dataclass(frozen=True)
class BookingSnapshot:
    id: str
    uid: str
    status: str
    customer_id: str
    customer_name: str
    provider_id: str
    service_name: str
    booking_date: date
    booking_time: time
    starts_at: datetime
    payment_status: str
    rating: Optional[int] = None

    @classmethod
    def from_booking(cls, booking) -> 'BookingSnapshot':
        return cls(
            id=str(booking.pk),
            uid=booking.uid,
            status=booking.status,
            customer_id=str(booking.customer_id),
            customer_name=booking.customer_name,
            provider_id=str(booking.provider_id),
            service_name=booking.service_name,
            booking_date=booking.booking_date,
            booking_time=booking.booking_time,
            starts_at=booking.start_datetime,
            payment_status=booking.payment_status,
            rating=booking.rating,
        )


@dataclass(frozen=True)
class DomainEvent:
    name: str
    transition: str
    booking_id: str
    previous_status: Optional[str]
    new_status: str
    actor_id: str
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionResult:
    transition: str
    previous_status: Optional[str]
    new_status: str
    changes: Mapping[str, Any]
    events: Tuple[DomainEvent, ...]

    @property
    def event(self) -> DomainEvent:
        return self.events[0]


def _result(transition, booking_id, previous, new_status, actor, changes=None, **data) -> TransitionResult:
    event = DomainEvent(
        name=EVENT_NAMES[transition],
        transition=transition,
        booking_id=str(booking_id),
        previous_status=previous,
        new_status=new_status,
        actor_id=actor.id,
        data=data,
    )
    return TransitionResult(
        transition=transition,
        previous_status=previous,
        new_status=new_status,
        changes=dict(changes or {}),
        events=(event,),
    )


def require_state(transition: str, status: str):
    if status in ALLOWED_SOURCES[transition]:
        return
    if transition in DECISION_TRANSITIONS:
        raise AlreadyProcessed(f"Booking is already {status}; it can no longer be {transition}ed")
    raise InvalidStateTransition(f"Cannot {transition.replace('_', ' ')} a booking that is {status}")


def _can_operate(actor: Actor, resolution: 'ProviderResolution') -> bool:
    return resolution.has_authority(actor.id) or actor.is_admin or actor.is_system


# =============================================================================
# TRANSITIONS
# =============================================================================

def create(booking_id, actor: Actor, resolution: 'ProviderResolution', now: datetime) -> TransitionResult:
    if actor.is_system:
        raise AuthorizationError('Bookings are requested by customers')
    if resolution.is_provider(actor.id):
        raise ValidationError('Providers cannot book themselves')
    return _result(
        Transition.CREATE, booking_id, None, BookingStatus.PENDING, actor,
        {'requested_at': now},
    )


def accept(snapshot: BookingSnapshot, actor: Actor, resolution: 'ProviderResolution',
           now: datetime) -> TransitionResult:
    if not resolution.has_authority(actor.id):
        raise AuthorizationError('Only the provider or the shop owner can accept this booking')
    require_state(Transition.ACCEPT, snapshot.status)
    return _result(
        Transition.ACCEPT, snapshot.id, snapshot.status, BookingStatus.CONFIRMED, actor,
        {'reviewed_at': now},
    )


def reject(snapshot: BookingSnapshot, actor: Actor, resolution: 'ProviderResolution',
           now: datetime, reason: str = '') -> TransitionResult:
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError('A reason is required to reject a booking')
    if resolution.is_shop_owner_direct:
        raise InvalidStateTransition('Shop owners cannot reject their own bookings; cancel instead')
    if not resolution.is_provider(actor.id):
        raise AuthorizationError('Only the assigned provider can reject this booking')
    require_state(Transition.REJECT, snapshot.status)
    return _result(
        Transition.REJECT, snapshot.id, snapshot.status, BookingStatus.REJECTED_BY_PROVIDER, actor,
        {'rejection_reason': reason, 'reviewed_at': now},
        reason=reason,
    )


def reassign(snapshot: BookingSnapshot, actor: Actor, resolution: 'ProviderResolution',
             now: datetime, new_resolution: 'ProviderResolution' = None) -> TransitionResult:
    """
    Move the booking to another provider of the same shop. Reassigning to
    the shop owner's own provider profile confirms the booking outright.
    """
    if new_resolution is None:
        raise ValidationError('A provider to reassign to is required')
    if resolution.is_independent:
        raise AuthorizationError('Bookings with an independent provider cannot be reassigned')
    if not resolution.is_shop_owner(actor.id):
        raise AuthorizationError("Only the owner of the provider's shop can reassign this booking")
    require_state(Transition.REASSIGN, snapshot.status)
    if new_resolution.provider_id == resolution.provider_id:
        raise ValidationError('The booking is already assigned to this provider')
    if not new_resolution.same_shop(resolution):
        raise ValidationError('Bookings can only be reassigned within the same shop')

    to_self = new_resolution.is_shop_owner_direct and new_resolution.is_provider(actor.id)
    new_status = BookingStatus.CONFIRMED if to_self else BookingStatus.PENDING
    return _result(
        Transition.REASSIGN, snapshot.id, snapshot.status, new_status, actor,
        {
            'provider_id': new_resolution.provider_id,
            'rejection_reason': '',
            'reviewed_at': now if to_self else None,
        },
        marker=REASSIGNED,
        from_provider_id=resolution.provider_id,
        to_provider_id=new_resolution.provider_id,
        to_self=to_self,
    )


def start(snapshot: BookingSnapshot, actor: Actor, resolution: 'ProviderResolution',
          now: datetime) -> TransitionResult:
    if not _can_operate(actor, resolution):
        raise AuthorizationError('Only the provider, the shop owner or an admin can start this booking')
    require_state(Transition.START, snapshot.status)
    return _result(
        Transition.START, snapshot.id, snapshot.status, BookingStatus.IN_PROGRESS, actor,
        {'started_at': now},
    )


def cancel(snapshot: BookingSnapshot, actor: Actor, resolution: 'ProviderResolution',
           now: datetime, reason: str = '') -> TransitionResult:
    if actor.id == snapshot.customer_id:
        cancelled_by = CancelledBy.CUSTOMER
    elif resolution.has_authority(actor.id):
        cancelled_by = CancelledBy.PROVIDER
    elif actor.is_admin:
        cancelled_by = CancelledBy.ADMIN
    else:
        raise AuthorizationError('Only the customer, the provider or an admin can cancel this booking')

    # Customers act on the status they are shown.
    status = snapshot.status
    if cancelled_by == CancelledBy.CUSTOMER:
        status = customer_visible_status(status, resolution)
    require_state(Transition.CANCEL, status)
    if cancelled_by == CancelledBy.CUSTOMER and now >= snapshot.starts_at:
        raise InvalidStateTransition('Bookings cannot be cancelled by the customer after they have started')

    reason = (reason or '').strip()
    return _result(
        Transition.CANCEL, snapshot.id, snapshot.status, BookingStatus.CANCELLED, actor,
        {'cancelled_at': now, 'cancelled_by': cancelled_by, 'cancellation_reason': reason},
        reason=reason,
        cancelled_by=cancelled_by,
    )


def complete(snapshot: BookingSnapshot, actor: Actor, resolution: 'ProviderResolution',
             now: datetime) -> TransitionResult:
    if not _can_operate(actor, resolution):
        raise AuthorizationError('Only the provider, the shop owner or an admin can complete this booking')
    require_state(Transition.COMPLETE, snapshot.status)
    return _result(
        Transition.COMPLETE, snapshot.id, snapshot.status, BookingStatus.COMPLETED, actor,
        {'completed_at': now},
    )


def mark_no_show(snapshot: BookingSnapshot, actor: Actor, resolution: 'ProviderResolution',
                 now: datetime) -> TransitionResult:
    if not _can_operate(actor, resolution):
        raise AuthorizationError('Only the provider, the shop owner or an admin can mark a no-show')
    require_state(Transition.MARK_NO_SHOW, snapshot.status)
    return _result(
        Transition.MARK_NO_SHOW, snapshot.id, snapshot.status, BookingStatus.NO_SHOW, actor,
    )


def rate(snapshot: BookingSnapshot, actor: Actor, resolution: 'ProviderResolution',
         now: datetime, rating: int = None, review: str = '') -> TransitionResult:
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be a whole number between {MIN_RATING} and {MAX_RATING}")
    if actor.id != snapshot.customer_id:
        raise AuthorizationError('Only the customer can rate this booking')
    require_state(Transition.RATE, snapshot.status)
    if snapshot.rating is not None:
        raise AlreadyRated()

    review = (review or '').strip()
    return _result(
        Transition.RATE, snapshot.id, snapshot.status, BookingStatus.COMPLETED, actor,
        {'rating': rating, 'review': review},
        rating=rating,
    )


HANDLERS: Dict[str, Callable[..., TransitionResult]] = {
    Transition.ACCEPT: accept,
    Transition.REJECT: reject,
    Transition.REASSIGN: reassign,
    Transition.START: start,
    Transition.CANCEL: cancel,
    Transition.COMPLETE: complete,
    Transition.MARK_NO_SHOW: mark_no_show,
    Transition.RATE: rate,
}


def apply(transition: str, snapshot: BookingSnapshot, actor: Actor,
          resolution: 'ProviderResolution', now: datetime, **payload) -> TransitionResult:
    try:
        handler = HANDLERS[transition]
    except KeyError:
        raise ValidationError(f"Unknown transition: {transition}")
    return handler(snapshot, actor, resolution, now, **payload)


def customer_visible_status(status: str, resolution: 'ProviderResolution') -> str:
    """
    A shop barber's rejection is not final for the customer: the shop owner
    can still reassign, so the customer keeps seeing the request as pending.
    """
    if status == BookingStatus.REJECTED_BY_PROVIDER and resolution.is_shop_affiliated:
        return BookingStatus.PENDING
    return status
