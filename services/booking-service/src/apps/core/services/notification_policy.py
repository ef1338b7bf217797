# services/booking-service/src/apps/core/services/notification_policy.py
"""
Notification Fan-out Policy

Who hears about a booking transition is decided by ``FANOUT_TABLE`` alone:
a mapping from (transition variant, provider kind) to the recipient roles
and template keys to use. Adding a provider kind or a transition is a table
edit. ``plan_notifications`` turns a transition into concrete, de-duplicated
``NotificationIntent`` values; the message copy lives with the templates in
the notification service.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..constants import ProviderKind
from ..state_machine import Actor, BookingSnapshot, DomainEvent, Transition
from .provider_resolution import ProviderResolution


class Recipient:
    CUSTOMER = 'customer'
    PROVIDER = 'provider'
    SHOP_OWNER = 'shop_owner'
    NEW_PROVIDER = 'new_provider'
    NEW_PROVIDER_SHOP_OWNER = 'new_provider_shop_owner'
    # Whichever side of the booking did not initiate the transition.
    COUNTERPARTY = 'counterparty'


class TemplateKey:
    BOOKING_REQUESTED = 'booking_requested'
    NEW_BOOKING_REQUEST = 'new_booking_request'
    BOOKING_CONFIRMED = 'booking_confirmed'
    BOOKING_ACCEPTED_BY_PROVIDER = 'booking_accepted_by_provider'
    BOOKING_REJECTED = 'booking_rejected'
    BOOKING_REJECTED_BY_PROVIDER = 'booking_rejected_by_provider'
    BOOKING_ASSIGNED = 'booking_assigned'
    BOOKING_REASSIGNED = 'booking_reassigned'
    BOOKING_STARTED = 'booking_started'
    BOOKING_CANCELLED = 'booking_cancelled'
    BOOKING_COMPLETED = 'booking_completed'
    BOOKING_NO_SHOW = 'booking_no_show'
    REVIEW_RECEIVED = 'review_received'


REASSIGN_TO_SELF = 'reassign_self'


@dataclass(frozen=True)
class Rule:
    recipient: str
    template_key: str
    # Receipts go to the acting account too.
    include_actor: bool = False


def _same_for_all_kinds(*rules: Rule) -> Dict[str, Tuple[Rule, ...]]:
    return {kind: tuple(rules) for kind in ProviderKind.values}


INDEPENDENT = ProviderKind.INDEPENDENT
AFFILIATED = ProviderKind.SHOP_AFFILIATED
OWNER_DIRECT = ProviderKind.SHOP_OWNER_DIRECT

FANOUT_TABLE: Dict[str, Dict[str, Tuple[Rule, ...]]] = {
    Transition.CREATE: {
        INDEPENDENT: (
            Rule(Recipient.PROVIDER, TemplateKey.NEW_BOOKING_REQUEST),
            Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_REQUESTED, include_actor=True),
        ),
        AFFILIATED: (
            Rule(Recipient.SHOP_OWNER, TemplateKey.NEW_BOOKING_REQUEST),
            Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_REQUESTED, include_actor=True),
        ),
        OWNER_DIRECT: (
            Rule(Recipient.SHOP_OWNER, TemplateKey.NEW_BOOKING_REQUEST),
            Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_REQUESTED, include_actor=True),
        ),
    },
    Transition.ACCEPT: {
        INDEPENDENT: (Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_CONFIRMED),),
        AFFILIATED: (
            Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_CONFIRMED),
            Rule(Recipient.SHOP_OWNER, TemplateKey.BOOKING_ACCEPTED_BY_PROVIDER),
        ),
        OWNER_DIRECT: (Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_CONFIRMED),),
    },
    Transition.REJECT: {
        INDEPENDENT: (Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_REJECTED),),
        # The shop owner may still reassign: the customer is not told.
        AFFILIATED: (Rule(Recipient.SHOP_OWNER, TemplateKey.BOOKING_REJECTED_BY_PROVIDER),),
        OWNER_DIRECT: (),
    },
    Transition.REASSIGN: _same_for_all_kinds(
        Rule(Recipient.NEW_PROVIDER, TemplateKey.BOOKING_ASSIGNED),
        Rule(Recipient.NEW_PROVIDER_SHOP_OWNER, TemplateKey.BOOKING_ASSIGNED),
        Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_REASSIGNED),
    ),
    REASSIGN_TO_SELF: {
        INDEPENDENT: (),
        AFFILIATED: (Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_CONFIRMED),),
        OWNER_DIRECT: (),
    },
    Transition.START: _same_for_all_kinds(
        Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_STARTED),
    ),
    Transition.CANCEL: {
        INDEPENDENT: (Rule(Recipient.COUNTERPARTY, TemplateKey.BOOKING_CANCELLED),),
        AFFILIATED: (
            Rule(Recipient.COUNTERPARTY, TemplateKey.BOOKING_CANCELLED),
            Rule(Recipient.SHOP_OWNER, TemplateKey.BOOKING_CANCELLED),
        ),
        OWNER_DIRECT: (Rule(Recipient.COUNTERPARTY, TemplateKey.BOOKING_CANCELLED),),
    },
    Transition.COMPLETE: _same_for_all_kinds(
        Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_COMPLETED),
    ),
    Transition.MARK_NO_SHOW: _same_for_all_kinds(
        Rule(Recipient.CUSTOMER, TemplateKey.BOOKING_NO_SHOW),
    ),
    Transition.RATE: {
        INDEPENDENT: (Rule(Recipient.PROVIDER, TemplateKey.REVIEW_RECEIVED),),
        AFFILIATED: (
            Rule(Recipient.PROVIDER, TemplateKey.REVIEW_RECEIVED),
            Rule(Recipient.SHOP_OWNER, TemplateKey.REVIEW_RECEIVED),
        ),
        OWNER_DIRECT: (Rule(Recipient.PROVIDER, TemplateKey.REVIEW_RECEIVED),),
    },
}


@dataclass(frozen=True)
class NotificationIntent:
    recipient_id: str
    template_key: str
    booking_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)


def rules_for(variant: str, kind: str) -> Tuple[Rule, ...]:
    return FANOUT_TABLE.get(variant, {}).get(kind, ())


def variant_for(event: DomainEvent) -> str:
    if event.transition == Transition.REASSIGN and event.data.get('to_self'):
        return REASSIGN_TO_SELF
    return event.transition


def _recipient_ids(
    role: str,
    booking: BookingSnapshot,
    resolution: ProviderResolution,
    actor: Actor,
    new_resolution: Optional[ProviderResolution]
) -> List[Tuple[str, bool]]:
    """Account ids for a role, each flagged True when the account is on the customer side."""
    if role == Recipient.CUSTOMER:
        return [(booking.customer_id, True)]
    if role == Recipient.PROVIDER:
        return [(resolution.provider_user_id, False)]
    if role == Recipient.SHOP_OWNER:
        return [(resolution.shop_owner_id, False)] if resolution.shop_owner_id else []
    if role == Recipient.NEW_PROVIDER:
        return [(new_resolution.provider_user_id, False)] if new_resolution else []
    if role == Recipient.NEW_PROVIDER_SHOP_OWNER:
        if new_resolution and new_resolution.is_shop_affiliated:
            return [(new_resolution.shop_owner_id, False)]
        return []
    if role == Recipient.COUNTERPARTY:
        if actor.id == booking.customer_id:
            return [(resolution.provider_user_id, False)]
        if resolution.has_authority(actor.id):
            return [(booking.customer_id, True)]
        # Admin or system: both sides hear about it.
        return [(booking.customer_id, True), (resolution.provider_user_id, False)]
    raise ValueError(f"Unknown recipient role: {role}")


def _fields(
    event: DomainEvent,
    booking: BookingSnapshot,
    for_customer: bool,
    resolution: ProviderResolution,
    new_resolution: Optional[ProviderResolution]
) -> Dict[str, Any]:
    provider = new_resolution or resolution
    fields = {
        'booking_uid': booking.uid,
        'service_name': booking.service_name,
        'counterpart_name': provider.provider_name if for_customer else booking.customer_name,
        'booking_date': booking.booking_date.isoformat(),
        'booking_time': booking.booking_time.strftime('%H:%M'),
        'status': event.new_status,
    }
    for key in ('reason', 'rating'):
        if event.data.get(key) not in (None, ''):
            fields[key] = event.data[key]
    return fields


def plan_notifications(
    event: DomainEvent,
    booking: BookingSnapshot,
    resolution: ProviderResolution,
    actor: Actor,
    new_resolution: Optional[ProviderResolution] = None
) -> List[NotificationIntent]:
    """
    Notifications for one transition, in table order.

    ``resolution`` describes the provider the booking had when the
    transition was requested; for reassignments ``new_resolution`` is the
    provider it moved to. The actor only receives receipts (rules with
    ``include_actor``) and nobody is notified twice for the same event.
    """
    intents: List[NotificationIntent] = []
    seen = set()

    for rule in rules_for(variant_for(event), resolution.kind):
        for recipient_id, for_customer in _recipient_ids(
            rule.recipient, booking, resolution, actor, new_resolution
        ):
            if recipient_id in seen or (recipient_id == actor.id and not rule.include_actor):
                continue
            seen.add(recipient_id)
            intents.append(NotificationIntent(
                recipient_id=recipient_id,
                template_key=rule.template_key,
                booking_id=booking.id,
                fields=_fields(event, booking, for_customer, resolution, new_resolution),
            ))

    return intents
