# services/booking-service/src/apps/core/services/provider_resolution.py
"""
Provider Resolution

Works out, once per booking, what kind of provider is assigned and who
holds approval authority over the booking. The state machine and the
notification policy both consume the result instead of branching on
provider fields themselves.
"""

from dataclasses import dataclass
from typing import FrozenSet, Optional

from ..constants import ProviderKind


@dataclass(frozen=True)
class ProviderResolution:
    kind: str
    provider_id: str
    provider_user_id: str
    provider_name: str
    shop_id: Optional[str]
    shop_owner_id: Optional[str]
    approval_authority: FrozenSet[str]

    @property
    def is_independent(self) -> bool:
        return self.kind == ProviderKind.INDEPENDENT

    @property
    def is_shop_affiliated(self) -> bool:
        return self.kind == ProviderKind.SHOP_AFFILIATED

    @property
    def is_shop_owner_direct(self) -> bool:
        return self.kind == ProviderKind.SHOP_OWNER_DIRECT

    def has_authority(self, user_id) -> bool:
        return user_id is not None and str(user_id) in self.approval_authority

    def is_provider(self, user_id) -> bool:
        return user_id is not None and str(user_id) == self.provider_user_id

    def is_shop_owner(self, user_id) -> bool:
        return (
            user_id is not None
            and self.shop_owner_id is not None
            and str(user_id) == self.shop_owner_id
        )

    def same_shop(self, other: 'ProviderResolution') -> bool:
        return self.shop_id is not None and self.shop_id == other.shop_id


def resolve(provider) -> ProviderResolution:
    """
    Classify ``provider``:

    - no shop: ``independent``; the provider alone approves.
    - shop owned by the provider's own account: ``shopOwnerDirect``.
    - any other shop: ``shopAffiliated``; provider and shop owner both approve.
    """
    provider_user_id = str(provider.user_id)
    shop = provider.shop

    if shop is None:
        return ProviderResolution(
            kind=ProviderKind.INDEPENDENT,
            provider_id=str(provider.pk),
            provider_user_id=provider_user_id,
            provider_name=provider.display_name,
            shop_id=None,
            shop_owner_id=None,
            approval_authority=frozenset({provider_user_id}),
        )

    shop_owner_id = str(shop.owner_id)
    if shop_owner_id == provider_user_id:
        kind = ProviderKind.SHOP_OWNER_DIRECT
    else:
        kind = ProviderKind.SHOP_AFFILIATED

    return ProviderResolution(
        kind=kind,
        provider_id=str(provider.pk),
        provider_user_id=provider_user_id,
        provider_name=provider.display_name,
        shop_id=str(shop.pk),
        shop_owner_id=shop_owner_id,
        approval_authority=frozenset({provider_user_id, shop_owner_id}),
    )
