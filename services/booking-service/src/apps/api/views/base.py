# services/booking-service/src/apps/api/views/base.py
from apps.core.state_machine import Actor


class ActorMixin:
    """Exposes the authenticated account as a booking ``Actor``."""

    @property
    def actor(self) -> Actor:
        return Actor.from_user(self.request.user)
