"""At most one active booking per pair of users."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from companionship.core.exceptions import ConflictError, TransientError, UnknownError
from companionship.schemas.booking import ACTIVE_STATUSES, Booking, BookingStatus
from companionship.stores.base import BookingStore

if TYPE_CHECKING:
    from companionship.services.booking_sync import BookingCache

logger = logging.getLogger(__name__)


class ConflictGuard:
    """Rejects a new booking when the pair already has a pending or accepted one.

    The local cache is consulted first; the store is queried only when the
    cache shows no conflict.
    """

    def __init__(self, store: BookingStore, cache: BookingCache | None = None) -> None:
        self.store = store
        self.cache = cache

    async def find_conflict(self, requester_id: str, provider_id: str) -> Booking | None:
        if self.cache is not None:
            local = self.cache.find_active_between(requester_id, provider_id)
            if local is not None:
                return local

        try:
            active = await self.store.query_bookings(
                requester_id,
                statuses=sorted(ACTIVE_STATUSES),
                counterpart_id=provider_id,
            )
        except (TransientError, UnknownError) as e:
            if not self.store.enforces_active_pair_uniqueness:
                raise
            # The store rejects a duplicate insert on its own
            logger.warning(f"Remote conflict check failed, deferring to the store: {e!r}")
            return None

        return active[0] if active else None

    async def check(self, requester_id: str, provider_id: str) -> None:
        """Raise ConflictError when the pair already has an active booking."""
        conflict = await self.find_conflict(requester_id, provider_id)
        if conflict is None:
            return

        if conflict.status == BookingStatus.PENDING:
            detail = "A companionship request is already pending between these users"
        else:
            detail = "These users are already engaged in a companionship"
        raise ConflictError(detail, booking_id=conflict.id)

    async def can_create(self, requester_id: str, provider_id: str) -> bool:
        try:
            await self.check(requester_id, provider_id)
        except ConflictError:
            return False
        return True
