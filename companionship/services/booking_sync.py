"""Client-side booking synchronization.

Keeps a per-session cache of the current actor's bookings and routes every
mutation through the authoritative store first. The cache only ever holds
records the store has confirmed.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from companionship.config import settings
from companionship.core.exceptions import (
    BookingError,
    InvalidArgumentError,
    StoreNotConfiguredError,
    TransientError,
    UnauthenticatedError,
)
from companionship.core.identity import IdentityProvider, is_remote_identity
from companionship.schemas.booking import (
    ACTIVE_STATUSES,
    HISTORY_STATUSES,
    Booking,
    BookingInsert,
)
from companionship.services.conflict_guard import ConflictGuard
from companionship.services.extension_service import ExtensionNegotiationService
from companionship.services.notification_service import NotificationService
from companionship.services.transition_service import (
    BookingTransitionService,
    TransitionResult,
)
from companionship.stores.base import BookingStore

logger = logging.getLogger(__name__)

TRANSITION_OPS = frozenset({"accept", "reject", "cancel", "complete", "complete_elapsed"})
EXTENSION_OPS = frozenset({"request_extension", "confirm_extension", "reject_extension"})


class BookingCache:
    """Bookings known to this session, keyed by id."""

    def __init__(self, bookings: Iterable[Booking] = ()) -> None:
        self._items: dict[str, Booking] = {}
        self.replace_all(bookings)

    def apply(self, booking: Booking) -> None:
        """Insert or replace a single record."""
        self._items[booking.id] = booking

    def replace_all(self, bookings: Iterable[Booking], keep: Iterable[Booking] = ()) -> None:
        """Swap in a fresh snapshot.

        Records in ``keep`` survive unless the snapshot holds a strictly
        newer version of them.
        """
        items = {b.id: b for b in bookings}
        for booking in keep:
            fetched = items.get(booking.id)
            if fetched is None or fetched.updated_at <= booking.updated_at:
                items[booking.id] = booking
        self._items = items

    def get(self, booking_id: str) -> Booking | None:
        return self._items.get(booking_id)

    def clear(self) -> None:
        self._items.clear()

    def find_active_between(self, user_a: str, user_b: str) -> Booking | None:
        for booking in self:
            if booking.status in ACTIVE_STATUSES and booking.involves(user_a, user_b):
                return booking
        return None

    def __iter__(self) -> Iterator[Booking]:
        # Newest first
        return iter(sorted(self._items.values(), key=lambda b: b.created_at, reverse=True))

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, booking_id: object) -> bool:
        return booking_id in self._items


class BookingSync:
    """Per-session synchronization between the local cache and the store."""

    def __init__(
        self,
        store: BookingStore,
        identity: IdentityProvider,
        transitions: BookingTransitionService,
        extensions: ExtensionNegotiationService,
        guard: ConflictGuard | None = None,
        notifier: NotificationService | None = None,
        min_refresh_interval: float | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.identity = identity
        self.transitions = transitions
        self.extensions = extensions
        self.cache = BookingCache()
        self.guard = guard or ConflictGuard(store, self.cache)
        self.notifications = notifier or transitions.notifications
        self.min_refresh_interval = (
            settings.refresh_min_interval_seconds
            if min_refresh_interval is None
            else min_refresh_interval
        )
        self._monotonic = monotonic
        self._last_refresh: float | None = None
        self._refreshing = False
        self._applied_while_refreshing: set[str] = set()
        self._background: set[asyncio.Task] = set()

    # ==================== STATE ====================

    @property
    def actor_id(self) -> str | None:
        actor = self.identity.current_actor()
        return actor.id if actor else None

    @property
    def bookings(self) -> list[Booking]:
        return list(self.cache)

    @property
    def is_loading(self) -> bool:
        return self._refreshing

    def _apply(self, booking: Booking) -> None:
        self.cache.apply(booking)
        if self._refreshing:
            self._applied_while_refreshing.add(booking.id)

    def _require_actor(self) -> str:
        actor_id = self.actor_id
        if actor_id is None:
            raise UnauthenticatedError()
        return actor_id

    # ==================== REFRESH ====================

    async def refresh(self, force: bool = False) -> list[Booking]:
        """Replace the cache with the actor's bookings from the store.

        Calls closer together than ``min_refresh_interval`` return the cache
        as is unless ``force`` is set. A call while another refresh is running
        is dropped.
        """
        actor_id = self.actor_id
        if actor_id is None:
            self.cache.clear()
            return []
        if not is_remote_identity(actor_id):
            return []

        if self._refreshing:
            logger.debug("Booking refresh already in progress, skipping")
            return self.bookings

        now = self._monotonic()
        if (
            not force
            and self._last_refresh is not None
            and now - self._last_refresh < self.min_refresh_interval
        ):
            return self.bookings

        self._refreshing = True
        self._applied_while_refreshing.clear()
        self._last_refresh = now
        try:
            fetched = await self.store.query_bookings(actor_id, statuses=HISTORY_STATUSES)
        except StoreNotConfiguredError as e:
            logger.warning(f"Booking store not configured, clearing cache: {e.detail}")
            self.cache.clear()
            return []
        except TransientError as e:
            logger.warning(f"Booking refresh failed (network), keeping cache: {e.detail}")
            return []
        finally:
            self._refreshing = False

        # Records confirmed while the query ran are newer than its snapshot
        confirmed = [
            self.cache.get(booking_id)
            for booking_id in self._applied_while_refreshing
            if booking_id in self.cache
        ]
        self._applied_while_refreshing.clear()
        self.cache.replace_all(fetched, keep=confirmed)
        logger.debug(f"Refreshed {len(fetched)} bookings for {actor_id}")
        return self.bookings

    def _schedule_refresh(self) -> None:
        task = asyncio.create_task(self._reconcile())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _reconcile(self) -> None:
        try:
            await self.refresh(force=True)
        except BookingError as e:
            logger.error(f"Background booking refresh failed: {e!r}")

    # ==================== CREATE ====================

    async def create(
        self,
        provider_id: str,
        booking_date: datetime,
        duration_hours: float = 1,
        location: str | None = None,
        lat: float | None = None,
        lng: float | None = None,
        notes: str | None = None,
        topic_id: str | None = None,
    ) -> Booking | None:
        """Create a pending booking with ``provider_id``.

        Returns:
            The stored booking, or None for a placeholder identity

        Raises:
            UnauthenticatedError: No current actor
            InvalidArgumentError: Invalid booking data
            ConflictError: The pair already has an active booking
            TransientError: The store could not be reached
        """
        actor_id = self._require_actor()
        if not is_remote_identity(actor_id):
            return None

        if not is_remote_identity(provider_id):
            raise InvalidArgumentError(f"Unknown provider '{provider_id}'")
        try:
            payload = BookingInsert(
                requester_id=actor_id,
                provider_id=provider_id,
                booking_date=booking_date,
                duration_hours=duration_hours,
                location=location,
                lat=lat,
                lng=lng,
                notes=notes,
                topic_id=topic_id,
            )
        except ValidationError as exc:
            raise InvalidArgumentError(str(exc)) from exc

        await self.guard.check(actor_id, provider_id)
        booking = await self.store.insert_booking(payload)

        self._apply(booking)
        self._schedule_refresh()
        await self.notifications.booking_requested(booking, actor_id)
        return booking

    # ==================== MUTATIONS ====================

    async def transition(self, booking_id: str, op: str) -> TransitionResult | None:
        """Run a lifecycle operation and cache the confirmed record."""
        if op not in TRANSITION_OPS:
            raise InvalidArgumentError(f"Unknown booking transition '{op}'", booking_id=booking_id)
        actor_id = self._require_actor()
        if not is_remote_identity(actor_id):
            return None

        result = await getattr(self.transitions, op)(booking_id, actor_id)
        self._apply(result.booking)
        return result

    async def mutate(self, booking_id: str, op: str, **kwargs: Any) -> Booking | None:
        """Run ``op`` against the store, then cache the confirmed record.

        On failure the cache is left untouched.
        """
        if op in TRANSITION_OPS:
            result = await self.transition(booking_id, op)
            return result.booking if result else None

        if op not in EXTENSION_OPS:
            raise InvalidArgumentError(f"Unknown booking operation '{op}'", booking_id=booking_id)
        actor_id = self._require_actor()
        if not is_remote_identity(actor_id):
            return None

        booking = await getattr(self.extensions, op)(booking_id, actor_id, **kwargs)
        self._apply(booking)
        return booking

    async def accept(self, booking_id: str) -> Booking | None:
        return await self.mutate(booking_id, "accept")

    async def reject(self, booking_id: str) -> Booking | None:
        return await self.mutate(booking_id, "reject")

    async def cancel(self, booking_id: str) -> Booking | None:
        return await self.mutate(booking_id, "cancel")

    async def complete(self, booking_id: str) -> Booking | None:
        return await self.mutate(booking_id, "complete")

    async def complete_elapsed(self, booking_id: str) -> Booking | None:
        return await self.mutate(booking_id, "complete_elapsed")

    async def request_extension(self, booking_id: str, hours: int) -> Booking | None:
        return await self.mutate(booking_id, "request_extension", hours=hours)

    async def confirm_extension(self, booking_id: str) -> Booking | None:
        return await self.mutate(booking_id, "confirm_extension")

    async def reject_extension(self, booking_id: str) -> Booking | None:
        return await self.mutate(booking_id, "reject_extension")

    # ==================== QUERIES ====================

    async def get_active_booking_with(self, user_id: str) -> Booking | None:
        """Pending or accepted booking between the actor and ``user_id``."""
        actor_id = self._require_actor()
        if not is_remote_identity(actor_id):
            return None

        local = self.cache.find_active_between(actor_id, user_id)
        if local is not None:
            return local

        active = await self.store.query_bookings(
            actor_id, statuses=sorted(ACTIVE_STATUSES), counterpart_id=user_id
        )
        if not active:
            return None
        self._apply(active[0])
        return active[0]

    async def get_user_bookings(self, user_id: str | None = None) -> list[Booking]:
        """All bookings of a user in any status, latest booking date first."""
        user_id = user_id or self._require_actor()
        if not is_remote_identity(user_id):
            return []

        bookings = await self.store.query_bookings(user_id)
        return sorted(bookings, key=lambda b: b.booking_date, reverse=True)

    # ==================== LIFECYCLE ====================

    async def close(self) -> None:
        """Cancel pending background refreshes."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
