"""Wiring of the booking services for one authenticated actor."""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from companionship.core.identity import IdentityProvider
from companionship.services.booking_sync import BookingSync
from companionship.services.completion_watchdog import CompletionWatchdog
from companionship.services.conflict_guard import ConflictGuard
from companionship.services.extension_service import ExtensionNegotiationService
from companionship.services.notification_service import (
    NotificationDispatcher,
    NotificationService,
)
from companionship.services.transition_service import BookingTransitionService
from companionship.stores.base import BookingStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BookingSession:
    """Booking services bound to one signed-in actor.

    Usage:
        async with BookingSession(store, identity, dispatcher) as session:
            await session.sync.create(provider_id, when)
    """

    def __init__(
        self,
        store: BookingStore,
        identity: IdentityProvider,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        min_refresh_interval: float | None = None,
        watchdog_interval: float | None = None,
        max_extension_hours: int | None = None,
    ) -> None:
        self.store = store
        self.identity = identity
        self.notifications = NotificationService(dispatcher, identity)
        self.transitions = BookingTransitionService(store, self.notifications, clock=clock)
        self.extensions = ExtensionNegotiationService(
            store,
            self.notifications,
            clock=clock,
            max_extension_hours=max_extension_hours,
        )
        self.sync = BookingSync(
            store,
            identity,
            self.transitions,
            self.extensions,
            notifier=self.notifications,
            min_refresh_interval=min_refresh_interval,
            monotonic=monotonic,
        )
        self.guard: ConflictGuard = self.sync.guard
        self.watchdog = CompletionWatchdog(self.sync, watchdog_interval, clock)

    async def open(self) -> None:
        await self.sync.refresh(force=True)
        self.watchdog.start()

    async def suspend(self) -> None:
        """The app went to the background."""
        await self.watchdog.suspend()

    async def resume(self) -> None:
        """The app came back to the foreground."""
        await self.sync.refresh()
        self.watchdog.resume()

    async def close(self) -> None:
        await self.watchdog.stop()
        await self.sync.close()

    async def __aenter__(self) -> "BookingSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
