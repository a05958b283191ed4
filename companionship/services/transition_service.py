"""Booking state transitions.

Every transition follows the same steps: read the current record, validate
the event, write conditioned on the status just read, then notify.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from companionship.core.exceptions import InvalidTransitionError
from companionship.core.identity import IdentityProvider
from companionship.domain.booking_state import (
    BookingEvent,
    resolve_transition,
    transition_fields,
)
from companionship.schemas.booking import Booking
from companionship.services.notification_service import (
    NotificationDispatcher,
    NotificationService,
)
from companionship.stores.base import BookingStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a transition attempt.

    ``changed`` is False when the booking was already in the target state.
    """

    booking: Booking
    changed: bool


def as_notification_service(
    notifier: NotificationService | NotificationDispatcher,
    identity: IdentityProvider | None = None,
) -> NotificationService:
    if isinstance(notifier, NotificationService):
        return notifier
    return NotificationService(notifier, identity)


class BookingTransitionService:
    """Moves bookings through the lifecycle state machine."""

    def __init__(
        self,
        store: BookingStore,
        notifier: NotificationService | NotificationDispatcher,
        identity: IdentityProvider | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.notifications = as_notification_service(notifier, identity)
        self._clock = clock

    async def apply(
        self,
        booking_id: str,
        actor_id: str | None,
        event: BookingEvent | str,
    ) -> TransitionResult:
        """Apply a lifecycle event to a booking.

        Args:
            booking_id: Booking to transition
            actor_id: Acting participant, or None for the system
            event: Lifecycle event

        Returns:
            TransitionResult with the stored booking

        Raises:
            NotFoundError: Booking does not exist
            InvalidTransitionError: Event not allowed from the current state,
                for this actor, or the record changed concurrently
            TransientError: The store could not be reached
        """
        event = BookingEvent(event)
        booking = await self.store.get_booking(booking_id)

        target = resolve_transition(booking, event, actor_id, self._clock())
        if target is None:
            logger.debug(f"Booking {booking_id} already {booking.status.value}; '{event.value}' is a no-op")
            return TransitionResult(booking, changed=False)

        try:
            if event == BookingEvent.CANCEL:
                updated = await self.store.cancel_booking(booking_id, actor_id)
            else:
                updated = await self.store.update_booking(
                    booking_id,
                    transition_fields(target),
                    expected={"status": booking.status.value},
                )
        except InvalidTransitionError:
            # Another writer may have reached the same state first
            current = await self.store.get_booking(booking_id)
            if current.status == target:
                logger.info(f"Booking {booking_id} reached {target.value} concurrently")
                return TransitionResult(current, changed=False)
            raise

        logger.info(
            f"Booking {booking_id}: {booking.status.value} → {updated.status.value} "
            f"({event.value} by {actor_id or 'system'})"
        )
        await self.notifications.booking_transitioned(updated, target, actor_id)
        return TransitionResult(updated, changed=True)

    async def accept(self, booking_id: str, actor_id: str) -> TransitionResult:
        return await self.apply(booking_id, actor_id, BookingEvent.ACCEPT)

    async def reject(self, booking_id: str, actor_id: str) -> TransitionResult:
        return await self.apply(booking_id, actor_id, BookingEvent.REJECT)

    async def cancel(self, booking_id: str, actor_id: str) -> TransitionResult:
        return await self.apply(booking_id, actor_id, BookingEvent.CANCEL)

    async def complete(self, booking_id: str, actor_id: str) -> TransitionResult:
        return await self.apply(booking_id, actor_id, BookingEvent.COMPLETE)

    async def complete_elapsed(
        self, booking_id: str, actor_id: str | None = None
    ) -> TransitionResult:
        """Complete a booking whose time window is over."""
        return await self.apply(booking_id, actor_id, BookingEvent.ELAPSE)
