"""Extension negotiation for accepted bookings."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from companionship.config import settings
from companionship.core.exceptions import ConflictError, InvalidTransitionError
from companionship.core.identity import IdentityProvider
from companionship.domain.extension import (
    assert_can_answer_extension,
    assert_can_request_extension,
    extension_confirm_fields,
    extension_reject_fields,
    extension_request_fields,
    validate_extension_hours,
)
from companionship.schemas.booking import Booking, BookingStatus
from companionship.services.notification_service import (
    NotificationDispatcher,
    NotificationService,
)
from companionship.services.transition_service import as_notification_service
from companionship.stores.base import BookingStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ExtensionNegotiationService:
    """Request, confirm and reject duration extensions."""

    def __init__(
        self,
        store: BookingStore,
        notifier: NotificationService | NotificationDispatcher,
        identity: IdentityProvider | None = None,
        clock: Callable[[], datetime] = _utcnow,
        max_extension_hours: int | None = None,
    ) -> None:
        self.store = store
        self.notifications = as_notification_service(notifier, identity)
        self._clock = clock
        self.max_extension_hours = max_extension_hours or settings.max_extension_hours

    async def request_extension(self, booking_id: str, actor_id: str, hours: int) -> Booking:
        """Ask the provider to extend an accepted booking by ``hours``.

        Raises:
            InvalidArgumentError: hours is not a whole number in range
            InvalidTransitionError: Not the requester, not accepted, or already ended
            ConflictError: A request is already awaiting confirmation
        """
        hours = validate_extension_hours(hours, self.max_extension_hours)

        booking = await self.store.get_booking(booking_id)
        now = self._clock()
        assert_can_request_extension(booking, actor_id, now)

        try:
            updated = await self.store.update_booking(
                booking_id,
                extension_request_fields(hours, now),
                expected={
                    "status": BookingStatus.ACCEPTED.value,
                    "extension_requested_hours": None,
                },
            )
        except InvalidTransitionError:
            current = await self.store.get_booking(booking_id)
            if current.has_outstanding_extension:
                raise ConflictError(
                    f"An extension of {current.extension_requested_hours} hour(s) is already awaiting confirmation",
                    booking_id=booking_id,
                    transition="extension: none → requested",
                ) from None
            raise

        logger.info(f"Extension of {hours}h requested on booking {booking_id} by {actor_id}")
        await self.notifications.extension_requested(updated, actor_id, hours)
        return updated

    async def confirm_extension(self, booking_id: str, actor_id: str) -> Booking:
        """Provider accepts the outstanding request; the duration grows by it."""
        booking = await self.store.get_booking(booking_id)
        assert_can_answer_extension(booking, actor_id, self._clock(), "confirmed")
        hours = booking.extension_requested_hours

        updated = await self.store.update_booking(
            booking_id,
            extension_confirm_fields(booking),
            expected=self._answer_expectations(booking),
        )

        logger.info(
            f"Extension of {hours}h confirmed on booking {booking_id}: "
            f"{booking.duration_hours}h → {updated.duration_hours}h"
        )
        await self.notifications.extension_confirmed(updated, actor_id, hours)
        return updated

    async def reject_extension(self, booking_id: str, actor_id: str) -> Booking:
        """Provider declines the outstanding request; the duration is unchanged."""
        booking = await self.store.get_booking(booking_id)
        assert_can_answer_extension(booking, actor_id, self._clock(), "rejected")
        hours = booking.extension_requested_hours

        updated = await self.store.update_booking(
            booking_id,
            extension_reject_fields(),
            expected=self._answer_expectations(booking),
        )

        logger.info(f"Extension of {hours}h rejected on booking {booking_id}")
        await self.notifications.extension_rejected(updated, actor_id, hours)
        return updated

    @staticmethod
    def _answer_expectations(booking: Booking) -> dict:
        return {
            "status": BookingStatus.ACCEPTED.value,
            "extension_requested_hours": booking.extension_requested_hours,
            "duration_hours": booking.duration_hours,
        }
