"""Base booking store interface.

All store adapters must implement this interface.
Business rules live in the services; adapters only move records and
enforce the constraints the store itself owns.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from companionship.schemas.booking import Booking, BookingInsert, BookingStatus


class BookingStore(ABC):
    """Abstract base class for the authoritative booking store."""

    @property
    def enforces_active_pair_uniqueness(self) -> bool:
        """Whether the store rejects a second active booking for a pair on its own."""
        return False

    @abstractmethod
    async def insert_booking(self, booking: BookingInsert) -> Booking:
        """Insert a new pending booking.

        Returns:
            The stored record, with id and audit timestamps assigned

        Raises:
            ConflictError: If the store's exclusion constraint rejects the pair
        """

    @abstractmethod
    async def get_booking(self, booking_id: str) -> Booking:
        """Fetch one booking.

        Raises:
            NotFoundError: If the id is unknown
        """

    @abstractmethod
    async def update_booking(
        self,
        booking_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> Booking:
        """Update mutable fields by id and refresh ``updated_at``.

        Args:
            booking_id: Booking to update
            fields: New values for mutable fields
            expected: Values the stored record must still hold; the update
                is refused when any differ

        Returns:
            The post-update record

        Raises:
            NotFoundError: If the id is unknown
            InvalidTransitionError: If ``expected`` no longer matches
        """

    @abstractmethod
    async def query_bookings(
        self,
        participant_id: str,
        statuses: Iterable[BookingStatus] | None = None,
        counterpart_id: str | None = None,
    ) -> list[Booking]:
        """Bookings where ``participant_id`` is requester or provider.

        Args:
            participant_id: Party whose bookings are listed
            statuses: Restrict to these statuses (all when None)
            counterpart_id: Restrict to bookings with this other party,
                in either role

        Returns:
            Bookings ordered by ``created_at`` descending
        """

    @abstractmethod
    async def cancel_booking(self, booking_id: str, actor_id: str) -> Booking:
        """Atomically cancel a booking on behalf of ``actor_id``.

        The store validates that the actor is a participant and that the
        booking is still pending or accepted.

        Returns:
            The post-cancel record
        """

    async def close(self) -> None:
        """Release any held resources."""
