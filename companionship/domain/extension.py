"""Extension negotiation rules.

Nested in the accepted state: none → requested → none (confirmed or rejected).
The request lives on the booking as ``extension_requested_hours`` and
``extension_requested_at``.
"""

from datetime import datetime

from companionship.core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    InvalidTransitionError,
)
from companionship.schemas.booking import Booking, BookingStatus

DEFAULT_MAX_EXTENSION_HOURS = 24


def validate_extension_hours(hours: object, max_hours: int = DEFAULT_MAX_EXTENSION_HOURS) -> int:
    if isinstance(hours, bool) or not isinstance(hours, int):
        raise InvalidArgumentError(f"Extension hours must be a whole number, got {hours!r}")
    if hours <= 0 or hours > max_hours:
        raise InvalidArgumentError(
            f"Extension hours must be between 1 and {max_hours}, got {hours}"
        )
    return hours


def _assert_open_window(booking: Booking, now: datetime, transition: str) -> None:
    if booking.status != BookingStatus.ACCEPTED:
        raise InvalidTransitionError(
            f"Booking must be accepted to negotiate an extension (status: {booking.status.value})",
            booking_id=booking.id,
            transition=transition,
        )
    if booking.is_ended(now):
        raise InvalidTransitionError(
            "Booking has already ended",
            booking_id=booking.id,
            transition=transition,
        )


def assert_can_request_extension(booking: Booking, actor_id: str, now: datetime) -> None:
    transition = "extension: none → requested"
    if actor_id != booking.requester_id:
        raise InvalidTransitionError(
            "Only the requester can request an extension",
            booking_id=booking.id,
            transition=transition,
        )
    _assert_open_window(booking, now, transition)
    if booking.has_outstanding_extension:
        raise ConflictError(
            f"An extension of {booking.extension_requested_hours} hour(s) is already awaiting confirmation",
            booking_id=booking.id,
            transition=transition,
        )


def assert_can_answer_extension(
    booking: Booking, actor_id: str, now: datetime, answer: str
) -> None:
    transition = f"extension: requested → {answer}"
    if actor_id != booking.provider_id:
        raise InvalidTransitionError(
            "Only the provider can answer an extension request",
            booking_id=booking.id,
            transition=transition,
        )
    _assert_open_window(booking, now, transition)
    if not booking.has_outstanding_extension:
        raise InvalidTransitionError(
            "No extension request is outstanding",
            booking_id=booking.id,
            transition=transition,
        )


def extension_request_fields(hours: int, now: datetime) -> dict:
    return {
        "extension_requested_hours": hours,
        "extension_requested_at": now,
    }


def extension_confirm_fields(booking: Booking) -> dict:
    return {
        "duration_hours": booking.duration_hours + booking.extension_requested_hours,
        "extension_requested_hours": None,
        "extension_requested_at": None,
    }


def extension_reject_fields() -> dict:
    return {
        "extension_requested_hours": None,
        "extension_requested_at": None,
    }
