"""Booking state machine.

States: pending → accepted → completed, with rejected/cancelled exits.
Terminal: rejected, completed, cancelled.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from companionship.core.exceptions import InvalidTransitionError
from companionship.schemas.booking import Booking, BookingStatus

BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.ACCEPTED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.ACCEPTED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.REJECTED: set(),
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


class BookingEvent(str, Enum):
    """Events that drive a booking between states."""

    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"
    ELAPSE = "elapse"


class ActorRule(str, Enum):
    """Who may trigger an event."""

    PROVIDER = "provider"
    PARTICIPANT = "participant"
    PARTICIPANT_OR_SYSTEM = "participant_or_system"


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset[BookingStatus]
    target: BookingStatus
    actor: ActorRule


TRANSITION_RULES: dict[BookingEvent, TransitionRule] = {
    BookingEvent.ACCEPT: TransitionRule(
        frozenset({BookingStatus.PENDING}), BookingStatus.ACCEPTED, ActorRule.PROVIDER
    ),
    BookingEvent.REJECT: TransitionRule(
        frozenset({BookingStatus.PENDING}), BookingStatus.REJECTED, ActorRule.PROVIDER
    ),
    BookingEvent.CANCEL: TransitionRule(
        frozenset({BookingStatus.PENDING, BookingStatus.ACCEPTED}),
        BookingStatus.CANCELLED,
        ActorRule.PARTICIPANT,
    ),
    BookingEvent.COMPLETE: TransitionRule(
        frozenset({BookingStatus.ACCEPTED}), BookingStatus.COMPLETED, ActorRule.PARTICIPANT
    ),
    BookingEvent.ELAPSE: TransitionRule(
        frozenset({BookingStatus.ACCEPTED}),
        BookingStatus.COMPLETED,
        ActorRule.PARTICIPANT_OR_SYSTEM,
    ),
}


def describe_transition(current: BookingStatus | str, target: BookingStatus | str) -> str:
    current = BookingStatus(current)
    target = BookingStatus(target)
    return f"{current.value} → {target.value}"


def assert_booking_transition(
    current: BookingStatus | str,
    target: BookingStatus | str,
    booking_id: str | None = None,
) -> None:
    current = BookingStatus(current)
    target = BookingStatus(target)
    allowed = BOOKING_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidTransitionError(
            f"Invalid booking transition: {describe_transition(current, target)}",
            booking_id=booking_id,
            transition=describe_transition(current, target),
        )


def resolve_transition(
    booking: Booking,
    event: BookingEvent | str,
    actor_id: str | None,
    now: datetime,
) -> BookingStatus | None:
    """Validate an event against a booking.

    Returns the target status, or None when the booking is already there
    (idempotent no-op). Raises InvalidTransitionError otherwise.
    """
    event = BookingEvent(event)
    rule = TRANSITION_RULES[event]
    transition = describe_transition(booking.status, rule.target)

    if actor_id is None:
        if rule.actor != ActorRule.PARTICIPANT_OR_SYSTEM:
            raise InvalidTransitionError(
                f"'{event.value}' requires a participant",
                booking_id=booking.id,
                transition=transition,
            )
    elif not booking.is_participant(actor_id):
        raise InvalidTransitionError(
            "Only the requester or the provider can change this booking",
            booking_id=booking.id,
            transition=transition,
        )

    if rule.actor == ActorRule.PROVIDER and actor_id != booking.provider_id:
        raise InvalidTransitionError(
            f"Only the provider can {event.value} this booking",
            booking_id=booking.id,
            transition=transition,
        )

    if booking.status == rule.target:
        return None

    if booking.status not in rule.sources:
        raise InvalidTransitionError(
            f"Cannot {event.value} a {booking.status.value} booking",
            booking_id=booking.id,
            transition=transition,
        )
    assert_booking_transition(booking.status, rule.target, booking_id=booking.id)

    if event == BookingEvent.ELAPSE and not booking.is_ended(now):
        raise InvalidTransitionError(
            f"Booking ends at {booking.end_time.isoformat()}",
            booking_id=booking.id,
            transition=transition,
        )

    return rule.target


def transition_fields(target: BookingStatus) -> dict:
    """Fields written when entering ``target``.

    Leaving accepted always drops an outstanding extension request.
    """
    return {
        "status": target.value,
        "extension_requested_hours": None,
        "extension_requested_at": None,
    }
