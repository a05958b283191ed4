"""Booking error taxonomy."""

import asyncio
from enum import Enum

import httpx
from fastapi import status


class ErrorKind(str, Enum):
    """Kinds of failure reported by booking operations."""

    UNAUTHENTICATED = "unauthenticated"
    INVALID_ARGUMENT = "invalid_argument"
    CONFLICT = "conflict"
    INVALID_TRANSITION = "invalid_transition"
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class BookingError(Exception):
    """Base booking exception.

    Carries the booking id and the attempted transition (when known) so the
    caller can present a precise message.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    reason: str | None = None
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail: str = "An unexpected error occurred"

    def __init__(
        self,
        detail: str | None = None,
        booking_id: str | None = None,
        transition: str | None = None,
    ) -> None:
        self.detail = detail or self.default_detail
        self.booking_id = booking_id
        self.transition = transition
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {
            "detail": self.detail,
            "kind": self.kind.value,
            "booking_id": self.booking_id,
            "transition": self.transition,
            "reason": self.reason,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(detail={self.detail!r}, "
            f"booking_id={self.booking_id!r}, transition={self.transition!r})"
        )


class UnauthenticatedError(BookingError):
    """No current actor."""

    kind = ErrorKind.UNAUTHENTICATED
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated"


class InvalidArgumentError(BookingError):
    """Argument rejected by local validation."""

    kind = ErrorKind.INVALID_ARGUMENT
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Validation failed"


class ConflictError(BookingError):
    """Duplicate active booking or duplicate outstanding extension."""

    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT
    default_detail = "An active booking already exists between these users"


class InvalidTransitionError(BookingError):
    """Transition not permitted from the current state or by the current actor."""

    kind = ErrorKind.INVALID_TRANSITION
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This operation is not allowed for the current booking status"


class TransientError(BookingError):
    """Network or connectivity failure; safe for the caller to retry."""

    kind = ErrorKind.TRANSIENT
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Connection error. Check your internet connection."


class NotFoundError(BookingError):
    """Booking id absent from the store."""

    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Booking not found"

    def __init__(self, booking_id: str | None = None, transition: str | None = None) -> None:
        detail = f"Booking with ID '{booking_id}' not found" if booking_id else None
        super().__init__(detail, booking_id=booking_id, transition=transition)


class UnknownError(BookingError):
    """Unclassified failure."""


class StoreNotConfiguredError(UnknownError):
    """Bookings table missing or not readable with the current permissions."""

    reason = "store_not_configured"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Booking store is not configured"


# Subtypes that share a kind, keyed by their wire reason
_ERRORS_BY_REASON: dict[str, type[BookingError]] = {
    StoreNotConfiguredError.reason: StoreNotConfiguredError,
}

_ERRORS_BY_KIND: dict[ErrorKind, type[BookingError]] = {
    ErrorKind.UNAUTHENTICATED: UnauthenticatedError,
    ErrorKind.INVALID_ARGUMENT: InvalidArgumentError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.INVALID_TRANSITION: InvalidTransitionError,
    ErrorKind.TRANSIENT: TransientError,
    ErrorKind.UNKNOWN: UnknownError,
}


def error_from_kind(
    kind: str | ErrorKind,
    detail: str | None = None,
    booking_id: str | None = None,
    transition: str | None = None,
    reason: str | None = None,
) -> BookingError:
    """Rebuild a typed error from its wire representation."""
    try:
        kind = ErrorKind(kind)
    except ValueError:
        kind = ErrorKind.UNKNOWN

    if kind == ErrorKind.NOT_FOUND:
        return NotFoundError(booking_id, transition=transition)

    error_class = _ERRORS_BY_REASON.get(reason or "")
    if error_class is None or error_class.kind != kind:
        error_class = _ERRORS_BY_KIND[kind]
    return error_class(detail, booking_id=booking_id, transition=transition)


_NETWORK_MARKERS = (
    "network request failed",
    "failed to fetch",
    "networkerror",
    "err_network",
    "fetch failed",
    "connection refused",
    "connection reset",
)


def is_network_error(exc: BaseException | None) -> bool:
    """Return True when the exception comes from the transport rather than the data."""
    if exc is None:
        return False
    if isinstance(exc, TransientError):
        return True
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    message = str(exc).lower()
    return any(marker in message for marker in _NETWORK_MARKERS)
