"""Pydantic schemas for bookings and API validation."""

from companionship.schemas.booking import (
    ACTIVE_STATUSES,
    HISTORY_STATUSES,
    TERMINAL_STATUSES,
    Booking,
    BookingInsert,
    BookingListResponse,
    BookingStatus,
    BookingUpdate,
)

__all__ = [
    "ACTIVE_STATUSES",
    "HISTORY_STATUSES",
    "TERMINAL_STATUSES",
    "Booking",
    "BookingInsert",
    "BookingListResponse",
    "BookingStatus",
    "BookingUpdate",
]
