"""Database models."""

from companionship.models.booking import BookingRecord

__all__ = [
    "BookingRecord",
]
