"""Booking-related Pydantic schemas."""

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.ACCEPTED}
)
TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.REJECTED, BookingStatus.COMPLETED, BookingStatus.CANCELLED}
)
# pending/accepted/completed are kept for history; rejected/cancelled are dropped
HISTORY_STATUSES: tuple[BookingStatus, ...] = (
    BookingStatus.PENDING,
    BookingStatus.ACCEPTED,
    BookingStatus.COMPLETED,
)

# Fields that may change after creation
MUTABLE_FIELDS: frozenset[str] = frozenset(
    {"status", "duration_hours", "extension_requested_hours", "extension_requested_at"}
)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Interpret naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def pair_key(user_a: str, user_b: str) -> str:
    """Order-independent key for a pair of users."""
    first, second = sorted((user_a, user_b))
    return f"{first}:{second}"


class Booking(BaseModel):
    """A negotiated companionship session between a requester and a provider."""

    model_config = ConfigDict(from_attributes=True, frozen=True, use_enum_values=False)

    id: str
    requester_id: str
    provider_id: str
    status: BookingStatus
    booking_date: datetime
    duration_hours: float = Field(gt=0)

    location: str | None = None
    lat: float | None = None
    lng: float | None = None
    notes: str | None = None
    topic_id: str | None = None

    extension_requested_hours: int | None = Field(default=None, gt=0)
    extension_requested_at: datetime | None = None

    created_at: datetime
    updated_at: datetime

    @field_validator("id", "requester_id", "provider_id", "topic_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("booking_date", "extension_requested_at", "created_at", "updated_at")
    @classmethod
    def make_aware(cls, v: datetime | None) -> datetime | None:
        return ensure_aware(v)

    @model_validator(mode="after")
    def check_parties(self) -> "Booking":
        if self.requester_id == self.provider_id:
            raise ValueError("requester_id and provider_id must differ")
        return self

    # ---- Translation to/from the persisted record shape ----

    @classmethod
    def from_record(cls, record: Mapping[str, Any] | Any) -> "Booking":
        """Build a Booking from a persisted record (mapping or ORM row)."""
        return cls.model_validate(record)

    def to_record(self) -> dict[str, Any]:
        """Persisted record shape: snake_case keys, ISO-8601 timestamps."""
        return self.model_dump(mode="json")

    # ---- Derived values ----

    @property
    def end_time(self) -> datetime:
        return self.booking_date + timedelta(hours=self.duration_hours)

    def is_ended(self, now: datetime) -> bool:
        return ensure_aware(now) >= self.end_time

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_outstanding_extension(self) -> bool:
        return self.extension_requested_hours is not None

    def is_participant(self, actor_id: str | None) -> bool:
        return actor_id is not None and actor_id in (self.requester_id, self.provider_id)

    def involves(self, user_a: str, user_b: str) -> bool:
        """True when the booking is between the unordered pair {user_a, user_b}."""
        return pair_key(self.requester_id, self.provider_id) == pair_key(user_a, user_b)

    def counterpart_of(self, actor_id: str) -> str:
        if actor_id == self.requester_id:
            return self.provider_id
        if actor_id == self.provider_id:
            return self.requester_id
        raise ValueError(f"{actor_id} is not a participant of booking {self.id}")


class BookingInsert(BaseModel):
    """Schema for inserting a new booking into the store."""

    requester_id: str
    provider_id: str
    booking_date: datetime
    duration_hours: float = Field(default=1, gt=0)
    location: str | None = Field(None, max_length=500)
    lat: float | None = Field(None, ge=-90, le=90)
    lng: float | None = Field(None, ge=-180, le=180)
    notes: str | None = Field(None, max_length=1000)
    topic_id: str | None = None

    @field_validator("booking_date")
    @classmethod
    def make_aware(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @model_validator(mode="after")
    def check_parties(self) -> "BookingInsert":
        if self.requester_id == self.provider_id:
            raise ValueError("requester_id and provider_id must differ")
        return self


class BookingUpdate(BaseModel):
    """Schema for a conditional field update.

    ``expected`` holds field values the stored record must still have for the
    update to apply.
    """

    fields: dict[str, Any]
    expected: dict[str, Any] | None = None

    @field_validator("fields")
    @classmethod
    def validate_fields(cls, v: dict[str, Any]) -> dict[str, Any]:
        if not v:
            raise ValueError("fields must not be empty")
        immutable = set(v) - MUTABLE_FIELDS
        if immutable:
            raise ValueError(f"Immutable fields: {', '.join(sorted(immutable))}")
        return v


class BookingListResponse(BaseModel):
    """Schema for a booking query result."""

    bookings: list[Booking]
    total: int
