"""Booking database model."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from companionship.database import Base

ACTIVE_STATUS_CLAUSE = "status IN ('pending', 'accepted')"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BookingRecord(Base):
    """Persisted booking row."""

    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("requester_id <> provider_id", name="ck_bookings_distinct_parties"),
        CheckConstraint("duration_hours > 0", name="ck_bookings_positive_duration"),
        # At most one pending/accepted booking per unordered pair of users
        Index(
            "uq_bookings_active_pair",
            "pair_key",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_CLAUSE),
            sqlite_where=text(ACTIVE_STATUS_CLAUSE),
        ),
        Index("ix_bookings_requester_status", "requester_id", "status"),
        Index("ix_bookings_provider_status", "provider_id", "status"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    requester_id: Mapped[str] = mapped_column(String(36), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(36), nullable=False)
    pair_key: Mapped[str] = mapped_column(String(80), nullable=False)  # "<min id>:<max id>"

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )  # pending, accepted, rejected, completed, cancelled

    # Schedule
    booking_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_hours: Mapped[float] = mapped_column(Float, nullable=False, default=1)

    # Descriptive metadata
    location: Mapped[str | None] = mapped_column(Text)
    lat: Mapped[float | None] = mapped_column(Float)
    lng: Mapped[float | None] = mapped_column(Float)
    notes: Mapped[str | None] = mapped_column(Text)
    topic_id: Mapped[str | None] = mapped_column(String(36))

    # Outstanding extension request
    extension_requested_hours: Mapped[int | None] = mapped_column(Integer)
    extension_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
