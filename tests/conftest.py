"""Shared fixtures: in-memory store, recording dispatcher, controllable clock."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

import pytest

from companionship.core.exceptions import (
    BookingError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from companionship.core.identity import Identity, StaticIdentityProvider
from companionship.domain.booking_state import assert_booking_transition
from companionship.schemas.booking import Booking, BookingInsert, BookingStatus
from companionship.services.extension_service import ExtensionNegotiationService
from companionship.services.notification_service import NotificationService
from companionship.services.transition_service import BookingTransitionService
from companionship.stores.base import BookingStore

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def new_user_id() -> str:
    return str(uuid4())


class FakeClock:
    """Wall clock and monotonic clock that only move when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now
        self.elapsed = 0.0

    def __call__(self) -> datetime:
        return self.now

    def monotonic(self) -> float:
        return self.elapsed

    def advance(self, **kwargs: float) -> None:
        delta = timedelta(**kwargs)
        self.now += delta
        self.elapsed += delta.total_seconds()


@dataclass
class SentNotification:
    recipient_id: str
    kind: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


class RecordingDispatcher:
    """Dispatcher that remembers what it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []
        self.fail = False

    async def notify(self, recipient_id, kind, title, body, data=None) -> bool:
        if self.fail:
            raise RuntimeError("push gateway down")
        self.sent.append(SentNotification(recipient_id, kind, title, body, data or {}))
        return True

    def kinds(self) -> list[str]:
        return [n.kind for n in self.sent]

    def to(self, recipient_id: str) -> list[SentNotification]:
        return [n for n in self.sent if n.recipient_id == recipient_id]


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class FakeBookingStore(BookingStore):
    """In-memory authoritative store.

    Set ``failures[method_name]`` to an error to make that method raise it.
    """

    def __init__(self, clock: FakeClock, enforce_uniqueness: bool = True) -> None:
        self.records: dict[str, Booking] = {}
        self.calls: list[str] = []
        self.failures: dict[str, BookingError] = {}
        self.enforce_uniqueness = enforce_uniqueness
        self._clock = clock

    @property
    def enforces_active_pair_uniqueness(self) -> bool:
        return self.enforce_uniqueness

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        error = self.failures.get(name)
        if error is not None:
            raise error

    def seed(
        self,
        requester_id: str,
        provider_id: str,
        status: BookingStatus = BookingStatus.PENDING,
        booking_date: datetime | None = None,
        duration_hours: float = 1,
        **extra: Any,
    ) -> Booking:
        now = self._clock()
        booking = Booking(
            id=str(uuid4()),
            requester_id=requester_id,
            provider_id=provider_id,
            status=status,
            booking_date=booking_date or now,
            duration_hours=duration_hours,
            created_at=extra.pop("created_at", now),
            updated_at=now,
            **extra,
        )
        self.records[booking.id] = booking
        return booking

    def _get(self, booking_id: str) -> Booking:
        booking = self.records.get(booking_id)
        if booking is None:
            raise NotFoundError(booking_id)
        return booking

    def _write(self, current: Booking, fields: dict[str, Any]) -> Booking:
        data = current.model_dump()
        data.update(fields)
        data["updated_at"] = self._clock()
        updated = Booking.model_validate(data)
        self.records[updated.id] = updated
        return updated

    async def insert_booking(self, booking: BookingInsert) -> Booking:
        self._enter("insert_booking")
        if self.enforce_uniqueness and any(
            b.is_active and b.involves(booking.requester_id, booking.provider_id)
            for b in self.records.values()
        ):
            raise ConflictError()
        return self.seed(**booking.model_dump())

    async def get_booking(self, booking_id: str) -> Booking:
        self._enter("get_booking")
        return self._get(booking_id)

    async def update_booking(self, booking_id, fields, expected=None) -> Booking:
        self._enter("update_booking")
        current = self._get(booking_id)
        for key, value in (expected or {}).items():
            if _plain(getattr(current, key)) != _plain(value):
                raise InvalidTransitionError(f"{key} changed", booking_id=booking_id)

        if "status" in fields and BookingStatus(fields["status"]) != current.status:
            assert_booking_transition(current.status, fields["status"], booking_id=booking_id)
        return self._write(current, fields)

    async def query_bookings(self, participant_id, statuses=None, counterpart_id=None) -> list[Booking]:
        self._enter("query_bookings")
        wanted = {BookingStatus(s) for s in statuses} if statuses is not None else None
        found = [
            b
            for b in self.records.values()
            if b.is_participant(participant_id)
            and (counterpart_id is None or b.involves(participant_id, counterpart_id))
            and (wanted is None or b.status in wanted)
        ]
        return sorted(found, key=lambda b: b.created_at, reverse=True)

    async def cancel_booking(self, booking_id: str, actor_id: str) -> Booking:
        self._enter("cancel_booking")
        current = self._get(booking_id)
        if not current.is_participant(actor_id):
            raise InvalidTransitionError("not a participant", booking_id=booking_id)
        assert_booking_transition(current.status, BookingStatus.CANCELLED, booking_id=booking_id)
        return self._write(
            current,
            {
                "status": BookingStatus.CANCELLED,
                "extension_requested_hours": None,
                "extension_requested_at": None,
            },
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return FakeBookingStore(clock)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def requester_id():
    return new_user_id()


@pytest.fixture
def provider_id():
    return new_user_id()


@pytest.fixture
def notifications(dispatcher):
    return NotificationService(dispatcher)


@pytest.fixture
def transitions(store, notifications, clock):
    return BookingTransitionService(store, notifications, clock=clock)


@pytest.fixture
def extensions(store, notifications, clock):
    return ExtensionNegotiationService(store, notifications, clock=clock, max_extension_hours=24)


@pytest.fixture
def accepted_booking(store, clock, requester_id, provider_id):
    """Accepted one-hour booking that started now."""
    return store.seed(requester_id, provider_id, BookingStatus.ACCEPTED, booking_date=clock())


def identity_for(actor_id: str | None, name: str | None = None) -> StaticIdentityProvider:
    return StaticIdentityProvider(Identity(actor_id, name) if actor_id else None)
