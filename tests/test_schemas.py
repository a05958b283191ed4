"""Booking records, errors and identity."""

from datetime import UTC, datetime, timedelta

import httpx
import pytest
from pydantic import ValidationError

from companionship.core.exceptions import (
    ConflictError,
    ErrorKind,
    NotFoundError,
    StoreNotConfiguredError,
    TransientError,
    UnknownError,
    error_from_kind,
    is_network_error,
)
from companionship.core.identity import Identity, StaticIdentityProvider, is_remote_identity
from companionship.schemas.booking import Booking, BookingStatus, BookingUpdate, pair_key
from tests.conftest import new_user_id


def record(**overrides):
    data = {
        "id": "7d1f0d52-4a57-4f0b-9d4e-3f1c5b8a9e21",
        "requester_id": "a",
        "provider_id": "b",
        "status": "accepted",
        "booking_date": "2026-03-01T12:00:00",
        "duration_hours": 1.5,
        "extension_requested_hours": None,
        "extension_requested_at": None,
        "created_at": "2026-03-01T10:00:00+00:00",
        "updated_at": "2026-03-01T10:00:00+00:00",
    }
    data.update(overrides)
    return data


def test_record_translation():
    booking = Booking.from_record(record())

    assert booking.status == BookingStatus.ACCEPTED
    assert booking.booking_date == datetime(2026, 3, 1, 12, tzinfo=UTC)
    assert booking.end_time == datetime(2026, 3, 1, 13, 30, tzinfo=UTC)
    assert booking.is_active and not booking.is_terminal

    dumped = booking.to_record()
    assert dumped["status"] == "accepted"
    assert dumped["booking_date"] == "2026-03-01T12:00:00Z"
    assert Booking.from_record(dumped) == booking


def test_booking_requires_distinct_parties():
    with pytest.raises(ValidationError):
        Booking.from_record(record(provider_id="a"))


def test_pair_key_is_order_independent():
    assert pair_key("a", "b") == pair_key("b", "a") == "a:b"
    assert Booking.from_record(record()).counterpart_of("b") == "a"


def test_update_rejects_empty_and_immutable():
    with pytest.raises(ValidationError):
        BookingUpdate(fields={})
    with pytest.raises(ValidationError):
        BookingUpdate(fields={"booking_date": datetime.now(UTC)})


def test_error_from_kind():
    conflict = error_from_kind("conflict", "dup", booking_id="b1")
    assert isinstance(conflict, ConflictError)
    assert conflict.to_dict() == {
        "detail": "dup",
        "kind": "conflict",
        "booking_id": "b1",
        "transition": None,
        "reason": None,
    }

    assert isinstance(error_from_kind(ErrorKind.NOT_FOUND, booking_id="b2"), NotFoundError)
    assert isinstance(error_from_kind("something-new"), UnknownError)

    unconfigured = error_from_kind("unknown", reason=StoreNotConfiguredError.reason)
    assert isinstance(unconfigured, StoreNotConfiguredError)
    assert unconfigured.to_dict()["reason"] == "store_not_configured"
    assert type(error_from_kind("conflict", reason="store_not_configured")) is ConflictError


@pytest.mark.parametrize(
    "exc,expected",
    [
        (TransientError(), True),
        (httpx.ConnectError("refused"), True),
        (ConnectionResetError(), True),
        (RuntimeError("TypeError: Network request failed"), True),
        (ValueError("bad value"), False),
        (None, False),
    ],
)
def test_is_network_error(exc, expected):
    assert is_network_error(exc) is expected


def test_remote_identity():
    assert is_remote_identity(new_user_id())
    assert not is_remote_identity("local-user")
    assert not is_remote_identity(None)
    assert Identity(new_user_id()).is_remote


def test_logout_clears_actor():
    identity = StaticIdentityProvider(Identity(new_user_id(), "Rita"))
    actor = identity.current_actor()
    assert identity.display_name(actor.id) == "Rita"

    identity.logout()

    assert identity.current_actor() is None


def test_is_ended_boundary():
    booking = Booking.from_record(record())

    assert not booking.is_ended(booking.end_time - timedelta(seconds=1))
    assert booking.is_ended(booking.end_time)
