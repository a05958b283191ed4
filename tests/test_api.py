"""Booking HTTP API and the HTTP store client."""

from datetime import timedelta

import httpx
import pytest

from companionship.api.deps import get_booking_store
from companionship.core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    StoreNotConfiguredError,
    TransientError,
    UnknownError,
)
from companionship.database import create_session_factory, init_db
from companionship.main import app
from companionship.schemas.booking import BookingInsert, BookingStatus
from companionship.services.booking_sync import BookingSync
from companionship.services.extension_service import ExtensionNegotiationService
from companionship.services.transition_service import BookingTransitionService
from companionship.stores.http import HttpBookingStore, error_from_response
from companionship.stores.sql import SqlBookingStore
from tests.conftest import START, FakeBookingStore, identity_for, new_user_id
from tests.test_sql_store import sqlite_engine

BASE_URL = "http://test/api/v1"


@pytest.fixture
async def client(clock):
    engine = sqlite_engine()
    await init_db(engine)
    sql_store = SqlBookingStore(create_session_factory(engine), clock=clock)
    app.dependency_overrides[get_booking_store] = lambda: sql_store

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL) as c:
        yield c

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
def http_store(client):
    return HttpBookingStore(client=client)


def insert(requester_id, provider_id, **overrides):
    data = {"booking_date": START + timedelta(hours=1), "duration_hours": 2}
    data.update(overrides)
    return BookingInsert(requester_id=requester_id, provider_id=provider_id, **data)


async def test_health(client):
    response = await client.get("http://test/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_create_and_get(http_store, requester_id, provider_id):
    created = await http_store.insert_booking(insert(requester_id, provider_id, topic_id="t1"))

    fetched = await http_store.get_booking(created.id)

    assert fetched == created
    assert fetched.status == BookingStatus.PENDING
    assert fetched.topic_id == "t1"


async def test_conflict_is_typed(http_store, requester_id, provider_id):
    await http_store.insert_booking(insert(requester_id, provider_id))

    with pytest.raises(ConflictError):
        await http_store.insert_booking(insert(provider_id, requester_id))


async def test_not_found_is_typed(http_store):
    with pytest.raises(NotFoundError) as exc_info:
        await http_store.get_booking("missing")
    assert exc_info.value.booking_id == "missing"


async def test_conditional_update(http_store, requester_id, provider_id):
    booking = await http_store.insert_booking(insert(requester_id, provider_id))

    accepted = await http_store.update_booking(
        booking.id, {"status": "accepted"}, expected={"status": "pending"}
    )
    assert accepted.status == BookingStatus.ACCEPTED

    with pytest.raises(InvalidTransitionError) as exc_info:
        await http_store.update_booking(
            booking.id, {"status": "cancelled"}, expected={"status": "pending"}
        )
    assert exc_info.value.booking_id == booking.id


async def test_immutable_update_rejected_locally(http_store, client, monkeypatch):
    async def fail(*args, **kwargs):
        raise AssertionError("request must not be sent")

    monkeypatch.setattr(client, "request", fail)

    with pytest.raises(InvalidArgumentError):
        await http_store.update_booking("b1", {"requester_id": new_user_id()})


async def test_query(http_store, requester_id, provider_id):
    first = await http_store.insert_booking(insert(requester_id, provider_id))
    await http_store.update_booking(first.id, {"status": "rejected"})
    second = await http_store.insert_booking(insert(requester_id, provider_id))

    pending = await http_store.query_bookings(requester_id, statuses=[BookingStatus.PENDING])
    both = await http_store.query_bookings(
        provider_id,
        statuses=[BookingStatus.PENDING, BookingStatus.REJECTED],
        counterpart_id=requester_id,
    )

    assert [b.id for b in pending] == [second.id]
    assert {b.id for b in both} == {first.id, second.id}


async def test_cancel(http_store, requester_id, provider_id):
    booking = await http_store.insert_booking(insert(requester_id, provider_id))

    with pytest.raises(InvalidTransitionError):
        await http_store.cancel_booking(booking.id, new_user_id())

    cancelled = await http_store.cancel_booking(booking.id, requester_id)
    assert cancelled.status == BookingStatus.CANCELLED


async def test_cancel_requires_actor_header(client, http_store, requester_id, provider_id):
    booking = await http_store.insert_booking(insert(requester_id, provider_id))

    response = await client.post(f"bookings/{booking.id}/cancel")

    assert response.status_code == 401
    assert response.json()["kind"] == "unauthenticated"


async def test_request_validation_error_shape(client, requester_id, provider_id):
    response = await client.post(
        "bookings/",
        json={
            "requester_id": requester_id,
            "provider_id": provider_id,
            "booking_date": START.isoformat(),
            "duration_hours": 0,
        },
    )

    assert response.status_code == 422
    assert response.json()["kind"] == "invalid_argument"


async def test_transitions_over_http(http_store, dispatcher, clock, requester_id, provider_id):
    transitions = BookingTransitionService(http_store, dispatcher, clock=clock)
    booking = await http_store.insert_booking(insert(requester_id, provider_id))

    result = await transitions.accept(booking.id, provider_id)

    assert result.booking.status == BookingStatus.ACCEPTED
    assert dispatcher.kinds() == ["booking_request_accepted"]


async def test_network_failure_is_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL) as c:
        store = HttpBookingStore(client=c)
        with pytest.raises(TransientError):
            await store.get_booking("b1")


def test_error_from_plain_status():
    response = httpx.Response(503, text="upstream down")

    assert isinstance(error_from_response(response, "b1"), TransientError)


async def test_unconfigured_store_survives_http(clock, dispatcher, requester_id, provider_id):
    server_store = FakeBookingStore(clock)
    server_store.seed(requester_id, provider_id)
    app.dependency_overrides[get_booking_store] = lambda: server_store

    try:
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL) as c:
            http_store = HttpBookingStore(client=c)
            sync = BookingSync(
                http_store,
                identity_for(requester_id),
                BookingTransitionService(http_store, dispatcher, clock=clock),
                ExtensionNegotiationService(http_store, dispatcher, clock=clock),
                monotonic=clock.monotonic,
            )
            assert len(await sync.refresh(force=True)) == 1

            server_store.failures["query_bookings"] = StoreNotConfiguredError()
            with pytest.raises(StoreNotConfiguredError):
                await http_store.query_bookings(requester_id)

            assert await sync.refresh(force=True) == []
            assert sync.bookings == []
    finally:
        app.dependency_overrides.clear()


@pytest.mark.parametrize(
    "body",
    [b"<html>oops</html>", b'{"id": "b1"}'],
)
async def test_malformed_success_body_is_unknown(body):
    def handler(request):
        return httpx.Response(200, content=body, headers={"content-type": "application/json"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL) as c:
        store = HttpBookingStore(client=c)
        with pytest.raises(UnknownError) as exc_info:
            await store.get_booking("b1")
        assert exc_info.value.booking_id == "b1"


async def test_malformed_booking_list_is_unknown():
    def handler(request):
        return httpx.Response(200, json={"bookings": [{"id": "b1"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL) as c:
        with pytest.raises(UnknownError):
            await HttpBookingStore(client=c).query_bookings(new_user_id())
