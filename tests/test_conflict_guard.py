"""One active booking per pair."""

import pytest

from companionship.core.exceptions import ConflictError, TransientError
from companionship.schemas.booking import BookingStatus
from companionship.services.booking_sync import BookingCache
from companionship.services.conflict_guard import ConflictGuard


async def test_no_conflict(store, requester_id, provider_id):
    guard = ConflictGuard(store)

    assert await guard.can_create(requester_id, provider_id)


@pytest.mark.parametrize("status", [BookingStatus.PENDING, BookingStatus.ACCEPTED])
async def test_active_booking_conflicts_in_either_direction(store, requester_id, provider_id, status):
    store.seed(provider_id, requester_id, status)
    guard = ConflictGuard(store)

    assert not await guard.can_create(requester_id, provider_id)


@pytest.mark.parametrize(
    "status", [BookingStatus.REJECTED, BookingStatus.COMPLETED, BookingStatus.CANCELLED]
)
async def test_terminal_booking_does_not_conflict(store, requester_id, provider_id, status):
    store.seed(requester_id, provider_id, status)
    guard = ConflictGuard(store)

    assert await guard.can_create(requester_id, provider_id)


async def test_messages_distinguish_pending_and_engaged(store, requester_id, provider_id):
    guard = ConflictGuard(store)
    pending = store.seed(requester_id, provider_id)

    with pytest.raises(ConflictError, match="pending") as exc_info:
        await guard.check(requester_id, provider_id)
    assert exc_info.value.booking_id == pending.id

    store.records[pending.id] = pending.model_copy(update={"status": BookingStatus.ACCEPTED})
    with pytest.raises(ConflictError, match="engaged"):
        await guard.check(requester_id, provider_id)


async def test_cache_hit_skips_store(store, requester_id, provider_id):
    booking = store.seed(requester_id, provider_id)
    cache = BookingCache([booking])
    guard = ConflictGuard(store, cache)
    store.calls.clear()

    assert not await guard.can_create(requester_id, provider_id)
    assert store.calls == []


async def test_remote_failure_deferred_to_enforcing_store(store, requester_id, provider_id):
    store.failures["query_bookings"] = TransientError()
    guard = ConflictGuard(store)

    assert await guard.can_create(requester_id, provider_id)


async def test_remote_failure_raises_without_store_enforcement(store, requester_id, provider_id):
    store.enforce_uniqueness = False
    store.failures["query_bookings"] = TransientError()
    guard = ConflictGuard(store)

    with pytest.raises(TransientError):
        await guard.check(requester_id, provider_id)
