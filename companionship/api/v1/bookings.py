"""Booking store endpoints.

These routes expose the authoritative store to remote clients. Lifecycle
rules beyond the store's own constraints are enforced by the client-side
services.
"""

from typing import Annotated

from fastapi import APIRouter, Query, status

from companionship.api.deps import ActorDep, StoreDep
from companionship.schemas.booking import (
    Booking,
    BookingInsert,
    BookingListResponse,
    BookingStatus,
    BookingUpdate,
)

router = APIRouter()


@router.post("/", response_model=Booking, status_code=status.HTTP_201_CREATED)
async def create_booking(request: BookingInsert, store: StoreDep) -> Booking:
    """Insert a pending booking.

    A second pending or accepted booking for the same pair is rejected
    with 409.
    """
    return await store.insert_booking(request)


@router.get("/", response_model=BookingListResponse)
async def list_bookings(
    store: StoreDep,
    participant_id: str,
    counterpart_id: str | None = None,
    status_filter: Annotated[list[BookingStatus] | None, Query(alias="status")] = None,
) -> BookingListResponse:
    """List bookings where the participant is requester or provider."""
    bookings = await store.query_bookings(
        participant_id,
        statuses=status_filter,
        counterpart_id=counterpart_id,
    )
    return BookingListResponse(bookings=bookings, total=len(bookings))


@router.get("/{booking_id}", response_model=Booking)
async def get_booking(booking_id: str, store: StoreDep) -> Booking:
    return await store.get_booking(booking_id)


@router.patch("/{booking_id}", response_model=Booking)
async def update_booking(booking_id: str, request: BookingUpdate, store: StoreDep) -> Booking:
    """Conditionally update mutable fields.

    Responds 409 when ``expected`` no longer matches the stored record.
    """
    return await store.update_booking(booking_id, request.fields, expected=request.expected)


@router.post("/{booking_id}/cancel", response_model=Booking)
async def cancel_booking(booking_id: str, actor_id: ActorDep, store: StoreDep) -> Booking:
    """Cancel a pending or accepted booking on behalf of a participant."""
    return await store.cancel_booking(booking_id, actor_id)
