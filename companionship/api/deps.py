"""API dependencies for the acting user and the booking store."""

from typing import Annotated

from fastapi import Depends, Header

from companionship.core.exceptions import UnauthenticatedError
from companionship.database import get_session_factory
from companionship.stores.base import BookingStore
from companionship.stores.http import ACTOR_HEADER
from companionship.stores.sql import SqlBookingStore


async def get_booking_store() -> BookingStore:
    """Authoritative store backed by the application database."""
    return SqlBookingStore(get_session_factory())


async def get_actor_id(
    actor_id: Annotated[str | None, Header(alias=ACTOR_HEADER)] = None,
) -> str:
    """Acting user, as asserted by the trusted caller."""
    if not actor_id:
        raise UnauthenticatedError(f"Missing {ACTOR_HEADER} header")
    return actor_id


# Type aliases for dependency injection
StoreDep = Annotated[BookingStore, Depends(get_booking_store)]
ActorDep = Annotated[str, Depends(get_actor_id)]
