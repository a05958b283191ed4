"""SQLAlchemy-backed authoritative booking store."""

import logging
from collections.abc import AsyncGenerator, Callable, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import TypeAdapter
from sqlalchemy import or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from companionship.core.exceptions import (
    BookingError,
    ConflictError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    StoreNotConfiguredError,
    TransientError,
    UnknownError,
    is_network_error,
)
from companionship.domain.booking_state import assert_booking_transition, describe_transition
from companionship.models.booking import BookingRecord
from companionship.schemas.booking import (
    MUTABLE_FIELDS,
    Booking,
    BookingInsert,
    BookingStatus,
    ensure_aware,
    pair_key,
)
from companionship.stores.base import BookingStore

logger = logging.getLogger(__name__)

_datetime_adapter = TypeAdapter(datetime | None)

# Missing relation / insufficient privilege
_NOT_CONFIGURED_SQLSTATES = {"42P01", "42501"}
_NOT_CONFIGURED_MARKERS = ("no such table", "permission denied", "undefinedtable")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _to_utc(value: datetime | None) -> datetime | None:
    value = ensure_aware(value)
    return value.astimezone(UTC) if value is not None else None


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _to_utc(value)
    return value


def translate_db_error(exc: Exception, booking_id: str | None = None) -> BookingError:
    """Map a database exception onto the booking error taxonomy."""
    orig = getattr(exc, "orig", None)
    message = str(orig or exc).lower()
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)

    if sqlstate in _NOT_CONFIGURED_SQLSTATES or any(m in message for m in _NOT_CONFIGURED_MARKERS):
        return StoreNotConfiguredError(booking_id=booking_id)
    if "relation" in message and "does not exist" in message:
        return StoreNotConfiguredError(booking_id=booking_id)

    if isinstance(exc, IntegrityError):
        if "ck_bookings_distinct_parties" in message or "ck_bookings_positive_duration" in message:
            return InvalidArgumentError(str(orig or exc), booking_id=booking_id)
        return ConflictError(booking_id=booking_id)

    if isinstance(exc, (OperationalError, PoolTimeoutError, OSError)) or is_network_error(orig):
        return TransientError(booking_id=booking_id)
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return TransientError(booking_id=booking_id)

    return UnknownError(str(exc), booking_id=booking_id)


class SqlBookingStore(BookingStore):
    """Booking store over an async SQLAlchemy session factory.

    Every operation runs in its own transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @property
    def enforces_active_pair_uniqueness(self) -> bool:
        return True

    @asynccontextmanager
    async def _transaction(self, booking_id: str | None = None) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    yield db
        except BookingError:
            raise
        except (SQLAlchemyError, OSError) as exc:
            error = translate_db_error(exc, booking_id)
            logger.warning(f"Booking store error ({error.kind.value}): {exc}")
            raise error from exc

    async def _get_row(self, db: AsyncSession, booking_id: str, for_update: bool = False) -> BookingRecord:
        row = await db.get(BookingRecord, booking_id, with_for_update=for_update)
        if row is None:
            raise NotFoundError(booking_id)
        return row

    async def insert_booking(self, booking: BookingInsert) -> Booking:
        async with self._transaction() as db:
            now = self._clock()
            row = BookingRecord(
                requester_id=booking.requester_id,
                provider_id=booking.provider_id,
                pair_key=pair_key(booking.requester_id, booking.provider_id),
                status=BookingStatus.PENDING.value,
                booking_date=_to_utc(booking.booking_date),
                duration_hours=booking.duration_hours,
                location=booking.location,
                lat=booking.lat,
                lng=booking.lng,
                notes=booking.notes,
                topic_id=booking.topic_id,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            await db.flush()
            created = Booking.from_record(row)

        logger.info(f"Booking {created.id} created: {created.requester_id} → {created.provider_id}")
        return created

    async def get_booking(self, booking_id: str) -> Booking:
        async with self._transaction(booking_id) as db:
            row = await self._get_row(db, booking_id)
            return Booking.from_record(row)

    async def update_booking(
        self,
        booking_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> Booking:
        immutable = set(fields) - MUTABLE_FIELDS
        if immutable:
            raise InvalidArgumentError(
                f"Immutable fields: {', '.join(sorted(immutable))}", booking_id=booking_id
            )

        async with self._transaction(booking_id) as db:
            row = await self._get_row(db, booking_id, for_update=True)
            current_status = BookingStatus(row.status)
            new_status = BookingStatus(fields.get("status", current_status))
            transition = describe_transition(current_status, new_status)

            for key, value in (expected or {}).items():
                if _normalize(getattr(row, key)) != _normalize(value):
                    raise InvalidTransitionError(
                        f"Booking changed since it was read ({key} is now {_normalize(getattr(row, key))!r})",
                        booking_id=booking_id,
                        transition=transition,
                    )

            values = dict(fields)
            if new_status != current_status:
                assert_booking_transition(current_status, new_status, booking_id=booking_id)
                values["status"] = new_status.value
                if current_status == BookingStatus.ACCEPTED:
                    values["extension_requested_hours"] = None
                    values["extension_requested_at"] = None
            elif "status" in values:
                values["status"] = new_status.value

            if "extension_requested_at" in values:
                values["extension_requested_at"] = _to_utc(
                    _datetime_adapter.validate_python(values["extension_requested_at"])
                )
            if "duration_hours" in values and not values["duration_hours"] > 0:
                raise InvalidArgumentError("duration_hours must be positive", booking_id=booking_id)

            for key, value in values.items():
                setattr(row, key, value)

            if row.extension_requested_hours is not None and row.status != BookingStatus.ACCEPTED.value:
                raise InvalidTransitionError(
                    "Extensions can only be requested on accepted bookings",
                    booking_id=booking_id,
                    transition=transition,
                )

            row.updated_at = self._clock()
            await db.flush()
            return Booking.from_record(row)

    async def query_bookings(
        self,
        participant_id: str,
        statuses: Iterable[BookingStatus] | None = None,
        counterpart_id: str | None = None,
    ) -> list[Booking]:
        stmt = select(BookingRecord).where(
            or_(
                BookingRecord.requester_id == participant_id,
                BookingRecord.provider_id == participant_id,
            )
        )
        if counterpart_id is not None:
            stmt = stmt.where(BookingRecord.pair_key == pair_key(participant_id, counterpart_id))
        if statuses is not None:
            stmt = stmt.where(BookingRecord.status.in_([BookingStatus(s).value for s in statuses]))
        stmt = stmt.order_by(BookingRecord.created_at.desc())

        async with self._transaction() as db:
            result = await db.execute(stmt)
            return [Booking.from_record(row) for row in result.scalars().all()]

    async def cancel_booking(self, booking_id: str, actor_id: str) -> Booking:
        async with self._transaction(booking_id) as db:
            row = await self._get_row(db, booking_id, for_update=True)
            transition = describe_transition(row.status, BookingStatus.CANCELLED)

            if actor_id not in (row.requester_id, row.provider_id):
                raise InvalidTransitionError(
                    "Only the requester or the provider can cancel this booking",
                    booking_id=booking_id,
                    transition=transition,
                )
            assert_booking_transition(row.status, BookingStatus.CANCELLED, booking_id=booking_id)

            row.status = BookingStatus.CANCELLED.value
            row.extension_requested_hours = None
            row.extension_requested_at = None
            row.updated_at = self._clock()
            await db.flush()
            cancelled = Booking.from_record(row)

        logger.info(f"Booking {booking_id} cancelled by {actor_id}")
        return cancelled

    async def list_accepted_bookings(self, started_before: datetime) -> list[Booking]:
        """Accepted bookings whose window has started; used by the completion sweep."""
        stmt = (
            select(BookingRecord)
            .where(
                BookingRecord.status == BookingStatus.ACCEPTED.value,
                BookingRecord.booking_date <= _to_utc(started_before),
            )
            .order_by(BookingRecord.booking_date)
        )
        async with self._transaction() as db:
            result = await db.execute(stmt)
            return [Booking.from_record(row) for row in result.scalars().all()]
