"""HTTP client for the remote booking store API."""

import logging
from collections.abc import Iterable
from typing import Any

import httpx
from fastapi import status
from pydantic import ValidationError

from companionship.config import settings
from companionship.core.exceptions import (
    BookingError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    TransientError,
    UnauthenticatedError,
    UnknownError,
    error_from_kind,
)
from companionship.schemas.booking import (
    Booking,
    BookingInsert,
    BookingListResponse,
    BookingStatus,
    BookingUpdate,
)
from companionship.stores.base import BookingStore

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Actor-Id"

_TRANSIENT_STATUSES = {
    status.HTTP_408_REQUEST_TIMEOUT,
    status.HTTP_429_TOO_MANY_REQUESTS,
    status.HTTP_502_BAD_GATEWAY,
    status.HTTP_503_SERVICE_UNAVAILABLE,
    status.HTTP_504_GATEWAY_TIMEOUT,
}


def error_from_response(response: httpx.Response, booking_id: str | None = None) -> BookingError:
    """Rebuild a typed error from an error response."""
    try:
        payload = response.json()
    except ValueError:
        payload = {}

    if isinstance(payload, dict) and payload.get("kind"):
        return error_from_kind(
            payload["kind"],
            detail=payload.get("detail"),
            booking_id=payload.get("booking_id") or booking_id,
            transition=payload.get("transition"),
            reason=payload.get("reason"),
        )

    detail = payload.get("detail") if isinstance(payload, dict) else None
    detail = str(detail) if detail is not None else response.text or None
    code = response.status_code

    if code == status.HTTP_401_UNAUTHORIZED:
        return UnauthenticatedError(detail, booking_id=booking_id)
    if code == status.HTTP_404_NOT_FOUND:
        return NotFoundError(booking_id)
    if code == status.HTTP_409_CONFLICT:
        return ConflictError(detail, booking_id=booking_id)
    if code in (status.HTTP_400_BAD_REQUEST, status.HTTP_422_UNPROCESSABLE_ENTITY):
        return InvalidArgumentError(detail, booking_id=booking_id)
    if code in _TRANSIENT_STATUSES:
        return TransientError(booking_id=booking_id)
    return UnknownError(detail or f"Unexpected status {code}", booking_id=booking_id)


class HttpBookingStore(BookingStore):
    """Booking store reached over the bookings HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = base_url or settings.store_base_url
        self.timeout = timeout or settings.store_timeout_seconds
        self._http_client = client
        self._owns_client = client is None

    @property
    def enforces_active_pair_uniqueness(self) -> bool:
        return True

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-load HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(
        self,
        method: str,
        path: str,
        booking_id: str | None = None,
        **kwargs: Any,
    ) -> Any:
        try:
            response = await self.http_client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.warning(f"Network error on {method} {path}: {exc!r}")
            raise TransientError(booking_id=booking_id) from exc

        if response.status_code >= 400:
            raise error_from_response(response, booking_id)
        try:
            return response.json()
        except ValueError as exc:
            raise UnknownError(
                f"Malformed response from {method} {path}", booking_id=booking_id
            ) from exc

    async def _request_booking(
        self,
        method: str,
        path: str,
        booking_id: str | None = None,
        **kwargs: Any,
    ) -> Booking:
        data = await self._request(method, path, booking_id=booking_id, **kwargs)
        try:
            return Booking.model_validate(data)
        except ValidationError as exc:
            raise UnknownError(
                f"Malformed booking from {method} {path}", booking_id=booking_id
            ) from exc

    async def insert_booking(self, booking: BookingInsert) -> Booking:
        return await self._request_booking(
            "POST", "bookings/", json=booking.model_dump(mode="json")
        )

    async def get_booking(self, booking_id: str) -> Booking:
        return await self._request_booking("GET", f"bookings/{booking_id}", booking_id=booking_id)

    async def update_booking(
        self,
        booking_id: str,
        fields: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> Booking:
        try:
            body = BookingUpdate(fields=fields, expected=expected)
        except ValidationError as exc:
            raise InvalidArgumentError(str(exc), booking_id=booking_id) from exc

        return await self._request_booking(
            "PATCH",
            f"bookings/{booking_id}",
            booking_id=booking_id,
            json=body.model_dump(mode="json"),
        )

    async def query_bookings(
        self,
        participant_id: str,
        statuses: Iterable[BookingStatus] | None = None,
        counterpart_id: str | None = None,
    ) -> list[Booking]:
        params: list[tuple[str, str]] = [("participant_id", participant_id)]
        if counterpart_id is not None:
            params.append(("counterpart_id", counterpart_id))
        for s in statuses or ():
            params.append(("status", BookingStatus(s).value))

        data = await self._request("GET", "bookings/", params=params)
        try:
            return BookingListResponse.model_validate(data).bookings
        except ValidationError as exc:
            raise UnknownError("Malformed booking list from GET bookings/") from exc

    async def cancel_booking(self, booking_id: str, actor_id: str) -> Booking:
        return await self._request_booking(
            "POST",
            f"bookings/{booking_id}/cancel",
            booking_id=booking_id,
            headers={ACTOR_HEADER: actor_id},
        )
