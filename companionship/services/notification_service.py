"""Notification service for booking events.

Handles delivery channels:
- Push notifications (HTTP push endpoint)
- Log-only delivery (development, offline sessions)

Notifications are best-effort: delivery failures are logged and never
propagate to the booking operation that triggered them.
"""

import logging
from typing import Any, Protocol

import httpx

from companionship.config import settings
from companionship.core.identity import IdentityProvider
from companionship.schemas.booking import Booking, BookingStatus

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Delivers one notification to one recipient."""

    async def notify(
        self,
        recipient_id: str,
        kind: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> bool: ...


class PushNotificationDispatcher:
    """Dispatcher posting notifications to a push gateway."""

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.url = url or settings.push_notification_url
        self.token = token or settings.push_notification_token
        self.timeout = timeout or settings.push_timeout_seconds
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-load HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def notify(
        self,
        recipient_id: str,
        kind: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """Send a push notification.

        Args:
            recipient_id: User to notify
            kind: Notification type
            title: Notification title
            body: Notification body
            data: Additional data payload

        Returns:
            bool: True if the gateway accepted it
        """
        if not self.url:
            return False

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = await self.http_client.post(
                self.url,
                headers=headers,
                json={
                    "user_id": recipient_id,
                    "type": kind,
                    "title": title,
                    "body": body,
                    "data": data or {},
                },
            )
            return response.status_code in (200, 201, 202)
        except httpx.HTTPError as e:
            logger.warning(f"Push notification to {recipient_id} failed: {e!r}")
            return False


class LoggingNotificationDispatcher:
    """Dispatcher that only logs notifications."""

    async def notify(
        self,
        recipient_id: str,
        kind: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        logger.info(f"Notification [{kind}] to {recipient_id}: {title} - {body}")
        return True


class NotificationService:
    """Composes booking notifications and hands them to a dispatcher."""

    # Notification types
    BOOKING_REQUEST_RECEIVED = "booking_request_received"
    BOOKING_REQUEST_ACCEPTED = "booking_request_accepted"
    BOOKING_REQUEST_REJECTED = "booking_request_rejected"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_EXTENSION = "booking_extension"
    BOOKING_EXTENSION_CONFIRMED = "booking_extension_confirmed"
    BOOKING_EXTENSION_REJECTED = "booking_extension_rejected"

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        identity: IdentityProvider | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.identity = identity

    def _name(self, actor_id: str | None) -> str:
        name = self.identity.display_name(actor_id) if self.identity else None
        return name or "A user"

    async def send(
        self,
        recipient_id: str,
        kind: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """Dispatch one notification; failures are logged, never raised."""
        try:
            return bool(await self.dispatcher.notify(recipient_id, kind, title, body, data or {}))
        except Exception as e:
            logger.warning(f"Notification '{kind}' to {recipient_id} failed: {e!r}")
            return False

    # ==================== BOOKING LIFECYCLE ====================

    async def booking_requested(self, booking: Booking, actor_id: str) -> None:
        await self.send(
            booking.provider_id,
            self.BOOKING_REQUEST_RECEIVED,
            "New companionship request",
            f"{self._name(actor_id)} sent you a companionship request",
            {"booking_id": booking.id, "actor_id": actor_id},
        )

    async def booking_transitioned(
        self,
        booking: Booking,
        target: BookingStatus,
        actor_id: str | None,
    ) -> None:
        """Notify the counterparts of a status change that was just written."""
        data = {"booking_id": booking.id, "actor_id": actor_id}

        if target == BookingStatus.ACCEPTED:
            await self.send(
                booking.requester_id,
                self.BOOKING_REQUEST_ACCEPTED,
                "Companionship request accepted",
                f"{self._name(actor_id)} accepted your companionship request",
                data,
            )
        elif target == BookingStatus.REJECTED:
            await self.send(
                booking.requester_id,
                self.BOOKING_REQUEST_REJECTED,
                "Companionship request rejected",
                f"{self._name(actor_id)} rejected your companionship request",
                data,
            )
        elif target == BookingStatus.COMPLETED:
            for recipient_id in (booking.requester_id, booking.provider_id):
                await self.send(
                    recipient_id,
                    self.BOOKING_COMPLETED,
                    "Companionship completed",
                    "Your companionship session is over. Don't forget to rate your partner!",
                    data,
                )
        elif target == BookingStatus.CANCELLED:
            if actor_id is None:
                return
            await self.send(
                booking.counterpart_of(actor_id),
                self.BOOKING_CANCELLED,
                "Companionship cancelled",
                f"{self._name(actor_id)} cancelled the companionship",
                data,
            )

    # ==================== EXTENSIONS ====================

    async def extension_requested(self, booking: Booking, actor_id: str, hours: int) -> None:
        await self.send(
            booking.provider_id,
            self.BOOKING_EXTENSION,
            "Extension request",
            f"{self._name(actor_id)} would like to extend the companionship by {hours} hour(s).",
            {"booking_id": booking.id, "actor_id": actor_id, "extension_hours": hours},
        )

    async def extension_confirmed(self, booking: Booking, actor_id: str, hours: int) -> None:
        await self.send(
            booking.requester_id,
            self.BOOKING_EXTENSION_CONFIRMED,
            "Extension confirmed",
            f"The {hours} hour(s) extension has been confirmed.",
            {"booking_id": booking.id, "actor_id": actor_id, "extension_hours": hours},
        )

    async def extension_rejected(self, booking: Booking, actor_id: str, hours: int) -> None:
        await self.send(
            booking.requester_id,
            self.BOOKING_EXTENSION_REJECTED,
            "Extension rejected",
            "The extension request has been rejected.",
            {"booking_id": booking.id, "actor_id": actor_id, "extension_hours": hours},
        )
