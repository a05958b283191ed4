"""Periodic completion of elapsed bookings held in the session cache."""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from companionship.config import settings
from companionship.core.exceptions import TransientError
from companionship.core.identity import is_remote_identity
from companionship.schemas.booking import BookingStatus
from companionship.services.booking_sync import BookingSync
from companionship.services.transition_service import TransitionResult

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CompletionWatchdog:
    """Completes the actor's accepted bookings once their end time has passed.

    Works from the cache only; the server-side sweep is the durable
    counterpart.
    """

    def __init__(
        self,
        sync: BookingSync,
        interval_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.sync = sync
        self.interval_seconds = interval_seconds or settings.watchdog_interval_seconds
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._checking = False
        self._completing: set[str] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Check now, then every ``interval_seconds``. No-op when already armed."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="completion-watchdog")
        logger.info(f"Completion watchdog started (every {self.interval_seconds}s)")

    def resume(self) -> None:
        self.start()

    async def stop(self) -> None:
        """Cancel the periodic task. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Completion watchdog stopped")

    async def suspend(self) -> None:
        await self.stop()

    async def _run(self) -> None:
        while True:
            try:
                await self.check_now()
            except Exception as e:
                logger.error(f"Completion check error: {e}")
            await asyncio.sleep(self.interval_seconds)

    async def check_now(self) -> list[TransitionResult]:
        """Complete every cached accepted booking whose end time has passed.

        Returns the transitions performed; an overlapping call returns [].
        """
        if self._checking:
            return []
        actor_id = self.sync.actor_id
        if not is_remote_identity(actor_id):
            return []

        self._checking = True
        try:
            now = self._clock()
            due = [
                b
                for b in self.sync.bookings
                if b.status == BookingStatus.ACCEPTED
                and b.is_participant(actor_id)
                and b.is_ended(now)
                and b.id not in self._completing
            ]

            results: list[TransitionResult] = []
            for booking in due:
                self._completing.add(booking.id)
                try:
                    result = await self.sync.transition(booking.id, "complete_elapsed")
                except TransientError as e:
                    logger.warning(f"Could not complete booking {booking.id} (network): {e.detail}")
                    continue
                except Exception as e:
                    logger.error(f"Could not complete booking {booking.id}: {e!r}")
                    continue
                finally:
                    self._completing.discard(booking.id)

                if result is not None:
                    results.append(result)
                    if result.changed:
                        logger.info(f"Booking {booking.id} completed automatically")
            return results
        finally:
            self._checking = False
