"""Celery background tasks.

The completion sweep is the durable counterpart of the in-app watchdog:
it completes elapsed bookings even when no participant has the app open.
"""

import asyncio
import logging
from datetime import UTC, datetime

from celery import shared_task

from companionship.config import settings
from companionship.core.exceptions import BookingError, TransientError
from companionship.database import create_engine_for, create_session_factory
from companionship.services.notification_service import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    PushNotificationDispatcher,
)
from companionship.services.transition_service import BookingTransitionService
from companionship.stores.sql import SqlBookingStore

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


# ==================== COMPLETION TASKS ====================


@shared_task(bind=True, max_retries=3)
def complete_elapsed_bookings(self):
    """Complete accepted bookings whose end time has passed.

    Runs every ``completion_sweep_interval_seconds`` on the beat schedule.
    """
    try:
        completed = run_async(sweep_elapsed_bookings())
        return {"status": "success", "completed": completed}
    except TransientError as exc:
        raise self.retry(exc=exc, countdown=60)


async def sweep_elapsed_bookings(
    store: SqlBookingStore | None = None,
    dispatcher: NotificationDispatcher | None = None,
    now: datetime | None = None,
) -> int:
    """Complete every elapsed accepted booking as the system actor.

    Returns:
        int: Number of bookings completed by this sweep
    """
    now = now or datetime.now(UTC)
    engine = None
    if store is None:
        # One engine per run; each task invocation gets its own event loop
        engine = create_engine_for(settings.database_url)
        store = SqlBookingStore(create_session_factory(engine))
    push = None
    if dispatcher is None and settings.push_notification_url:
        dispatcher = push = PushNotificationDispatcher()
    elif dispatcher is None:
        dispatcher = LoggingNotificationDispatcher()

    transitions = BookingTransitionService(store, dispatcher, clock=lambda: now)

    try:
        candidates = await store.list_accepted_bookings(started_before=now)
        completed = 0
        for booking in candidates:
            if not booking.is_ended(now):
                continue
            try:
                result = await transitions.complete_elapsed(booking.id)
            except TransientError:
                raise
            except BookingError as e:
                logger.warning(f"Could not complete booking {booking.id}: {e!r}")
                continue
            if result.changed:
                completed += 1

        if completed:
            logger.info(f"Completion sweep: {completed} booking(s) completed")
        return completed
    finally:
        if push is not None:
            await push.close()
        if engine is not None:
            await engine.dispose()
