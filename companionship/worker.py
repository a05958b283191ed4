"""Celery worker configuration.

Runs the server-side completion sweep on a beat schedule.
"""

from datetime import timedelta

from celery import Celery

from companionship.config import settings

# Create Celery app
celery_app = Celery(
    "companionship_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["companionship.tasks"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=120,
    task_soft_time_limit=90,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=3600,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Complete accepted bookings whose time window is over
        "complete-elapsed-bookings": {
            "task": "companionship.tasks.complete_elapsed_bookings",
            "schedule": timedelta(seconds=settings.completion_sweep_interval_seconds),
        },
    },
)


if __name__ == "__main__":
    celery_app.start()
