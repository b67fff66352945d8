from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from ratebridge.core.config import settings


def make_celery() -> Celery:
    app = Celery(
        "ratebridge",
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=["ratebridge.worker.tasks"],
    )
    hour, minute = settings.schedule_hour_minute()
    app.conf.update(
        task_always_eager=settings.environment == "dev",
        task_eager_propagates=True,
        task_track_started=True,
        task_acks_late=True,
        timezone="UTC",
        enable_utc=True,
        beat_schedule={
            "sync-daily-exchange-rates": {
                "task": "sync_daily_rates",
                "schedule": crontab(hour=hour, minute=minute),
            },
        },
    )
    return app


celery_app = make_celery()
