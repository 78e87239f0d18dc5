"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "shiftcount",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.sync"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.operating_timezone,
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.sync.*": {"queue": "sync"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Expected quantities are refreshed for every active store while a
    # shift is being counted. Slots that are not distributed are skipped.
    beat_schedule={
        f"sync-stock-shift-{shift}-30m": {
            "task": "workers.sync.sync_all_stores",
            "schedule": crontab(minute="*/30"),
            "kwargs": {"shift": shift},
            "options": {"queue": "sync"},
        }
        for shift in (1, 2, 3)
    },
)
