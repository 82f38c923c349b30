# backend/app/workers/celery_app.py
from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from ..config import settings

celery_app = Celery(
    "rentledger",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.workers.charge_tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
)

celery_app.conf.task_routes = {
    "app.workers.charge_tasks.*": {"queue": "ledger"},
}

celery_app.conf.beat_schedule = {
    "generate-monthly-rent-charges": {
        "task": "app.workers.charge_tasks.generate_monthly_charges",
        "schedule": crontab(minute=5, hour=0, day_of_month=str(settings.charge_generation_day)),
    },
}
