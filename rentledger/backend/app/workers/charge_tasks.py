# backend/app/workers/charge_tasks.py
from __future__ import annotations

import logging
import random
from datetime import date
from typing import Optional

from sqlalchemy import select

from ..config import settings
from ..db import SessionLocal
from ..middleware.request_id import new_request_id, request_id_scope
from ..models import Organization
from ..services.charge_generator import generate_charges, generate_charges_for_current_month
from .celery_app import celery_app

log = logging.getLogger("rentledger.worker")


def _backoff_seconds(retries: int) -> int:
    """base * 2^retries, with +/- 20% jitter."""
    base = int(settings.charge_task_retry_base_seconds or 30)
    delay = base * (2 ** max(0, int(retries)))

    jitter = int(delay * 0.2)
    if jitter > 0:
        delay = max(1, delay + random.randint(-jitter, jitter))
    return delay


def _org_ids() -> list[int]:
    db = SessionLocal()
    try:
        return [int(x) for x in db.scalars(select(Organization.id).order_by(Organization.id.asc())).all()]
    finally:
        db.close()


def run_for_org(org_id: int, period: Optional[str] = None) -> int:
    """Generate charges for one organization in its own session. Returns the number created."""
    db = SessionLocal()
    try:
        with request_id_scope(new_request_id(f"charges-{int(org_id)}")):
            if period:
                rows = generate_charges(db, org_id=org_id, period=period)
            else:
                rows = generate_charges_for_current_month(db, org_id=org_id, today=date.today())
        return len(rows)
    finally:
        db.close()


@celery_app.task(
    bind=True,
    max_retries=settings.charge_task_max_retries,
    default_retry_delay=settings.charge_task_retry_base_seconds,
    name="app.workers.charge_tasks.generate_monthly_charges",
)
def generate_monthly_charges(self, period: Optional[str] = None) -> dict:
    """
    Monthly beat task: create missing rent charges for every organization.

    Safe to retry: generation skips (tenancy, period) pairs that already exist.
    One organization failing does not stop the others; the task retries once
    the sweep is done if any organization failed.
    """
    created: dict[int, int] = {}
    failed: list[int] = []

    for org_id in _org_ids():
        try:
            created[org_id] = run_for_org(org_id, period)
        except Exception:
            log.exception("charge generation failed", extra={"org_id": org_id, "period": period})
            failed.append(org_id)

    if failed:
        retries = int(getattr(self.request, "retries", 0) or 0)
        if retries < int(self.max_retries or 0):
            raise self.retry(countdown=_backoff_seconds(retries))
        log.error("charge generation gave up after retries", extra={"period": period})

    return {"ok": not failed, "created": created, "failed": failed}
