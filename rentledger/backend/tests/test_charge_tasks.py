# backend/tests/test_charge_tasks.py
from __future__ import annotations

import pytest
from celery.exceptions import Retry
from sqlalchemy import select

from app.config import settings
from app.models import Organization, RentCharge
from app.workers import charge_tasks
from app.workers.charge_tasks import _backoff_seconds, generate_monthly_charges


@pytest.fixture()
def two_landlords(db, org_id, make_tenancy):
    other = Organization(slug="landlord-b", name="Landlord B")
    db.add(other)
    db.commit()
    make_tenancy(org_id, unit_code="A1")
    make_tenancy(int(other.id), unit_code="B1")
    return org_id, int(other.id)


@pytest.fixture()
def broken_landlord(monkeypatch, two_landlords):
    good, bad = two_landlords
    real = charge_tasks.run_for_org

    def run_for_org(org_id, period=None):
        if org_id == bad:
            raise RuntimeError("database went away")
        return real(org_id, period)

    monkeypatch.setattr(charge_tasks, "run_for_org", run_for_org)
    return good, bad


def test_sweep_creates_charges_for_every_landlord(db, two_landlords):
    a, b = two_landlords

    out = generate_monthly_charges.run(period="2025-01")

    assert out == {"ok": True, "created": {a: 1, b: 1}, "failed": []}
    assert len(db.scalars(select(RentCharge)).all()) == 2


def test_one_failing_landlord_does_not_stop_the_others(db, monkeypatch, broken_landlord):
    good, bad = broken_landlord
    monkeypatch.setattr(generate_monthly_charges, "max_retries", 0)

    out = generate_monthly_charges.run(period="2025-01")

    assert out["ok"] is False
    assert out["failed"] == [bad]
    assert out["created"] == {good: 1}
    [c] = db.scalars(select(RentCharge)).all()
    assert (c.org_id, c.period) == (good, "2025-01")


def test_failed_sweep_asks_for_a_retry_after_finishing(db, broken_landlord):
    good, _ = broken_landlord

    with pytest.raises(Retry):
        generate_monthly_charges.run(period="2025-01")

    # the healthy landlord was committed before the retry was requested
    assert db.scalar(select(RentCharge.org_id)) == good


@pytest.mark.parametrize("retries,low,high", [(0, 24, 36), (1, 48, 72), (2, 96, 144), (-3, 24, 36)])
def test_backoff_doubles_with_bounded_jitter(monkeypatch, retries, low, high):
    monkeypatch.setattr(settings, "charge_task_retry_base_seconds", 30)

    for _ in range(50):
        assert low <= _backoff_seconds(retries) <= high


def test_backoff_never_drops_below_one_second(monkeypatch):
    monkeypatch.setattr(settings, "charge_task_retry_base_seconds", 1)

    assert {_backoff_seconds(0) for _ in range(20)} == {1}
    assert all(_backoff_seconds(3) >= 1 for _ in range(20))
