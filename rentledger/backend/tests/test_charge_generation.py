# backend/tests/test_charge_generation.py
from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import func, select

from app.models import AuditEvent, Organization, RentCharge
from app.services.charge_generator import generate_charges, generate_charges_for_current_month


def test_generates_one_unpaid_charge_per_billable_tenancy(db, org_id, make_tenancy):
    active = make_tenancy(org_id, unit_code="A1", rent=25000)
    notice = make_tenancy(org_id, unit_code="A2", rent=18000, status="NOTICE")
    make_tenancy(org_id, unit_code="A3", status="ENDED")
    make_tenancy(org_id, unit_code="A4", start_date=date(2025, 2, 1))
    make_tenancy(org_id, unit_code="A5", end_date=date(2024, 12, 31))

    rows = generate_charges(db, org_id=org_id, period="2025-01")

    assert sorted(r.tenancy_id for r in rows) == sorted([active.id, notice.id])
    for r in rows:
        assert r.status == "UNPAID"
        assert r.balance == r.amount
        assert r.period == "2025-01"
        assert r.due_date == date(2025, 1, 5)

    by_tenancy = {r.tenancy_id: r for r in rows}
    assert by_tenancy[notice.id].amount == 18000


def test_generation_is_idempotent_per_period(db, org_id, make_tenancy):
    t = make_tenancy(org_id)

    first = generate_charges(db, org_id=org_id, period="2025-01")
    again = generate_charges(db, org_id=org_id, period="2025-01")
    feb = generate_charges(db, org_id=org_id, period="2025-02")

    assert len(first) == 1
    assert again == []
    assert len(feb) == 1

    n = db.scalar(select(func.count(RentCharge.id)).where(RentCharge.tenancy_id == t.id))
    assert n == 2


def test_generation_can_target_specific_tenancies(db, org_id, make_tenancy):
    a = make_tenancy(org_id, unit_code="A1")
    make_tenancy(org_id, unit_code="B1")

    rows = generate_charges(db, org_id=org_id, period="2025-01", tenancy_ids=[a.id])
    assert [r.tenancy_id for r in rows] == [a.id]

    assert generate_charges(db, org_id=org_id, period="2025-01", tenancy_ids=[]) == []


def test_due_day_clamps_and_org_default_applies(db, org_id, make_tenancy):
    late = make_tenancy(org_id, unit_code="A1", rent_due_day=31)
    no_day = make_tenancy(org_id, unit_code="A2", rent_due_day=None)

    org = db.get(Organization, org_id)
    org.default_rent_due_day = 10
    db.commit()

    rows = {r.tenancy_id: r for r in generate_charges(db, org_id=org_id, period="2025-02")}
    assert rows[late.id].due_date == date(2025, 2, 28)
    assert rows[no_day.id].due_date == date(2025, 2, 10)


def test_generation_is_scoped_to_the_landlord(db, org_id, make_tenancy):
    other = Organization(slug="landlord-b", name="Landlord B")
    db.add(other)
    db.commit()
    make_tenancy(int(other.id), unit_code="Z9")
    make_tenancy(org_id, unit_code="A1")

    rows = generate_charges(db, org_id=org_id, period="2025-01")
    assert len(rows) == 1
    assert rows[0].org_id == org_id


def test_current_month_convenience_and_audit(db, org_id, make_tenancy):
    make_tenancy(org_id)

    rows = generate_charges_for_current_month(db, org_id=org_id, today=date(2025, 3, 17), actor_user_id=None)
    assert [r.period for r in rows] == ["2025-03"]

    audit = db.scalar(select(AuditEvent).where(AuditEvent.action == "rent_charges.generate"))
    assert audit is not None
    assert audit.entity_id == "2025-03"


def test_bad_period_is_rejected(db, org_id):
    with pytest.raises(ValueError):
        generate_charges(db, org_id=org_id, period="2025-13")


def test_zero_rent_charge_is_born_paid(db, org_id, make_tenancy):
    make_tenancy(org_id, unit_code="A1", rent=0)

    [c] = generate_charges(db, org_id=org_id, period="2025-01")

    assert (c.amount, c.balance, c.status) == (0, 0, "PAID")
