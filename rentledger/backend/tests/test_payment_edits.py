# backend/tests/test_payment_edits.py
from __future__ import annotations

import json
from datetime import datetime

import pytest
from sqlalchemy import select

from app.domain.errors import ImmutablePayment, InvalidPayment, TenancyNotFound
from app.domain.notifications import build_notification
from app.models import AuditEvent, Payment, PaymentAllocation, RentCharge
from app.services.charge_generator import generate_charges
from app.services.inbound_matcher import process_notification
from app.services.payments_service import edit_manual_payment, record_manual_payment


def test_automatic_payments_cannot_be_edited(db, org_id, make_tenancy):
    make_tenancy(org_id, unit_code="A1")
    res = process_notification(
        db,
        org_id=org_id,
        notification=build_notification(transaction_id="QK20001", amount=500, account_reference="A1"),
    )

    with pytest.raises(ImmutablePayment):
        edit_manual_payment(db, org_id=org_id, actor_user_id=None, payment_id=res.payment_id, changes={"amount": 400})

    assert db.get(Payment, res.payment_id).amount == 500


def test_invalid_manual_payment_commands(db, org_id, make_tenancy):
    with pytest.raises(InvalidPayment):
        record_manual_payment(db, org_id=org_id, actor_user_id=None, amount=0)
    with pytest.raises(InvalidPayment):
        record_manual_payment(db, org_id=org_id, actor_user_id=None, amount=100, method="MPESA")
    with pytest.raises(TenancyNotFound):
        record_manual_payment(db, org_id=org_id, actor_user_id=None, amount=100, tenancy_id=424242)

    p = record_manual_payment(db, org_id=org_id, actor_user_id=None, amount=100).payment
    with pytest.raises(InvalidPayment):
        edit_manual_payment(db, org_id=org_id, actor_user_id=None, payment_id=p.id, changes={"source": "AUTOMATIC"})
    with pytest.raises(InvalidPayment):
        edit_manual_payment(db, org_id=org_id, actor_user_id=None, payment_id=p.id, changes={"amount": -5})


def test_relinking_moves_allocations_to_new_tenancy(db, org_id, make_tenancy):
    a = make_tenancy(org_id, unit_code="A1", rent=10000)
    b = make_tenancy(org_id, unit_code="B1", rent=10000)
    generate_charges(db, org_id=org_id, period="2025-01")

    p = record_manual_payment(db, org_id=org_id, actor_user_id=None, amount=10000, tenancy_id=a.id).payment
    edit_manual_payment(db, org_id=org_id, actor_user_id=None, payment_id=p.id, changes={"tenancy_id": b.id})

    charges = {c.tenancy_id: c for c in db.scalars(select(RentCharge)).all()}
    for c in charges.values():
        db.refresh(c)
    assert (charges[a.id].balance, charges[a.id].status) == (10000, "UNPAID")
    assert (charges[b.id].balance, charges[b.id].status) == (0, "PAID")

    [alloc] = db.scalars(select(PaymentAllocation).where(PaymentAllocation.payment_id == p.id)).all()
    assert alloc.rent_charge_id == charges[b.id].id


def test_unlinking_reverses_everything(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=10000)
    [c] = generate_charges(db, org_id=org_id, period="2025-01")
    p = record_manual_payment(db, org_id=org_id, actor_user_id=None, amount=10000, tenancy_id=t.id).payment

    res = edit_manual_payment(db, org_id=org_id, actor_user_id=None, payment_id=p.id, changes={"tenancy_id": None})

    db.refresh(c)
    assert (c.balance, c.status) == (10000, "UNPAID")
    assert res.payment.tenancy_id is None
    assert res.payment.is_fully_allocated is False
    assert db.scalar(select(PaymentAllocation)) is None


def test_non_financial_edit_keeps_allocations_and_is_audited(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=10000)
    generate_charges(db, org_id=org_id, period="2025-01")
    p = record_manual_payment(db, org_id=org_id, actor_user_id=None, amount=10000, tenancy_id=t.id).payment
    alloc_ids = [a.id for a in db.scalars(select(PaymentAllocation)).all()]

    res = edit_manual_payment(
        db,
        org_id=org_id,
        actor_user_id=None,
        payment_id=p.id,
        changes={"notes": "paid at office", "method": "cheque", "paid_at": datetime(2025, 1, 3)},
    )

    assert res.allocation is None
    assert res.payment.method == "CHEQUE"
    assert [a.id for a in db.scalars(select(PaymentAllocation)).all()] == alloc_ids

    ev = db.scalar(select(AuditEvent).where(AuditEvent.action == "payment.update"))
    assert ev is not None
    assert json.loads(ev.before_json)["method"] == "CASH"
    assert json.loads(ev.after_json)["method"] == "CHEQUE"


def test_failed_reallocation_leaves_payment_untouched(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=10000)
    generate_charges(db, org_id=org_id, period="2025-01")
    p = record_manual_payment(db, org_id=org_id, actor_user_id=None, amount=10000, tenancy_id=t.id).payment

    with pytest.raises(TenancyNotFound):
        edit_manual_payment(
            db, org_id=org_id, actor_user_id=None, payment_id=p.id, changes={"amount": 5000, "tenancy_id": 424242}
        )

    db.refresh(p)
    assert p.amount == 10000
    assert p.tenancy_id == t.id
    assert p.is_fully_allocated is True
