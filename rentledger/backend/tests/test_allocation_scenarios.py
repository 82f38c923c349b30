# backend/tests/test_allocation_scenarios.py
from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import func, select

from app.domain.errors import InvalidAllocation
from app.domain.ledger import charge_status
from app.models import Payment, PaymentAllocation, RentCharge
from app.services.allocation_engine import reverse_all
from app.services.charge_generator import generate_charges
from app.services.payment_store import list_attention_needed
from app.services.payments_service import edit_manual_payment, record_manual_payment
from app.services.rent_charge_store import apply_allocation, reverse_allocation


def _charge(db, tenancy_id: int, period: str) -> RentCharge:
    row = db.scalar(select(RentCharge).where(RentCharge.tenancy_id == tenancy_id, RentCharge.period == period))
    db.refresh(row)
    return row


def _pay(db, org_id: int, tenancy_id: int | None, amount: int) -> Payment:
    res = record_manual_payment(
        db,
        org_id=org_id,
        actor_user_id=None,
        amount=amount,
        paid_at=datetime(2025, 1, 10, 9, 0),
        method="CASH",
        tenancy_id=tenancy_id,
    )
    db.refresh(res.payment)
    return res.payment


def _assert_ledger_consistent(db, org_id: int) -> None:
    for c in db.scalars(select(RentCharge).where(RentCharge.org_id == org_id)).all():
        db.refresh(c)
        applied = db.scalar(
            select(func.coalesce(func.sum(PaymentAllocation.allocated_amount), 0)).where(
                PaymentAllocation.rent_charge_id == c.id
            )
        )
        assert c.amount - int(applied) == c.balance
        assert c.status == charge_status(c.amount, c.balance)

    for p in db.scalars(select(Payment).where(Payment.org_id == org_id)).all():
        db.refresh(p)
        allocated = db.scalar(
            select(func.coalesce(func.sum(PaymentAllocation.allocated_amount), 0)).where(
                PaymentAllocation.payment_id == p.id
            )
        )
        assert int(allocated) <= p.amount
        assert p.is_fully_allocated == (int(allocated) == p.amount)


def test_full_payment_settles_single_charge(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=25000)
    generate_charges(db, org_id=org_id, period="2025-01")

    p = _pay(db, org_id, t.id, 25000)

    c = _charge(db, t.id, "2025-01")
    assert (c.balance, c.status) == (0, "PAID")
    assert p.is_fully_allocated is True
    assert p.is_matched is True
    _assert_ledger_consistent(db, org_id)


def test_two_partial_payments_settle_charge(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=25000)
    generate_charges(db, org_id=org_id, period="2025-01")

    _pay(db, org_id, t.id, 10000)
    c = _charge(db, t.id, "2025-01")
    assert (c.balance, c.status) == (15000, "PARTIAL")

    _pay(db, org_id, t.id, 15000)
    c = _charge(db, t.id, "2025-01")
    assert (c.balance, c.status) == (0, "PAID")
    _assert_ledger_consistent(db, org_id)


def test_payment_spreads_oldest_period_first(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=20000)
    generate_charges(db, org_id=org_id, period="2025-02")
    generate_charges(db, org_id=org_id, period="2025-01")

    p = _pay(db, org_id, t.id, 30000)

    jan = _charge(db, t.id, "2025-01")
    feb = _charge(db, t.id, "2025-02")
    assert (jan.balance, jan.status) == (0, "PAID")
    assert (feb.balance, feb.status) == (10000, "PARTIAL")
    assert p.is_fully_allocated is True

    allocs = db.scalars(
        select(PaymentAllocation).where(PaymentAllocation.payment_id == p.id).order_by(PaymentAllocation.id)
    ).all()
    assert [(a.rent_charge_id, a.allocated_amount) for a in allocs] == [(jan.id, 20000), (feb.id, 10000)]
    _assert_ledger_consistent(db, org_id)


def test_overpayment_leaves_remainder_without_future_credit(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=20000)
    generate_charges(db, org_id=org_id, period="2025-01")

    p = _pay(db, org_id, t.id, 26000)

    assert _charge(db, t.id, "2025-01").balance == 0
    assert p.is_fully_allocated is False
    assert p.is_matched is False
    assert [x.id for x in list_attention_needed(db, org_id=org_id)] == [p.id]

    # a later charge does not pick up the remainder by itself
    generate_charges(db, org_id=org_id, period="2025-02")
    assert _charge(db, t.id, "2025-02").balance == 20000
    _assert_ledger_consistent(db, org_id)


def test_unlinked_manual_payment_is_recorded_and_needs_attention(db, org_id, make_tenancy):
    make_tenancy(org_id)
    generate_charges(db, org_id=org_id, period="2025-01")

    p = _pay(db, org_id, None, 5000)
    assert p.tenancy_id is None
    assert p.is_fully_allocated is False
    assert db.scalar(select(func.count(PaymentAllocation.id))) == 0
    assert [x.id for x in list_attention_needed(db, org_id=org_id)] == [p.id]


def test_amount_edit_reverses_then_reallocates(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=25000)
    generate_charges(db, org_id=org_id, period="2025-01")
    p = _pay(db, org_id, t.id, 25000)
    assert _charge(db, t.id, "2025-01").status == "PAID"

    res = edit_manual_payment(db, org_id=org_id, actor_user_id=None, payment_id=p.id, changes={"amount": 15000})

    c = _charge(db, t.id, "2025-01")
    assert (c.balance, c.status) == (10000, "PARTIAL")
    assert res.payment.amount == 15000
    assert res.payment.is_fully_allocated is True

    allocs = db.scalars(select(PaymentAllocation).where(PaymentAllocation.payment_id == p.id)).all()
    assert [a.allocated_amount for a in allocs] == [15000]
    _assert_ledger_consistent(db, org_id)


def test_reversal_restores_prior_balances(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=20000)
    generate_charges(db, org_id=org_id, period="2025-01")
    generate_charges(db, org_id=org_id, period="2025-02")
    before = {c.period: (c.balance, c.status) for c in (_charge(db, t.id, "2025-01"), _charge(db, t.id, "2025-02"))}

    p = _pay(db, org_id, t.id, 30000)
    assert reverse_all(db, org_id=org_id, payment=p) == 2
    db.commit()

    after = {c.period: (c.balance, c.status) for c in (_charge(db, t.id, "2025-01"), _charge(db, t.id, "2025-02"))}
    assert after == before
    assert db.scalar(select(func.count(PaymentAllocation.id))) == 0


def test_charge_store_refuses_to_cross_bounds(db, org_id, make_tenancy):
    t = make_tenancy(org_id, rent=20000)
    [c] = generate_charges(db, org_id=org_id, period="2025-01")

    with pytest.raises(InvalidAllocation):
        apply_allocation(db, org_id=org_id, charge_id=c.id, amount=20001)
    with pytest.raises(InvalidAllocation):
        reverse_allocation(db, org_id=org_id, charge_id=c.id, amount=1)
    with pytest.raises(InvalidAllocation):
        apply_allocation(db, org_id=org_id, charge_id=c.id, amount=0)

    row = apply_allocation(db, org_id=org_id, charge_id=c.id, amount=20000)
    assert (row.balance, row.status) == (0, "PAID")
    row = reverse_allocation(db, org_id=org_id, charge_id=c.id, amount=5000)
    assert (row.balance, row.status) == (5000, "PARTIAL")
    db.rollback()

    assert _charge(db, t.id, "2025-01").balance == 20000
