# backend/app/services/rent_charge_store.py
"""
RentCharge persistence used by the allocation engine.

Balance changes are single conditional UPDATE statements: the WHERE clause
re-checks the bound against the row's current balance, and status is
recomputed from the same expression in the same statement. Two payments
racing for one charge therefore serialize on the row and neither can drive
the balance below zero or above the original amount.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from ..domain.errors import ChargeNotFound, InvalidAllocation
from ..domain.ledger import PAID, PARTIAL, UNPAID
from ..models import RentCharge


def _status_after(new_balance):
    return case(
        (new_balance == 0, PAID),
        (new_balance == RentCharge.amount, UNPAID),
        else_=PARTIAL,
    )


def list_unpaid_charges_for_tenancy(db: Session, *, org_id: int, tenancy_id: int) -> list[RentCharge]:
    """Outstanding charges, oldest period first. (tenancy_id, period) is unique so this is a total order."""
    q = (
        select(RentCharge)
        .where(
            RentCharge.org_id == int(org_id),
            RentCharge.tenancy_id == int(tenancy_id),
            RentCharge.balance > 0,
        )
        .order_by(RentCharge.period.asc())
    )
    return list(db.scalars(q).all())


def _reload(db: Session, *, org_id: int, charge_id: int) -> RentCharge:
    row = db.get(RentCharge, int(charge_id), populate_existing=True)
    if row is None or int(row.org_id) != int(org_id):
        raise ChargeNotFound(f"rent charge {charge_id} not found")
    return row


def apply_allocation(db: Session, *, org_id: int, charge_id: int, amount: int) -> RentCharge:
    """Decrement balance by amount. Raises InvalidAllocation when amount > current balance."""
    amount = int(amount)
    if amount <= 0:
        raise InvalidAllocation(f"allocation amount must be positive, got {amount}")

    new_balance = RentCharge.balance - amount
    res = db.execute(
        update(RentCharge)
        .where(
            RentCharge.id == int(charge_id),
            RentCharge.org_id == int(org_id),
            RentCharge.balance >= amount,
        )
        .values(balance=new_balance, status=_status_after(new_balance), updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        current = _reload(db, org_id=org_id, charge_id=charge_id)
        raise InvalidAllocation(
            f"allocation of {amount} exceeds balance {current.balance} on rent charge {charge_id}"
        )
    return _reload(db, org_id=org_id, charge_id=charge_id)


def reverse_allocation(db: Session, *, org_id: int, charge_id: int, amount: int) -> RentCharge:
    """
    Increment balance by amount, relative to the stored balance at the time of
    the UPDATE. Refuses to lift the balance above the original charge amount.
    """
    amount = int(amount)
    if amount <= 0:
        raise InvalidAllocation(f"reversal amount must be positive, got {amount}")

    new_balance = RentCharge.balance + amount
    res = db.execute(
        update(RentCharge)
        .where(
            RentCharge.id == int(charge_id),
            RentCharge.org_id == int(org_id),
            RentCharge.balance + amount <= RentCharge.amount,
        )
        .values(balance=new_balance, status=_status_after(new_balance), updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        current = _reload(db, org_id=org_id, charge_id=charge_id)
        raise InvalidAllocation(
            f"reversal of {amount} would exceed amount {current.amount} on rent charge {charge_id} "
            f"(balance {current.balance})"
        )
    return _reload(db, org_id=org_id, charge_id=charge_id)
