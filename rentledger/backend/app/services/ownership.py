# backend/app/services/ownership.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.errors import ChargeNotFound, PaymentNotFound, TenancyNotFound
from ..models import Organization, Payment, RentCharge, Tenancy


def must_get_tenancy(db: Session, *, org_id: int, tenancy_id: int) -> Tenancy:
    row = db.scalar(select(Tenancy).where(Tenancy.id == int(tenancy_id), Tenancy.org_id == int(org_id)))
    if not row:
        raise TenancyNotFound(f"tenancy {tenancy_id} not found")
    return row


def must_get_payment(db: Session, *, org_id: int, payment_id: int, for_update: bool = False) -> Payment:
    """
    With for_update the row is locked until the caller commits or rolls back, so
    two commands allocating the same payment check its remainder one at a time.
    """
    stmt = select(Payment).where(Payment.id == int(payment_id), Payment.org_id == int(org_id))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    row = db.scalar(stmt)
    if not row:
        raise PaymentNotFound(f"payment {payment_id} not found")
    return row


def must_get_charge(db: Session, *, org_id: int, rent_charge_id: int) -> RentCharge:
    row = db.scalar(
        select(RentCharge).where(RentCharge.id == int(rent_charge_id), RentCharge.org_id == int(org_id))
    )
    if not row:
        raise ChargeNotFound(f"rent charge {rent_charge_id} not found")
    return row


def get_org(db: Session, org_id: int) -> Organization | None:
    return db.get(Organization, int(org_id))
