# backend/app/services/payment_store.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..models import Payment, PaymentAllocation

AUTOMATIC = "AUTOMATIC"
MANUAL = "MANUAL"

MANUAL_METHODS = ("CASH", "BANK", "CHEQUE", "OTHER")
MPESA = "MPESA"


def find_by_external_reference(db: Session, external_reference: str) -> Optional[Payment]:
    return db.scalar(select(Payment).where(Payment.external_reference == str(external_reference)))


def add_payment(
    db: Session,
    *,
    org_id: int,
    amount: int,
    source: str,
    method: str,
    paid_at: Optional[datetime] = None,
    tenancy_id: Optional[int] = None,
    external_reference: Optional[str] = None,
    raw_reference: Optional[str] = None,
    originating_identifier: Optional[str] = None,
    notes: Optional[str] = None,
) -> Payment:
    now = datetime.utcnow()
    row = Payment(
        org_id=int(org_id),
        amount=int(amount),
        source=source,
        method=method,
        paid_at=paid_at or now,
        tenancy_id=int(tenancy_id) if tenancy_id is not None else None,
        external_reference=external_reference,
        raw_reference=raw_reference,
        originating_identifier=originating_identifier,
        notes=notes,
        is_fully_allocated=False,
        is_matched=False,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()
    return row


def allocations_for_payment(db: Session, *, payment_id: int) -> list[PaymentAllocation]:
    q = (
        select(PaymentAllocation)
        .where(PaymentAllocation.payment_id == int(payment_id))
        .order_by(PaymentAllocation.id.asc())
    )
    return list(db.scalars(q).all())


def allocated_total(db: Session, *, payment_id: int) -> int:
    total = db.scalar(
        select(func.coalesce(func.sum(PaymentAllocation.allocated_amount), 0)).where(
            PaymentAllocation.payment_id == int(payment_id)
        )
    )
    return int(total or 0)


def remaining_amount(db: Session, payment: Payment) -> int:
    return int(payment.amount) - allocated_total(db, payment_id=payment.id)


def refresh_allocation_state(db: Session, payment: Payment) -> Payment:
    """
    Recompute the derived caches from the allocation rows:
      is_fully_allocated = sum(allocations) == amount
      is_matched         = linked to a tenancy and fully allocated
    """
    db.flush()
    total = allocated_total(db, payment_id=payment.id)
    payment.is_fully_allocated = total == int(payment.amount)
    payment.is_matched = bool(payment.is_fully_allocated and payment.tenancy_id is not None)
    payment.updated_at = datetime.utcnow()
    db.add(payment)
    db.flush()
    return payment


def attention_needed_clause():
    return or_(Payment.is_fully_allocated.is_(False), Payment.tenancy_id.is_(None))


def list_attention_needed(db: Session, *, org_id: int, limit: int = 500) -> list[Payment]:
    """The unmatched-payments workbench: a filter over payments, not a separate queue."""
    q = (
        select(Payment)
        .where(Payment.org_id == int(org_id), attention_needed_clause())
        .order_by(Payment.paid_at.desc(), Payment.id.desc())
        .limit(int(limit))
    )
    return list(db.scalars(q).all())


def list_payments(
    db: Session,
    *,
    org_id: int,
    source: Optional[str] = None,
    tenancy_id: Optional[int] = None,
    limit: int = 500,
) -> list[Payment]:
    q = select(Payment).where(Payment.org_id == int(org_id))
    if source:
        q = q.where(Payment.source == source.upper())
    if tenancy_id is not None:
        q = q.where(Payment.tenancy_id == int(tenancy_id))
    q = q.order_by(Payment.paid_at.desc(), Payment.id.desc()).limit(int(limit))
    return list(db.scalars(q).all())
