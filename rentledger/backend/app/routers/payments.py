# backend/app/routers/payments.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import get_principal, require_operator
from ..db import get_db
from ..schemas import (
    ManualAllocationIn,
    ManualPaymentIn,
    PaymentCommandOut,
    PaymentDetailOut,
    PaymentOut,
    PaymentUpdateIn,
)
from ..services.ledger_reports import payment_detail
from ..services.payment_store import list_attention_needed, list_payments
from ..services.payments_service import (
    PaymentCommandResult,
    allocate_manually,
    edit_manual_payment,
    record_manual_payment,
)

router = APIRouter(prefix="/payments", tags=["payments"])


def _command_out(res: PaymentCommandResult) -> PaymentCommandOut:
    out = PaymentOut.model_validate(res.payment)
    alloc = res.allocation
    if alloc is None:
        return PaymentCommandOut(payment=out, allocated_now=0, remaining=int(res.payment.amount))
    return PaymentCommandOut(payment=out, allocated_now=alloc.allocated_now, remaining=alloc.remaining)


@router.post("", response_model=PaymentCommandOut)
def create_payment(payload: ManualPaymentIn, db: Session = Depends(get_db), p=Depends(require_operator)):
    res = record_manual_payment(
        db,
        org_id=p.org_id,
        actor_user_id=p.user_id,
        amount=payload.amount,
        paid_at=payload.paid_at,
        method=payload.method,
        reference=payload.reference,
        tenancy_id=payload.tenancy_id,
        notes=payload.notes,
    )
    return _command_out(res)


@router.get("", response_model=list[PaymentOut])
def list_all(
    source: Optional[str] = Query(default=None, description="AUTOMATIC|MANUAL"),
    tenancy_id: Optional[int] = Query(default=None),
    limit: int = Query(default=500, ge=1, le=2000),
    db: Session = Depends(get_db),
    p=Depends(get_principal),
):
    return list_payments(db, org_id=p.org_id, source=source, tenancy_id=tenancy_id, limit=limit)


@router.get("/attention", response_model=list[PaymentOut])
def needs_attention(
    limit: int = Query(default=500, ge=1, le=2000),
    db: Session = Depends(get_db),
    p=Depends(get_principal),
):
    """Unlinked or not fully allocated payments."""
    return list_attention_needed(db, org_id=p.org_id, limit=limit)


@router.get("/{payment_id}", response_model=PaymentDetailOut)
def get_payment(payment_id: int, db: Session = Depends(get_db), p=Depends(get_principal)):
    detail = payment_detail(db, org_id=p.org_id, payment_id=payment_id)
    return PaymentDetailOut.model_validate(detail, from_attributes=True)


@router.patch("/{payment_id}", response_model=PaymentCommandOut)
def update_payment(
    payment_id: int,
    payload: PaymentUpdateIn,
    db: Session = Depends(get_db),
    p=Depends(require_operator),
):
    res = edit_manual_payment(
        db,
        org_id=p.org_id,
        actor_user_id=p.user_id,
        payment_id=payment_id,
        changes=payload.model_dump(exclude_unset=True),
    )
    if res.allocation is None:
        detail = payment_detail(db, org_id=p.org_id, payment_id=payment_id)
        return PaymentCommandOut(payment=PaymentOut.model_validate(res.payment), allocated_now=0, remaining=detail.remaining)
    return _command_out(res)


@router.post("/{payment_id}/allocations", response_model=PaymentCommandOut)
def allocate(
    payment_id: int,
    payload: ManualAllocationIn,
    db: Session = Depends(get_db),
    p=Depends(require_operator),
):
    res = allocate_manually(
        db,
        org_id=p.org_id,
        actor_user_id=p.user_id,
        payment_id=payment_id,
        tenancy_id=payload.tenancy_id,
        rent_charge_id=payload.rent_charge_id,
        amount=payload.amount,
    )
    return _command_out(res)
