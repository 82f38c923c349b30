# backend/app/services/payments_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..domain.audit import PAYMENT_AUDIT_FIELDS, audit_write, snapshot
from ..domain.errors import ImmutablePayment, InvalidPayment
from ..models import Payment
from .allocation_engine import AllocationResult, allocate_single, auto_allocate, reallocate
from .ownership import must_get_payment, must_get_tenancy
from .payment_store import AUTOMATIC, MANUAL, MANUAL_METHODS, add_payment, refresh_allocation_state

log = logging.getLogger("rentledger.payments")

EDITABLE_FIELDS = ("amount", "paid_at", "method", "raw_reference", "tenancy_id", "notes")


@dataclass
class PaymentCommandResult:
    payment: Payment
    allocation: Optional[AllocationResult] = None


def _check_amount(amount: Any) -> int:
    try:
        amt = int(amount)
    except (TypeError, ValueError):
        raise InvalidPayment(f"amount must be a whole number, got {amount!r}")
    if amt <= 0:
        raise InvalidPayment("amount must be a positive number")
    return amt


def _check_method(method: Optional[str]) -> str:
    m = (method or "CASH").strip().upper()
    if m not in MANUAL_METHODS:
        raise InvalidPayment(f"method must be one of {', '.join(MANUAL_METHODS)}")
    return m


def record_manual_payment(
    db: Session,
    *,
    org_id: int,
    actor_user_id: Optional[int],
    amount: int,
    paid_at: Optional[datetime] = None,
    method: Optional[str] = None,
    reference: Optional[str] = None,
    tenancy_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> PaymentCommandResult:
    """Manual payment command. With a tenancy, auto-allocation runs in the same transaction."""
    amt = _check_amount(amount)
    m = _check_method(method)

    try:
        if tenancy_id is not None:
            must_get_tenancy(db, org_id=org_id, tenancy_id=tenancy_id)

        payment = add_payment(
            db,
            org_id=org_id,
            amount=amt,
            source=MANUAL,
            method=m,
            paid_at=paid_at,
            tenancy_id=tenancy_id,
            raw_reference=(reference or "").strip() or None,
            notes=notes,
        )

        result: Optional[AllocationResult] = None
        if payment.tenancy_id is not None:
            result = auto_allocate(db, org_id=org_id, payment=payment, tenancy_id=payment.tenancy_id)
        else:
            refresh_allocation_state(db, payment)

        audit_write(
            db,
            org_id=org_id,
            actor_user_id=actor_user_id,
            action="payment.create",
            entity_type="Payment",
            entity_id=str(payment.id),
            before=None,
            after=snapshot(payment, PAYMENT_AUDIT_FIELDS),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    log.info(
        "manual payment recorded",
        extra={"org_id": org_id, "payment_id": payment.id, "tenancy_id": payment.tenancy_id},
    )
    return PaymentCommandResult(payment=payment, allocation=result)


def edit_manual_payment(
    db: Session,
    *,
    org_id: int,
    actor_user_id: Optional[int],
    payment_id: int,
    changes: dict[str, Any],
) -> PaymentCommandResult:
    """
    Apply an operator edit. A change to amount or tenancy link reverses every
    existing allocation and re-runs auto-allocation. All of it, including the
    field changes, commits as one transaction or not at all.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidPayment(f"fields not editable: {', '.join(sorted(unknown))}")

    updates = dict(changes)
    if "amount" in updates:
        updates["amount"] = _check_amount(updates["amount"])
    if "method" in updates:
        updates["method"] = _check_method(updates["method"])
    if "raw_reference" in updates:
        updates["raw_reference"] = (updates["raw_reference"] or "").strip() or None
    if "paid_at" in updates and updates["paid_at"] is None:
        del updates["paid_at"]

    try:
        payment = must_get_payment(db, org_id=org_id, payment_id=payment_id, for_update=True)
        if payment.source == AUTOMATIC:
            raise ImmutablePayment(f"payment {payment.id} was received automatically and cannot be edited")

        before = snapshot(payment, PAYMENT_AUDIT_FIELDS)
        needs_reallocation = (
            ("amount" in updates and updates["amount"] != payment.amount)
            or ("tenancy_id" in updates and updates["tenancy_id"] != payment.tenancy_id)
        )

        if updates.get("tenancy_id") is not None:
            must_get_tenancy(db, org_id=org_id, tenancy_id=updates["tenancy_id"])

        for k, v in updates.items():
            setattr(payment, k, v)
        payment.updated_at = datetime.utcnow()
        db.add(payment)
        db.flush()

        result: Optional[AllocationResult] = None
        if needs_reallocation:
            result = reallocate(db, org_id=org_id, payment=payment)

        audit_write(
            db,
            org_id=org_id,
            actor_user_id=actor_user_id,
            action="payment.update",
            entity_type="Payment",
            entity_id=str(payment.id),
            before=before,
            after=snapshot(payment, PAYMENT_AUDIT_FIELDS),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    return PaymentCommandResult(payment=payment, allocation=result)


def allocate_manually(
    db: Session,
    *,
    org_id: int,
    actor_user_id: Optional[int],
    payment_id: int,
    tenancy_id: int,
    rent_charge_id: int,
    amount: int,
) -> PaymentCommandResult:
    """Manual allocation command from the unmatched-payments workbench."""
    try:
        payment = must_get_payment(db, org_id=org_id, payment_id=payment_id, for_update=True)
        result = allocate_single(
            db,
            org_id=org_id,
            payment=payment,
            tenancy_id=tenancy_id,
            rent_charge_id=rent_charge_id,
            amount=amount,
        )
        audit_write(
            db,
            org_id=org_id,
            actor_user_id=actor_user_id,
            action="payment.allocate",
            entity_type="Payment",
            entity_id=str(payment.id),
            after={
                "rent_charge_id": int(rent_charge_id),
                "tenancy_id": int(tenancy_id),
                "allocated_amount": int(amount),
                "is_fully_allocated": bool(payment.is_fully_allocated),
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    return PaymentCommandResult(payment=payment, allocation=result)
