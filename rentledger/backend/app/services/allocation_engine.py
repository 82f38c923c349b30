# backend/app/services/allocation_engine.py
"""
Allocation engine: spreads a payment across a tenancy's outstanding rent charges.

Policy (auto mode): oldest period first, greedy, exact fill. Each charge takes
min(remaining, balance). Whatever is left once the charges run out stays
unallocated on the payment. There is no implicit credit against charges that
have not been generated yet; the payment stays in the attention view until an
operator allocates it or a later charge exists and the payment is re-run.

Auto mode is best-effort sequential: a step rejected by the charge store
(balance moved under us) is logged and skipped, and earlier steps stand.

Nothing here commits. Callers own the transaction (see payments_service and
inbound_matcher).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..domain.errors import InvalidAllocation
from ..models import Payment, PaymentAllocation
from .ownership import must_get_charge, must_get_tenancy
from .payment_store import allocations_for_payment, refresh_allocation_state, remaining_amount
from .rent_charge_store import apply_allocation, list_unpaid_charges_for_tenancy, reverse_allocation

log = logging.getLogger("rentledger.allocation")


@dataclass
class AllocationResult:
    payment_id: int
    allocations: list[PaymentAllocation] = field(default_factory=list)
    allocated_now: int = 0
    remaining: int = 0
    is_fully_allocated: bool = False
    rejected_steps: list[str] = field(default_factory=list)


def _record(db: Session, *, org_id: int, payment: Payment, rent_charge_id: int, amount: int) -> PaymentAllocation:
    row = PaymentAllocation(
        org_id=int(org_id),
        payment_id=int(payment.id),
        rent_charge_id=int(rent_charge_id),
        allocated_amount=int(amount),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    return row


def auto_allocate(db: Session, *, org_id: int, payment: Payment, tenancy_id: int) -> AllocationResult:
    remaining = remaining_amount(db, payment)
    result = AllocationResult(payment_id=int(payment.id))

    if remaining > 0:
        for charge in list_unpaid_charges_for_tenancy(db, org_id=org_id, tenancy_id=tenancy_id):
            if remaining <= 0:
                break
            take = min(remaining, int(charge.balance))
            if take <= 0:
                continue

            try:
                apply_allocation(db, org_id=org_id, charge_id=charge.id, amount=take)
            except InvalidAllocation as e:
                log.warning(
                    "allocation step rejected",
                    extra={"org_id": org_id, "payment_id": payment.id, "rent_charge_id": charge.id},
                )
                result.rejected_steps.append(e.message)
                continue

            result.allocations.append(
                _record(db, org_id=org_id, payment=payment, rent_charge_id=charge.id, amount=take)
            )
            result.allocated_now += take
            remaining -= take

    refresh_allocation_state(db, payment)
    result.remaining = remaining
    result.is_fully_allocated = bool(payment.is_fully_allocated)

    if remaining > 0:
        log.info(
            "payment left with unallocated remainder",
            extra={"org_id": org_id, "payment_id": payment.id, "tenancy_id": tenancy_id, "remaining": remaining},
        )
    return result


def allocate_single(
    db: Session,
    *,
    org_id: int,
    payment: Payment,
    tenancy_id: int,
    rent_charge_id: int,
    amount: int,
) -> AllocationResult:
    """Operator-chosen allocation of `amount` from `payment` onto one charge."""
    amount = int(amount)
    if amount <= 0:
        raise InvalidAllocation("allocation amount must be positive")

    tenancy = must_get_tenancy(db, org_id=org_id, tenancy_id=tenancy_id)
    charge = must_get_charge(db, org_id=org_id, rent_charge_id=rent_charge_id)
    if int(charge.tenancy_id) != int(tenancy.id):
        raise InvalidAllocation(f"rent charge {charge.id} does not belong to tenancy {tenancy.id}")

    remaining = remaining_amount(db, payment)
    if amount > remaining:
        raise InvalidAllocation(f"allocation of {amount} exceeds remaining payment balance {remaining}")
    if amount > int(charge.balance):
        raise InvalidAllocation(f"allocation of {amount} exceeds rent charge balance {charge.balance}")

    apply_allocation(db, org_id=org_id, charge_id=charge.id, amount=amount)
    alloc = _record(db, org_id=org_id, payment=payment, rent_charge_id=charge.id, amount=amount)

    if payment.tenancy_id is None:
        payment.tenancy_id = int(tenancy.id)

    refresh_allocation_state(db, payment)
    return AllocationResult(
        payment_id=int(payment.id),
        allocations=[alloc],
        allocated_now=amount,
        remaining=remaining - amount,
        is_fully_allocated=bool(payment.is_fully_allocated),
    )


def reverse_all(db: Session, *, org_id: int, payment: Payment) -> int:
    """
    Undo every allocation of `payment`: give each amount back to its charge
    (relative to the charge's current balance) and delete the allocation row.
    Returns the number of allocations reversed.
    """
    rows = allocations_for_payment(db, payment_id=payment.id)
    for a in rows:
        reverse_allocation(db, org_id=org_id, charge_id=a.rent_charge_id, amount=a.allocated_amount)
        db.delete(a)
    db.flush()

    if rows:
        log.info(
            "reversed payment allocations",
            extra={"org_id": org_id, "payment_id": payment.id, "reversed_count": len(rows)},
        )
    return len(rows)


def reallocate(db: Session, *, org_id: int, payment: Payment) -> AllocationResult:
    """Full reversal, then auto-allocation against the payment's current tenancy and amount."""
    reverse_all(db, org_id=org_id, payment=payment)

    tenancy_id: Optional[int] = payment.tenancy_id
    if tenancy_id is None:
        refresh_allocation_state(db, payment)
        return AllocationResult(
            payment_id=int(payment.id),
            remaining=int(payment.amount),
            is_fully_allocated=bool(payment.is_fully_allocated),
        )
    return auto_allocate(db, org_id=org_id, payment=payment, tenancy_id=tenancy_id)
