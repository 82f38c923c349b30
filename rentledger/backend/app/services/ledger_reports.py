# backend/app/services/ledger_reports.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..domain.ledger import CHARGE_STATUSES, PAID, PARTIAL, UNPAID, parse_period, period_bounds, period_of
from ..models import Payment, PaymentAllocation, RentCharge, Tenancy, Unit
from .ownership import must_get_payment
from .payment_store import attention_needed_clause


@dataclass(frozen=True)
class ChargeSummary:
    as_of: date
    unpaid_count: int
    partial_count: int
    paid_count: int
    total_outstanding: int
    overdue_count: int
    tenancies_with_balance: int
    units_with_balance: int
    properties_with_balance: int


@dataclass(frozen=True)
class DashboardStats:
    month: str
    expected_rent: int
    collected: int
    outstanding_balance: int
    payments_needing_attention: int


@dataclass(frozen=True)
class AllocationLine:
    allocation_id: int
    rent_charge_id: int
    period: str
    allocated_amount: int


@dataclass(frozen=True)
class PaymentDetail:
    payment: Payment
    allocated_total: int
    remaining: int
    lines: list[AllocationLine] = field(default_factory=list)


def list_charges(
    db: Session,
    *,
    org_id: int,
    status: Optional[str] = None,
    tenancy_id: Optional[int] = None,
    period_from: Optional[str] = None,
    period_to: Optional[str] = None,
    limit: int = 1000,
) -> list[RentCharge]:
    q = select(RentCharge).where(RentCharge.org_id == int(org_id))

    if status:
        s = status.strip().upper()
        if s not in CHARGE_STATUSES:
            raise ValueError(f"status must be one of {', '.join(CHARGE_STATUSES)}")
        q = q.where(RentCharge.status == s)
    if tenancy_id is not None:
        q = q.where(RentCharge.tenancy_id == int(tenancy_id))
    if period_from:
        parse_period(period_from)
        q = q.where(RentCharge.period >= period_from)
    if period_to:
        parse_period(period_to)
        q = q.where(RentCharge.period <= period_to)

    q = q.order_by(RentCharge.period.asc(), RentCharge.id.asc()).limit(int(limit))
    return list(db.scalars(q).all())


def charge_summary(db: Session, *, org_id: int, as_of: Optional[date] = None) -> ChargeSummary:
    as_of = as_of or date.today()

    counts = dict(
        db.execute(
            select(RentCharge.status, func.count(RentCharge.id))
            .where(RentCharge.org_id == int(org_id))
            .group_by(RentCharge.status)
        ).all()
    )

    outstanding = (RentCharge.org_id == int(org_id), RentCharge.balance > 0)

    total_outstanding = db.scalar(select(func.coalesce(func.sum(RentCharge.balance), 0)).where(*outstanding))
    overdue = db.scalar(select(func.count(RentCharge.id)).where(*outstanding, RentCharge.due_date < as_of))

    owing = (
        select(Tenancy.id, Tenancy.unit_id, Unit.property_id)
        .join(RentCharge, RentCharge.tenancy_id == Tenancy.id)
        .join(Unit, Unit.id == Tenancy.unit_id)
        .where(*outstanding)
        .distinct()
    )
    rows = db.execute(owing).all()

    return ChargeSummary(
        as_of=as_of,
        unpaid_count=int(counts.get(UNPAID, 0)),
        partial_count=int(counts.get(PARTIAL, 0)),
        paid_count=int(counts.get(PAID, 0)),
        total_outstanding=int(total_outstanding or 0),
        overdue_count=int(overdue or 0),
        tenancies_with_balance=len({r[0] for r in rows}),
        units_with_balance=len({r[1] for r in rows}),
        properties_with_balance=len({r[2] for r in rows}),
    )


def dashboard_stats(db: Session, *, org_id: int, month: Optional[str] = None) -> DashboardStats:
    month = month or period_of(date.today())
    first, last = period_bounds(month)
    start = datetime(first.year, first.month, first.day)
    end = datetime(last.year, last.month, last.day, 23, 59, 59, 999999)

    expected = db.scalar(
        select(func.coalesce(func.sum(RentCharge.amount), 0)).where(
            RentCharge.org_id == int(org_id), RentCharge.period == month
        )
    )
    collected = db.scalar(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.org_id == int(org_id), Payment.paid_at >= start, Payment.paid_at <= end
        )
    )
    outstanding = db.scalar(
        select(func.coalesce(func.sum(RentCharge.balance), 0)).where(RentCharge.org_id == int(org_id))
    )
    attention = db.scalar(
        select(func.count(Payment.id)).where(Payment.org_id == int(org_id), attention_needed_clause())
    )

    return DashboardStats(
        month=month,
        expected_rent=int(expected or 0),
        collected=int(collected or 0),
        outstanding_balance=int(outstanding or 0),
        payments_needing_attention=int(attention or 0),
    )


def payment_detail(db: Session, *, org_id: int, payment_id: int) -> PaymentDetail:
    payment = must_get_payment(db, org_id=org_id, payment_id=payment_id)
    rows = db.execute(
        select(PaymentAllocation.id, PaymentAllocation.rent_charge_id, RentCharge.period, PaymentAllocation.allocated_amount)
        .join(RentCharge, RentCharge.id == PaymentAllocation.rent_charge_id)
        .where(PaymentAllocation.payment_id == payment.id)
        .order_by(RentCharge.period.asc(), PaymentAllocation.id.asc())
    ).all()

    lines = [
        AllocationLine(allocation_id=int(r[0]), rent_charge_id=int(r[1]), period=str(r[2]), allocated_amount=int(r[3]))
        for r in rows
    ]
    total = sum(l.allocated_amount for l in lines)
    return PaymentDetail(payment=payment, allocated_total=total, remaining=int(payment.amount) - total, lines=lines)
