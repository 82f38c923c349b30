# backend/app/services/charge_generator.py
from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.audit import audit_write
from ..domain.ledger import (
    BILLABLE_TENANCY_STATUSES,
    charge_status,
    due_date_for,
    parse_period,
    period_of,
    tenancy_covers_period,
)
from ..models import Organization, RentCharge, Tenancy

log = logging.getLogger("rentledger.charges")


def _default_due_day(db: Session, org_id: int) -> int:
    org = db.get(Organization, int(org_id))
    if org is not None and org.default_rent_due_day:
        return int(org.default_rent_due_day)
    return int(settings.default_rent_due_day)


def _billable_tenancies(
    db: Session, *, org_id: int, period: str, tenancy_ids: Optional[Iterable[int]]
) -> list[Tenancy]:
    q = select(Tenancy).where(
        Tenancy.org_id == int(org_id),
        Tenancy.status.in_(BILLABLE_TENANCY_STATUSES),
    )
    if tenancy_ids is not None:
        ids = [int(x) for x in tenancy_ids]
        if not ids:
            return []
        q = q.where(Tenancy.id.in_(ids))

    rows = db.scalars(q.order_by(Tenancy.id.asc())).all()
    return [t for t in rows if tenancy_covers_period(t.start_date, t.end_date, period)]


def _insert_missing(
    db: Session, *, org_id: int, period: str, tenancy_ids: Optional[Iterable[int]]
) -> list[RentCharge]:
    tenancies = _billable_tenancies(db, org_id=org_id, period=period, tenancy_ids=tenancy_ids)
    if not tenancies:
        return []

    existing = set(
        db.scalars(
            select(RentCharge.tenancy_id).where(
                RentCharge.period == period,
                RentCharge.tenancy_id.in_([t.id for t in tenancies]),
            )
        ).all()
    )

    default_day = _default_due_day(db, org_id)
    created: list[RentCharge] = []
    for t in tenancies:
        if t.id in existing:
            continue
        amount = int(t.monthly_rent_amount)
        row = RentCharge(
            org_id=int(org_id),
            tenancy_id=int(t.id),
            period=period,
            due_date=due_date_for(period, t.rent_due_day, default_day),
            amount=amount,
            balance=amount,
            status=charge_status(amount, amount),
        )
        db.add(row)
        created.append(row)

    db.flush()
    return created


def generate_charges(
    db: Session,
    *,
    org_id: int,
    period: str,
    tenancy_ids: Optional[Iterable[int]] = None,
    actor_user_id: Optional[int] = None,
) -> list[RentCharge]:
    """
    Create one RentCharge per billable tenancy for `period`, skipping tenancies
    that already have one. Returns only the rows created by this call, so a
    replay for the same period returns [].

    Commits. A concurrent generator that wins the unique (tenancy_id, period)
    race makes our flush fail; we roll back and redo the pass once, which then
    sees the winner's rows as existing.
    """
    parse_period(period)
    ids = list(tenancy_ids) if tenancy_ids is not None else None

    for attempt in (1, 2):
        try:
            created = _insert_missing(db, org_id=org_id, period=period, tenancy_ids=ids)
            if created:
                audit_write(
                    db,
                    org_id=org_id,
                    actor_user_id=actor_user_id,
                    action="rent_charges.generate",
                    entity_type="RentCharge",
                    entity_id=period,
                    after={"period": period, "created": len(created), "rent_charge_ids": [c.id for c in created]},
                )
            db.commit()
        except IntegrityError:
            db.rollback()
            if attempt == 2:
                raise
            log.info(
                "charge generation raced another writer; retrying",
                extra={"org_id": org_id, "period": period},
            )
            continue

        log.info(
            "generated rent charges",
            extra={"org_id": org_id, "period": period, "created_count": len(created)},
        )
        return created

    return []


def generate_charges_for_current_month(
    db: Session, *, org_id: int, today: Optional[date] = None, actor_user_id: Optional[int] = None
) -> list[RentCharge]:
    return generate_charges(
        db,
        org_id=org_id,
        period=period_of(today or date.today()),
        actor_user_id=actor_user_id,
    )
