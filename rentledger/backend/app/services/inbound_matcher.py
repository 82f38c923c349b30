# backend/app/services/inbound_matcher.py
"""
Resolves a mobile-money notification to a tenancy, records the payment and
hands it to the allocation engine.

Precedence:
  1. external reference already stored -> no-op
  2. account reference == unit code (case-insensitive), exactly one billable tenancy on it
  3. payer phone (canonical form) on exactly one tenant, who has exactly one billable tenancy
  4. otherwise record the payment unlinked; it shows up in the attention view

More than one candidate at a step is never guessed at: that step yields no match.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.errors import AmbiguousMatch, DuplicateExternalReference
from ..domain.ledger import BILLABLE_TENANCY_STATUSES
from ..domain.matching import normalize_phone, normalize_reference, tenant_has_phone
from ..domain.notifications import InboundNotification
from ..models import Payment, Tenancy, Tenant, Unit
from .allocation_engine import auto_allocate
from .payment_store import AUTOMATIC, MPESA, add_payment, find_by_external_reference, refresh_allocation_state

log = logging.getLogger("rentledger.matcher")

MATCHED_BY_UNIT_CODE = "unit_code"
MATCHED_BY_PHONE = "phone"


@dataclass(frozen=True)
class MatchOutcome:
    tenancy_id: Optional[int]
    matched_by: Optional[str] = None
    ambiguous: bool = False


@dataclass(frozen=True)
class NotificationResult:
    payment_id: Optional[int]
    duplicate: bool
    tenancy_id: Optional[int]
    matched_by: Optional[str]
    is_matched: bool


def _single(ids: list[int], *, what: str) -> Optional[int]:
    if len(ids) == 1:
        return int(ids[0])
    if len(ids) > 1:
        raise AmbiguousMatch(f"{len(ids)} candidate {what}")
    return None


def _billable_tenancy_ids(db: Session, *, org_id: int, **filters) -> list[int]:
    q = select(Tenancy.id).where(
        Tenancy.org_id == int(org_id),
        Tenancy.status.in_(BILLABLE_TENANCY_STATUSES),
    )
    for col, values in filters.items():
        q = q.where(getattr(Tenancy, col).in_(values))
    return [int(x) for x in db.scalars(q).all()]


def match_by_unit_code(db: Session, *, org_id: int, reference: Optional[str]) -> Optional[int]:
    ref = normalize_reference(reference)
    if not ref:
        return None
    unit_ids = list(
        db.scalars(
            select(Unit.id).where(Unit.org_id == int(org_id), func.lower(func.trim(Unit.unit_code)) == ref)
        ).all()
    )
    if not unit_ids:
        return None
    return _single(_billable_tenancy_ids(db, org_id=org_id, unit_id=unit_ids), what="tenancies for unit code")


def match_by_phone(db: Session, *, org_id: int, phone: Optional[str]) -> Optional[int]:
    cc = settings.phone_country_code
    canonical = normalize_phone(phone, country_code=cc)
    if not canonical:
        return None

    tenants = db.scalars(
        select(Tenant).where(Tenant.org_id == int(org_id), Tenant.phone_numbers.is_not(None))
    ).all()
    tenant_ids = [int(t.id) for t in tenants if tenant_has_phone(t.phone_numbers, canonical, country_code=cc)]

    tenant_id = _single(tenant_ids, what="tenants for phone")
    if tenant_id is None:
        return None
    return _single(_billable_tenancy_ids(db, org_id=org_id, tenant_id=[tenant_id]), what="tenancies for tenant")


def resolve_tenancy(
    db: Session, *, org_id: int, reference: Optional[str], phone: Optional[str]
) -> MatchOutcome:
    ambiguous = False

    try:
        tid = match_by_unit_code(db, org_id=org_id, reference=reference)
        if tid is not None:
            return MatchOutcome(tenancy_id=tid, matched_by=MATCHED_BY_UNIT_CODE)
    except AmbiguousMatch as e:
        ambiguous = True
        log.info("unit code match ambiguous: %s", e.message, extra={"org_id": org_id})

    try:
        tid = match_by_phone(db, org_id=org_id, phone=phone)
        if tid is not None:
            return MatchOutcome(tenancy_id=tid, matched_by=MATCHED_BY_PHONE)
    except AmbiguousMatch as e:
        ambiguous = True
        log.info("phone match ambiguous: %s", e.message, extra={"org_id": org_id})

    return MatchOutcome(tenancy_id=None, ambiguous=ambiguous)


def _record(db: Session, *, org_id: int, n: InboundNotification) -> NotificationResult:
    if find_by_external_reference(db, n.transaction_id) is not None:
        raise DuplicateExternalReference(n.transaction_id)

    outcome = resolve_tenancy(db, org_id=org_id, reference=n.account_reference, phone=n.payer_phone)

    payment: Payment = add_payment(
        db,
        org_id=org_id,
        amount=n.amount,
        source=AUTOMATIC,
        method=MPESA,
        paid_at=n.received_at,
        tenancy_id=outcome.tenancy_id,
        external_reference=n.transaction_id,
        raw_reference=n.account_reference,
        originating_identifier=n.payer_phone,
    )

    if outcome.tenancy_id is not None:
        auto_allocate(db, org_id=org_id, payment=payment, tenancy_id=outcome.tenancy_id)
    else:
        refresh_allocation_state(db, payment)

    db.commit()
    return NotificationResult(
        payment_id=int(payment.id),
        duplicate=False,
        tenancy_id=outcome.tenancy_id,
        matched_by=outcome.matched_by,
        is_matched=bool(payment.is_matched),
    )


def process_notification(db: Session, *, org_id: int, notification: InboundNotification) -> NotificationResult:
    """
    Idempotent on transaction id. A replay, or a concurrent delivery that loses
    the unique-constraint race, returns duplicate=True and writes nothing.
    """
    extra = {"org_id": org_id, "external_reference": notification.transaction_id}
    try:
        res = _record(db, org_id=org_id, n=notification)
    except (DuplicateExternalReference, IntegrityError):
        db.rollback()
        existing = find_by_external_reference(db, notification.transaction_id)
        if existing is None:
            raise
        log.info("duplicate notification ignored", extra=extra)
        return NotificationResult(
            payment_id=int(existing.id),
            duplicate=True,
            tenancy_id=existing.tenancy_id,
            matched_by=None,
            is_matched=bool(existing.is_matched),
        )
    except Exception:
        db.rollback()
        raise

    log.info(
        "mobile money payment recorded",
        extra={**extra, "payment_id": res.payment_id, "tenancy_id": res.tenancy_id, "matched_by": res.matched_by},
    )
    return res
