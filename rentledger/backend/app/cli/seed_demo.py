# backend/app/cli/seed_demo.py
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.models import AppUser, Organization, OrgMembership, Property, Tenancy, Tenant, Unit


@dataclass(frozen=True)
class SeedResult:
    org_id: int
    org_slug: str
    user_email: str
    tenancy_id: int
    unit_code: str


def _get_or_create_org(db: Session, slug: str, name: str) -> Organization:
    row = db.scalar(select(Organization).where(Organization.slug == slug))
    if row:
        return row
    row = Organization(slug=slug, name=name)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _get_or_create_user(db: Session, email: str) -> AppUser:
    row = db.scalar(select(AppUser).where(AppUser.email == email))
    if row:
        return row
    row = AppUser(email=email, display_name=email.split("@")[0])
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _ensure_membership(db: Session, org_id: int, user_id: int, role: str = "owner") -> None:
    existing = db.scalar(
        select(OrgMembership).where(OrgMembership.org_id == int(org_id), OrgMembership.user_id == int(user_id))
    )
    if existing:
        return
    db.add(OrgMembership(org_id=int(org_id), user_id=int(user_id), role=str(role)))
    db.commit()


def _ensure_tenancy(db: Session, org_id: int, unit_code: str) -> Tenancy:
    unit = db.scalar(select(Unit).where(Unit.org_id == int(org_id), Unit.unit_code == unit_code))
    if unit is not None:
        existing = db.scalar(select(Tenancy).where(Tenancy.unit_id == unit.id).order_by(Tenancy.id.asc()))
        if existing is not None:
            return existing

    prop = Property(org_id=int(org_id), property_name="Demo Court", location="Nairobi")
    db.add(prop)
    db.flush()

    if unit is None:
        unit = Unit(org_id=int(org_id), property_id=prop.id, unit_code=unit_code, monthly_rent_amount=1000)
        db.add(unit)
        db.flush()

    tenant = Tenant(
        org_id=int(org_id),
        full_name="Demo Tenant",
        phone_numbers=json.dumps([{"number": "0712345678", "label": "primary"}]),
    )
    db.add(tenant)
    db.flush()

    tenancy = Tenancy(
        org_id=int(org_id),
        unit_id=unit.id,
        tenant_id=tenant.id,
        start_date=date.today().replace(day=1),
        monthly_rent_amount=int(unit.monthly_rent_amount),
        rent_due_day=5,
        status="ACTIVE",
    )
    db.add(tenancy)
    db.commit()
    db.refresh(tenancy)
    return tenancy


def seed_demo(
    *,
    org_slug: str = "demo",
    org_name: str = "Demo Properties",
    user_email: str = "landlord@demo.local",
    unit_code: str = "A1",
) -> SeedResult:
    """Idempotent: re-running returns the same landlord and tenancy."""
    db = SessionLocal()
    try:
        org = _get_or_create_org(db, org_slug, org_name)
        user = _get_or_create_user(db, user_email)
        _ensure_membership(db, org.id, user.id, role="owner")
        tenancy = _ensure_tenancy(db, org.id, unit_code)
        return SeedResult(
            org_id=int(org.id),
            org_slug=str(org.slug),
            user_email=str(user.email),
            tenancy_id=int(tenancy.id),
            unit_code=unit_code,
        )
    finally:
        db.close()
