# backend/tests/conftest.py
from __future__ import annotations

import json
import os
import tempfile
from datetime import date

# settings are read at import time; point them at a throwaway database first
_DB_DIR = tempfile.mkdtemp(prefix="rentledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'ledger.db')}"
os.environ["APP_ENV"] = "test"
os.environ["AUTH_MODE"] = "dev"

import pytest

from app import models  # noqa: F401  (registers tables on Base.metadata)
from app.db import Base, SessionLocal, engine
from app.models import Organization, Property, Tenancy, Tenant, Unit


@pytest.fixture(scope="session", autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def org_id(db) -> int:
    org = Organization(slug="landlord-a", name="Landlord A")
    db.add(org)
    db.commit()
    db.refresh(org)
    return int(org.id)


@pytest.fixture()
def make_tenancy(db):
    """
    Builds property -> unit -> tenant -> tenancy in one go and returns the tenancy.
    Pass `unit_id` to put a second tenancy on an existing unit.
    """

    def _make(
        org_id: int,
        *,
        unit_code: str = "A1",
        unit_id: int | None = None,
        rent: int = 25000,
        phones: list | None = None,
        status: str = "ACTIVE",
        start_date: date = date(2024, 1, 1),
        end_date: date | None = None,
        rent_due_day: int | None = 5,
    ) -> Tenancy:
        if unit_id is None:
            prop = Property(org_id=org_id, property_name=f"Block {unit_code}", location="Nairobi")
            db.add(prop)
            db.flush()
            unit = Unit(org_id=org_id, property_id=prop.id, unit_code=unit_code, monthly_rent_amount=rent)
            db.add(unit)
            db.flush()
            unit_id = unit.id

        tenant = Tenant(
            org_id=org_id,
            full_name=f"Tenant {unit_code}",
            phone_numbers=json.dumps(phones) if phones is not None else None,
        )
        db.add(tenant)
        db.flush()

        t = Tenancy(
            org_id=org_id,
            unit_id=unit_id,
            tenant_id=tenant.id,
            start_date=start_date,
            end_date=end_date,
            monthly_rent_amount=rent,
            rent_due_day=rent_due_day,
            status=status,
        )
        db.add(t)
        db.commit()
        db.refresh(t)
        return t

    return _make
