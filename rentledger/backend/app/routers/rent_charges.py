# backend/app/routers/rent_charges.py
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import get_principal, require_operator
from ..db import get_db
from ..domain.ledger import period_of
from ..schemas import ChargeSummaryOut, GenerateChargesIn, GenerateChargesOut, RentChargeOut
from ..services.charge_generator import generate_charges
from ..services.ledger_reports import charge_summary, list_charges

router = APIRouter(prefix="/rent-charges", tags=["rent-charges"])


@router.post("/generate", response_model=GenerateChargesOut)
def generate(payload: GenerateChargesIn, db: Session = Depends(get_db), p=Depends(require_operator)):
    """Create the missing charges for a period. A replay creates nothing and returns an empty list."""
    period = payload.period or period_of(date.today())
    try:
        rows = generate_charges(
            db,
            org_id=p.org_id,
            period=period,
            tenancy_ids=payload.tenancy_ids,
            actor_user_id=p.user_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return GenerateChargesOut(
        period=period,
        created_count=len(rows),
        charges=[RentChargeOut.model_validate(r) for r in rows],
    )


@router.get("", response_model=list[RentChargeOut])
def list_rent_charges(
    status: Optional[str] = Query(default=None, description="UNPAID|PARTIAL|PAID"),
    tenancy_id: Optional[int] = Query(default=None),
    period_from: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}$"),
    period_to: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}$"),
    limit: int = Query(default=1000, ge=1, le=5000),
    db: Session = Depends(get_db),
    p=Depends(get_principal),
):
    try:
        return list_charges(
            db,
            org_id=p.org_id,
            status=status,
            tenancy_id=tenancy_id,
            period_from=period_from,
            period_to=period_to,
            limit=limit,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/summary", response_model=ChargeSummaryOut)
def summary(
    as_of: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
    p=Depends(get_principal),
):
    return charge_summary(db, org_id=p.org_id, as_of=as_of)
