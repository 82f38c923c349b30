# backend/app/routers/dashboard.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import get_principal
from ..db import get_db
from ..schemas import DashboardOut
from ..services.ledger_reports import dashboard_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardOut)
def dashboard(
    month: Optional[str] = Query(default=None, description="YYYY-MM, defaults to the current month"),
    db: Session = Depends(get_db),
    p=Depends(get_principal),
):
    try:
        return dashboard_stats(db, org_id=p.org_id, month=month)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
