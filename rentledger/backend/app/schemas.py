# backend/app/schemas.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# -------------------- Rent charges --------------------

class RentChargeOut(BaseModel):
    id: int
    tenancy_id: int
    period: str
    due_date: date
    amount: int
    balance: int
    status: str
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class GenerateChargesIn(BaseModel):
    # YYYY-MM; omitted means the current month
    period: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")
    tenancy_ids: Optional[list[int]] = None


class GenerateChargesOut(BaseModel):
    period: str
    created_count: int
    charges: list[RentChargeOut]


class ChargeSummaryOut(BaseModel):
    as_of: date
    unpaid_count: int
    partial_count: int
    paid_count: int
    total_outstanding: int
    overdue_count: int
    tenancies_with_balance: int
    units_with_balance: int
    properties_with_balance: int
    model_config = ConfigDict(from_attributes=True)


class DashboardOut(BaseModel):
    month: str
    expected_rent: int
    collected: int
    outstanding_balance: int
    payments_needing_attention: int
    model_config = ConfigDict(from_attributes=True)


# -------------------- Payments --------------------

class ManualPaymentIn(BaseModel):
    amount: int = Field(gt=0)
    paid_at: Optional[datetime] = None
    method: str = "CASH"
    reference: Optional[str] = None
    tenancy_id: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return (v or "CASH").strip().upper()


class PaymentUpdateIn(BaseModel):
    """Partial update. Only fields present in the request body are applied."""

    amount: Optional[int] = Field(default=None, gt=0)
    paid_at: Optional[datetime] = None
    method: Optional[str] = None
    raw_reference: Optional[str] = None
    tenancy_id: Optional[int] = None
    notes: Optional[str] = None


class ManualAllocationIn(BaseModel):
    tenancy_id: int
    rent_charge_id: int
    amount: int = Field(gt=0)


class PaymentOut(BaseModel):
    id: int
    tenancy_id: Optional[int] = None
    amount: int
    paid_at: datetime
    source: str
    method: str
    external_reference: Optional[str] = None
    raw_reference: Optional[str] = None
    originating_identifier: Optional[str] = None
    notes: Optional[str] = None
    is_fully_allocated: bool
    is_matched: bool
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AllocationLineOut(BaseModel):
    allocation_id: int
    rent_charge_id: int
    period: str
    allocated_amount: int
    model_config = ConfigDict(from_attributes=True)


class PaymentDetailOut(BaseModel):
    payment: PaymentOut
    allocated_total: int
    remaining: int
    lines: list[AllocationLineOut] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class PaymentCommandOut(BaseModel):
    payment: PaymentOut
    allocated_now: int = 0
    remaining: int = 0


# -------------------- Mobile money callback --------------------

class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"
