# backend/app/domain/ledger.py
from __future__ import annotations

import calendar
import re
from datetime import date, datetime
from typing import Optional

UNPAID = "UNPAID"
PARTIAL = "PARTIAL"
PAID = "PAID"

CHARGE_STATUSES = (UNPAID, PARTIAL, PAID)

# tenancy statuses that owe rent and can receive payments
BILLABLE_TENANCY_STATUSES = ("ACTIVE", "NOTICE")

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def charge_status(amount: int, balance: int) -> str:
    """
    Status is a pure function of (amount, balance).

    PAID iff balance == 0, UNPAID iff balance == amount, PARTIAL otherwise.
    Zero-amount charges are PAID.
    """
    amount = int(amount)
    balance = int(balance)
    if balance < 0 or balance > amount:
        raise ValueError(f"balance {balance} outside [0, {amount}]")
    if balance == 0:
        return PAID
    if balance == amount:
        return UNPAID
    return PARTIAL


def parse_period(period: str) -> tuple[int, int]:
    m = _PERIOD_RE.match((period or "").strip())
    if not m:
        raise ValueError(f"period must be YYYY-MM, got {period!r}")
    y, mo = int(m.group(1)), int(m.group(2))
    if not 1 <= mo <= 12:
        raise ValueError(f"period month out of range: {period!r}")
    return y, mo


def format_period(year: int, month: int) -> str:
    return f"{int(year):04d}-{int(month):02d}"


def period_of(d: date | datetime) -> str:
    return format_period(d.year, d.month)


def period_bounds(period: str) -> tuple[date, date]:
    y, m = parse_period(period)
    last_day = calendar.monthrange(y, m)[1]
    return date(y, m, 1), date(y, m, last_day)


def due_date_for(period: str, rent_due_day: Optional[int], default_due_day: int) -> date:
    """Due day clamps to the month's last day (31 -> Feb 28/29)."""
    y, m = parse_period(period)
    day = int(rent_due_day or default_due_day)
    if day < 1:
        day = 1
    last_day = calendar.monthrange(y, m)[1]
    return date(y, m, min(day, last_day))


def tenancy_covers_period(start_date: date, end_date: Optional[date], period: str) -> bool:
    first, last = period_bounds(period)
    if start_date > last:
        return False
    if end_date is not None and end_date < first:
        return False
    return True
