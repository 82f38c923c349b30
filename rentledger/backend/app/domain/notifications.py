# backend/app/domain/notifications.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from .errors import InvalidNotification


@dataclass(frozen=True)
class InboundNotification:
    """What the mobile-money collaborator delivers, reduced to the fields matching needs."""

    transaction_id: str
    amount: int
    payer_phone: Optional[str]
    account_reference: Optional[str]
    received_at: datetime


def _whole_amount(v: Any) -> int:
    if v is None or v == "":
        return 0
    try:
        d = Decimal(str(v))
    except (InvalidOperation, ValueError):
        raise InvalidNotification(f"amount is not a number: {v!r}")
    if not d.is_finite():
        raise InvalidNotification(f"amount is not a number: {v!r}")
    return int(d.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _parse_trans_time(v: Any) -> Optional[datetime]:
    # C2B TransTime: YYYYMMDDHHMMSS
    if not v:
        return None
    try:
        return datetime.strptime(str(v).strip(), "%Y%m%d%H%M%S")
    except ValueError:
        return None


def _clean(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def build_notification(
    *,
    transaction_id: Any,
    amount: Any,
    payer_phone: Any = None,
    account_reference: Any = None,
    received_at: Optional[datetime] = None,
) -> InboundNotification:
    """
    Validating constructor. A missing transaction id or a zero/negative amount
    is rejected here, before anything reaches the matcher.
    """
    tid = _clean(transaction_id)
    if not tid:
        raise InvalidNotification("transactionId is required")

    amt = _whole_amount(amount)
    if amt <= 0:
        raise InvalidNotification(f"amount must be positive (transactionId={tid})")

    return InboundNotification(
        transaction_id=tid,
        amount=amt,
        payer_phone=_clean(payer_phone),
        account_reference=_clean(account_reference),
        received_at=received_at or datetime.utcnow(),
    )


def _stk_item(items: list[dict[str, Any]], name: str) -> Any:
    for it in items:
        if isinstance(it, dict) and it.get("Name") == name:
            return it.get("Value")
    return None


def _parse_stk(stk: Any) -> Optional[InboundNotification]:
    if not isinstance(stk, dict):
        raise InvalidNotification("stkCallback must be an object")

    try:
        result_code = int(stk.get("ResultCode", 1))
    except (TypeError, ValueError):
        raise InvalidNotification(f"stkCallback ResultCode is not a number: {stk.get('ResultCode')!r}")
    if result_code != 0:
        return None

    meta = stk.get("CallbackMetadata")
    items = meta.get("Item") if isinstance(meta, dict) else None
    if not isinstance(items, list):
        raise InvalidNotification("successful stkCallback without CallbackMetadata items")

    return build_notification(
        transaction_id=_stk_item(items, "MpesaReceiptNumber"),
        amount=_stk_item(items, "Amount"),
        payer_phone=_stk_item(items, "PhoneNumber"),
        account_reference=None,
    )


def parse_callback(body: dict[str, Any]) -> Optional[InboundNotification]:
    """
    Normalise either gateway payload shape.

    - C2B confirmation (paybill/till): flat TransID / TransAmount / MSISDN / BillRefNumber.
    - STK push result: Body.stkCallback with CallbackMetadata items. A non-zero
      ResultCode means the payer cancelled or the push failed; nothing to record.

    Returns None for payloads that carry no payment.
    """
    if not isinstance(body, dict):
        raise InvalidNotification("callback body must be a JSON object")

    stk = body.get("Body").get("stkCallback") if isinstance(body.get("Body"), dict) else None
    if stk is not None:
        return _parse_stk(stk)

    if "TransID" in body or "TransAmount" in body:
        return build_notification(
            transaction_id=body.get("TransID"),
            amount=body.get("TransAmount"),
            payer_phone=body.get("MSISDN"),
            account_reference=body.get("BillRefNumber"),
            received_at=_parse_trans_time(body.get("TransTime")),
        )

    return None
