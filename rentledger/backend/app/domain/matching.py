# backend/app/domain/matching.py
from __future__ import annotations

import json
import re
from typing import Any, Optional

_NON_DIGITS = re.compile(r"\D+")


def normalize_phone(raw: Any, *, country_code: str = "254") -> Optional[str]:
    """
    Canonical form is country code + subscriber number, digits only.

      "0712 345 678"   -> "254712345678"
      "+254712345678"  -> "254712345678"
      "712345678"      -> "254712345678"
    """
    if raw is None:
        return None
    digits = _NON_DIGITS.sub("", str(raw))
    if not digits:
        return None

    cc = _NON_DIGITS.sub("", str(country_code or ""))
    if digits.startswith("00"):
        # international dialling prefix
        digits = digits[2:]
    elif digits.startswith("0"):
        return cc + digits[1:]
    if cc and digits.startswith(cc):
        return digits
    if len(digits) == 9:
        return cc + digits
    return digits


def normalize_reference(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    s = str(raw).strip()
    return s.lower() or None


def stored_phone_numbers(phone_numbers_json: Optional[str]) -> list[str]:
    """
    Tenant.phone_numbers holds a JSON list of strings or {"number": ...} objects.
    Unparseable content yields no numbers rather than an error.
    """
    if not phone_numbers_json:
        return []
    try:
        data = json.loads(phone_numbers_json)
    except (TypeError, ValueError):
        return []
    if not isinstance(data, list):
        return []

    out: list[str] = []
    for item in data:
        if isinstance(item, dict):
            num = item.get("number")
        else:
            num = item
        if num:
            out.append(str(num))
    return out


def tenant_has_phone(phone_numbers_json: Optional[str], canonical: str, *, country_code: str = "254") -> bool:
    for num in stored_phone_numbers(phone_numbers_json):
        if normalize_phone(num, country_code=country_code) == canonical:
            return True
    return False
