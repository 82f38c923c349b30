# backend/app/domain/audit.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from ..models import AuditEvent


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, sort_keys=True, default=str)


def snapshot(row: Any, fields: Iterable[str]) -> dict[str, Any]:
    return {f: getattr(row, f, None) for f in fields}


PAYMENT_AUDIT_FIELDS = (
    "id",
    "amount",
    "paid_at",
    "source",
    "method",
    "tenancy_id",
    "external_reference",
    "raw_reference",
    "is_fully_allocated",
    "is_matched",
)


def audit_write(
    db: Session,
    *,
    org_id: int,
    actor_user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: str,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
) -> AuditEvent:
    """
    Adds the audit row to the caller's transaction. Never commits: the ledger
    command that produced the change commits it together with the change.
    """
    row = AuditEvent(
        org_id=org_id,
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_dumps(before),
        after_json=_dumps(after),
        created_at=datetime.utcnow(),
    )
    db.add(row)
    return row
