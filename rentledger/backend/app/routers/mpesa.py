# backend/app/routers/mpesa.py
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..domain.errors import LedgerError
from ..domain.notifications import parse_callback
from ..schemas import CallbackAck
from ..services.inbound_matcher import process_notification
from ..services.ownership import get_org

log = logging.getLogger("rentledger.callback")

router = APIRouter(prefix="/mpesa", tags=["mpesa"])


@router.post("/callback", response_model=CallbackAck)
def callback(
    body: Any = Body(default=None),
    landlord_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
):
    """
    Gateway webhook. The gateway retries anything that is not an acknowledgement,
    so every outcome (rejected payload, unknown landlord, processing failure) is
    logged and acknowledged.
    """
    ack = CallbackAck()

    if landlord_id is None or get_org(db, landlord_id) is None:
        log.warning("callback for unknown landlord", extra={"org_id": landlord_id})
        return ack

    try:
        notification = parse_callback(body)
    except LedgerError as e:
        log.warning("callback payload rejected: %s", e.message, extra={"org_id": landlord_id})
        return ack
    except Exception:
        log.exception("callback payload could not be parsed", extra={"org_id": landlord_id})
        return ack

    if notification is None:
        log.info("callback ignored (unsuccessful or unrecognised)", extra={"org_id": landlord_id})
        return ack

    try:
        process_notification(db, org_id=int(landlord_id), notification=notification)
    except LedgerError as e:
        log.warning(
            "callback rejected: %s",
            e.message,
            extra={"org_id": landlord_id, "external_reference": notification.transaction_id},
        )
    except Exception:
        log.exception(
            "callback processing failed",
            extra={"org_id": landlord_id, "external_reference": notification.transaction_id},
        )
    return ack
