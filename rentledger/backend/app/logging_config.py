# backend/app/logging_config.py
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .middleware.request_id import get_request_id

# Optional structured extras, copied onto the JSON line when set on the record
LEDGER_EXTRAS = (
    "org_id",
    "user_id",
    "payment_id",
    "tenancy_id",
    "rent_charge_id",
    "period",
    "external_reference",
    "matched_by",
    "remaining",
    "reversed_count",
    "created_count",
    # http_request lines
    "method",
    "path",
    "query",
    "status_code",
    "latency_ms",
    "org_slug",
)


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line: ts, level, logger, message, request_id (when inside a
    request), exception text, plus any ledger extras passed via `extra=`.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for k in LEDGER_EXTRAS:
            if hasattr(record, k):
                payload[k] = getattr(record, k)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    level = (os.getenv("LOG_LEVEL") or "INFO").upper()

    root = logging.getLogger()
    root.setLevel(level)

    # uvicorn --reload re-runs this; drop the previous handler
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel((os.getenv("SQL_LOG_LEVEL") or "WARNING").upper())
