# backend/app/middleware/request_id.py
from __future__ import annotations

import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Iterator, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# gateway and proxy ids end up verbatim in JSON log lines
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

_current_id: ContextVar[Optional[str]] = ContextVar("rentledger_request_id", default=None)


def get_request_id() -> Optional[str]:
    return _current_id.get()


def new_request_id(prefix: Optional[str] = None) -> str:
    rid = uuid.uuid4().hex
    return f"{prefix}-{rid}" if prefix else rid


def accept_request_id(raw: Optional[str]) -> str:
    """Keep a caller-supplied id only if it is short and printable; otherwise mint one."""
    rid = (raw or "").strip()
    return rid if _SAFE_ID.match(rid) else new_request_id()


@contextmanager
def request_id_scope(rid: str) -> Iterator[str]:
    """Tag log lines emitted outside HTTP handling (beat tasks, CLI runs) with `rid`."""
    token = _current_id.set(rid)
    try:
        yield rid
    finally:
        _current_id.reset(token)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Correlates one request's log lines and echoes the id back to the caller."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        with request_id_scope(accept_request_id(request.headers.get(REQUEST_ID_HEADER))) as rid:
            request.state.request_id = rid
            resp = await call_next(request)
            resp.headers[REQUEST_ID_HEADER] = rid
            return resp
