# backend/app/middleware/structured_logging.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings

log = logging.getLogger("rentledger.request")


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    One `http_request` line per request: method, path, status_code, latency_ms and
    the org slug header. The callback route has no org header; its landlord id is
    in the query string, which is logged too.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        t0 = time.time()
        org_slug: Optional[str] = request.headers.get(settings.dev_header_org_slug)

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            log.info(
                "http_request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "query": str(request.url.query) if request.url.query else "",
                    "status_code": status_code,
                    "latency_ms": int((time.time() - t0) * 1000),
                    "org_slug": org_slug,
                },
            )
