# backend/app/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .domain.errors import LedgerError
from .logging_config import configure_logging

from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware

from .routers.health import router as health_router
from .routers.dashboard import router as dashboard_router
from .routers.rent_charges import router as rent_charges_router
from .routers.payments import router as payments_router
from .routers.mpesa import router as mpesa_router

API_PREFIX = "/api"

log = logging.getLogger("rentledger.api")


def _cors_origins() -> list[str]:
    val = settings.cors_allow_origins
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("ledger error: %s", exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="Rent Ledger", version=settings.api_version)

    # starlette runs the last-added middleware first; request id must wrap the request log
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(dashboard_router, prefix=API_PREFIX)

    # Ledger
    app.include_router(rent_charges_router, prefix=API_PREFIX)
    app.include_router(payments_router, prefix=API_PREFIX)

    # Gateway webhook
    app.include_router(mpesa_router, prefix=API_PREFIX)

    return app


app = create_app()
