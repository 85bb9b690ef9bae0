from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from lendops.core.events.registry import get_event_bus
from lendops.core.events.routes import router as events_router
from lendops.core.logging import configure_logging
from lendops.core.middleware.request_id import RequestIdMiddleware
from lendops.domain.alerts.routes import router as alerts_router
from lendops.domain.analytics.routes import router as analytics_router
from lendops.domain.funds.routes.funds import router as funds_router
from lendops.domain.inspections.routes import router as inspections_router
from lendops.domain.loans.routes import router as loans_router
from lendops.domain.payments.routes import router as payments_router
from lendops.shared.exceptions import (
    AppError,
    Conflict,
    InsufficientCapital,
    InvalidTransition,
    NotFound,
    ValidationError,
)

logger = structlog.get_logger(__name__)

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
    Conflict: status.HTTP_409_CONFLICT,
    InsufficientCapital: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def status_for(exc: AppError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in ERROR_STATUS:
            return ERROR_STATUS[exc_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    code = status_for(exc)
    log = logger.warning if code < 500 else logger.error
    log("request_failed", kind=exc.kind, status_code=code, path=request.url.path, message=exc.message)
    return JSONResponse(status_code=code, content={"kind": exc.kind, "message": exc.message})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Drain background event deliveries on shutdown."""
    yield
    # Only a bus that was actually built owns a dispatch executor.
    if get_event_bus.cache_info().currsize:
        get_event_bus().shutdown(wait=True)
        logger.info("event_bus_shutdown")


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="LendOps Capital Core - Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)

    @app.get("/health", tags=["admin"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(loans_router)
    app.include_router(funds_router)
    app.include_router(payments_router)
    app.include_router(inspections_router)
    app.include_router(alerts_router)
    app.include_router(analytics_router)
    app.include_router(events_router)

    # /api aliases, mirroring the proxy path used by the dashboard.
    for router in (
        loans_router,
        funds_router,
        payments_router,
        inspections_router,
        alerts_router,
        analytics_router,
        events_router,
    ):
        app.include_router(router, prefix="/api")

    return app


app = create_app()
