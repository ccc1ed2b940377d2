"""FastAPI application entrypoint."""
from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import plans
from .config import get_settings
from .domain.errors import PlanningError
from .observability.logging import configure_logging
from .observability.otel import configure_telemetry
from .persistence.db import init_db

logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="ART Planner",
        version="0.1.0",
        openapi_version="3.1.0",
        docs_url="/docs",
        redoc_url=None,
    )

    configure_logging()
    configure_telemetry()

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - FastAPI lifecycle
        await init_db()

    @app.exception_handler(PlanningError)
    async def _planning_error_handler(request: Request, exc: PlanningError):
        logger.warning("plan.rejected", code=exc.error_code, message=exc.message, path=request.url.path)
        return JSONResponse(
            status_code=422,
            content={
                "error": type(exc).__name__,
                "code": exc.error_code,
                "message": exc.message,
                "affectedItems": exc.affected_items,
            },
        )

    @app.exception_handler(Exception)
    async def _generic_exception_handler(request: Request, exc: Exception):  # pragma: no cover - fallback
        logger.exception("request.failed", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "InternalServerError",
                "message": str(exc),
                "remediation": "Contact the planning team with the correlation ID",
            },
        )

    app.include_router(plans.router)

    @app.get("/healthz")
    async def healthcheck():
        return {"status": "ok", "environment": settings.environment}

    return app


app = create_app()


__all__ = ["app", "create_app"]
