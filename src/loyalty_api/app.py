from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from loyalty_api.core.settings import settings
from loyalty_api.db.session import async_session
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import CardMaintenanceWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    maintenance_worker = CardMaintenanceWorker(
        session_factory=_session_factory,
        interval_seconds=settings.card_maintenance_interval_seconds,
        expiry_batch_size=settings.card_expiry_batch_size,
        outbox_batch_size=settings.outbox_dispatch_batch_size,
    )
    app.state.card_maintenance_worker = maintenance_worker

    maintenance_enabled = settings.card_maintenance_worker_enabled
    if maintenance_enabled:
        maintenance_worker.start()
        logger.info(
            "Card maintenance worker enabled",
            interval_seconds=maintenance_worker.interval_seconds,
            expiry_batch_size=settings.card_expiry_batch_size,
            outbox_batch_size=settings.outbox_dispatch_batch_size,
        )
    else:
        logger.info(
            "Card maintenance worker disabled",
            reason="card_maintenance_worker_enabled is false",
        )

    try:
        yield
    finally:
        if maintenance_enabled and maintenance_worker.is_running:
            await maintenance_worker.stop()


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error while serving request", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    """Application factory for the loyalty FastAPI service."""
    configure_logging(
        service_name="loyalty-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Loyalty API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        settings=settings,
        service_name="loyalty-api",
        service_version=APP_VERSION,
    )

    app.add_exception_handler(Exception, _unhandled_exception_handler)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
