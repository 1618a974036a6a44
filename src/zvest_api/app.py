from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from zvest_api.core.settings import settings
from zvest_api.db.session import async_session

from .api.routes import api_router
from .core.error_handlers import register_error_handlers
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import RedemptionExpiryWorker

APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    expiry_worker = RedemptionExpiryWorker(
        session_factory=_session_factory,
        interval_seconds=settings.redemption_expiry_interval_seconds,
        batch_size=settings.redemption_expiry_batch_size,
    )
    app.state.redemption_expiry_worker = expiry_worker

    expiry_enabled = settings.redemption_expiry_worker_enabled
    if expiry_enabled:
        expiry_worker.start()
        logger.info(
            "Redemption expiry worker enabled",
            interval_seconds=expiry_worker.interval_seconds,
            batch_size=settings.redemption_expiry_batch_size,
        )
    else:
        logger.info(
            "Redemption expiry worker disabled",
            reason="redemption_expiry_worker_enabled is false",
        )

    try:
        yield
    finally:
        if expiry_enabled and expiry_worker.is_running:
            await expiry_worker.stop()


def create_app() -> FastAPI:
    """Application factory for the Zvest loyalty API."""

    configure_logging(
        service_name="zvest-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Zvest Loyalty API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name="zvest-api",
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    register_error_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
