from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from sqlalchemy.engine import make_url

from loyalty_ledger.core.settings import settings
from loyalty_ledger.db.session import engine
from .api.errors import register_error_handlers
from .api.routes import api_router
from .api.v1.endpoints import health
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = "0.1.0"
SERVICE_NAME = "loyalty-ledger"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Loyalty ledger starting",
        database_backend=make_url(settings.database_url).get_backend_name(),
        tiers=[tier.name for tier in settings.loyalty_tiers],
        redemption_increment=settings.loyalty_redemption_increment,
    )
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Loyalty ledger stopped")


def create_app() -> FastAPI:
    """Application factory for the loyalty ledger service."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Loyalty Ledger API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name=SERVICE_NAME,
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    register_error_handlers(app)
    app.include_router(health.router, tags=["Health"])
    app.include_router(api_router)

    return app
