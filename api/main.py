"""
Main FastAPI application for the Carrera Cars lead bot.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import webhooks, followups
from .services import get_services, initialize_services
from .middleware.metrics import MetricsMiddleware, metrics_endpoint
from config.settings import get_settings
from database.session import init_db, close_db

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./leadbot.db"


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Lead bot starting up...")

    database_url = settings.database_url
    if not database_url:
        logger.warning(f"DATABASE_URL not set, using {DEFAULT_DATABASE_URL}")
        database_url = DEFAULT_DATABASE_URL
    await init_db(database_url)

    initialize_services()
    services = get_services()
    if services.notifier:
        services.notifier.start()

    logger.info("Lead bot ready")
    yield
    logger.info("Lead bot shutting down...")

    if services.notifier:
        await services.notifier.stop()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.api_title,
        description="WhatsApp and Facebook Lead Ads qualification bot for a used-car dealership.",
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    # Meta is configured with the bare /webhooks/<channel> path
    app.include_router(webhooks.router, tags=["Webhooks"])
    app.include_router(followups.router, prefix="/api/v1", tags=["Follow-ups"])

    app.get("/metrics", tags=["Monitoring"])(metrics_endpoint)

    @app.get("/")
    async def root():
        return {
            "service": f"{settings.brand_name} Lead Bot",
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
        }

    @app.get("/health")
    async def health():
        services = get_services()
        return {
            "status": "healthy" if services.is_ready else "degraded",
            "services": services.health(),
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
