"""Basal Loop FastAPI application."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from basal_loop import __version__
from basal_loop.config import Settings, settings
from basal_loop.database import close_database, init_database
from basal_loop.dependencies import build_components
from basal_loop.logging_config import get_logger, setup_logging
from basal_loop.middleware import CorrelationIdMiddleware
from basal_loop.routers import health, smb_basal
from basal_loop.services.loop_sources import (
    BasalProfileProvider,
    DosingLoop,
    GlucoseSource,
)
from basal_loop.services.pump_driver import PumpDriver
from basal_loop.services.scheduler import stop_scheduler

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    await init_database()
    logger.info("Pump history database ready")

    components = app.state.smb_basal
    if components is not None and components.manager.enabled:
        await components.manager.start()

    yield

    logger.info("Shutting down Basal Loop...")
    if components is not None:
        await components.manager.stop()
    stop_scheduler()
    await close_database()
    logger.info("Basal Loop shutdown complete")


def create_app(
    driver: PumpDriver | None = None,
    basal_profile: BasalProfileProvider | None = None,
    *,
    glucose_source: GlucoseSource | None = None,
    dosing_loop: DosingLoop | None = None,
    config: Settings | None = None,
) -> FastAPI:
    """Build the application around a pump driver.

    Without a driver the health endpoints still work and the SMB-basal
    endpoints answer 503.
    """
    app = FastAPI(
        title="Basal Loop",
        description="SMB-basal delivery and insulin-on-board service",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.smb_basal = None
    if driver is not None:
        app.state.smb_basal = build_components(
            driver,
            basal_profile or list,
            glucose_source=glucose_source,
            dosing_loop=dosing_loop,
            config=config,
        )

    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(health.router)
    app.include_router(smb_basal.router)

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint."""
        return {
            "name": "Basal Loop",
            "version": __version__,
            "docs": "/docs",
        }

    return app


app = create_app()
