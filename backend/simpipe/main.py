"""Main FastAPI application for the simulation pipeline."""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from simpipe.config import settings
from simpipe.database import Base, init_db
from simpipe.routers import simulation_routes
from simpipe.scheduler import start_scheduler, stop_scheduler
from simpipe.services.pipeline import Pipeline, create_pipeline

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(pipeline: Optional[Pipeline] = None) -> FastAPI:
    """
    Build the FastAPI app.

    With no pipeline given, one is built from settings on startup and the
    database tables are created.
    """
    app = FastAPI(
        title="Simulation Pipeline API",
        description="Asynchronous campaign performance simulation jobs",
        version=VERSION,
        redirect_slashes=False
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(simulation_routes.router)  # Already has /api/v1/simulations prefix

    # ============================================
    # HEALTH & ROOT ENDPOINTS
    # ============================================

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        current = getattr(app.state, "pipeline", None)
        return {
            "status": "healthy" if current is not None else "starting",
            "version": VERSION,
            "environment": settings.ENVIRONMENT,
            "registered_tables": list(Base.metadata.tables.keys()),
            "workers_running": current.workers.running if current is not None else False,
            "queue": await current.service.status_counts() if current is not None else {},
        }

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": "Simulation Pipeline API",
            "version": VERSION,
            "docs": "/docs",
            "health": "/health"
        }

    # ============================================
    # STARTUP & SHUTDOWN
    # ============================================

    @app.on_event("startup")
    async def startup_event():
        """Run on application startup."""
        logger.info("Starting Simulation Pipeline API...")
        if pipeline is None:
            await init_db()
            app.state.pipeline = create_pipeline(settings)
        else:
            app.state.pipeline = pipeline

        if settings.ENABLE_WORKERS:
            await app.state.pipeline.workers.start()
        if settings.ENABLE_SCHEDULER:
            start_scheduler(app.state.pipeline)
        logger.info("Startup complete")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Run on application shutdown."""
        stop_scheduler()
        await app.state.pipeline.close()
        logger.info("Simulation Pipeline API stopped")

    return app


app = create_app()
