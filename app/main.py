"""Media Job Service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from app.config import settings
from app.logging_config import configure_logging
from app.api.v1.router import v1_router
from app.api.v1.health import router as health_root_router
from app.api.v1 import jobs as jobs_api
from app.jobs.manager import JobManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging(settings.log_level)
    logger.info("Starting Media Job Service on port %s", settings.service_port)
    logger.info("Downloader: %s", settings.downloader_command)

    manager = JobManager.from_settings(settings)
    await manager.start()
    jobs_api.set_manager(manager)
    logger.info(
        "Job manager started (ttl=%sh, max_concurrent=%s)",
        settings.job_result_ttl_hours, settings.max_concurrent_jobs or "unbounded",
    )

    yield

    logger.info("Shutting down Media Job Service")
    jobs_api.set_manager(None)
    await manager.stop()


app = FastAPI(
    title="Media Job Service",
    description="Runs and tracks background media download jobs",
    version="0.1.0",
    lifespan=lifespan,
)

# Mount routers
app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints


def run() -> None:
    uvicorn.run("app.main:app", host=settings.service_host, port=settings.service_port)
