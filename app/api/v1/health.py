"""Health check endpoint."""

from fastapi import APIRouter
import platform
import shutil
import sys

from app.api.v1.jobs import current_manager
from app.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Service health, job counts, and system info."""
    manager = current_manager()
    return {
        "status": "healthy" if manager is not None else "starting",
        "jobs": manager.counts() if manager is not None else None,
        "downloader_command": settings.downloader_command,
        "downloader_available": shutil.which(settings.downloader_command) is not None,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
