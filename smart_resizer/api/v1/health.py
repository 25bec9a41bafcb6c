"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter, Depends

from smart_resizer.api.dependencies import get_container
from smart_resizer.services.container import ServiceContainer

router = APIRouter()


@router.get("/health")
async def health_check(container: ServiceContainer = Depends(get_container)):
    """Service status, queue depth and catalog size."""
    return {
        "status": "healthy",
        "queue_depth": container.dispatcher.depth(),
        "catalog_size": len(container.catalog),
        "storage_backend": type(container.storage).__name__,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
