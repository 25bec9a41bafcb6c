"""Smart Resizer backend - FastAPI application."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger

from smart_resizer.api.v1.health import router as health_root_router
from smart_resizer.api.v1.router import v1_router
from smart_resizer.config import Settings, settings as default_settings
from smart_resizer.exceptions import ResizerError
from smart_resizer.logging_config import configure_logging
from smart_resizer.services.container import ServiceContainer, build_container


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    settings: Settings = app.state.settings
    configure_logging(settings)

    if app.state.container is None:
        app.state.container = build_container(settings)
    container: ServiceContainer = app.state.container

    logger.info("Starting Smart Resizer backend on port {}", settings.api_port)
    await container.dispatcher.start()
    logger.info("Job dispatcher started ({} worker(s))", settings.queue_workers)

    yield

    logger.info("Shutting down Smart Resizer backend")
    await container.dispatcher.stop()
    container.worker.close()


async def resizer_error_handler(request: Request, exc: ResizerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("{} {} failed: {} ({})", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """Build the app. The container is created at startup unless one is given."""
    settings = settings or default_settings

    app = FastAPI(
        title="Smart Resizer Service",
        description="Batch resizing of a master image into platform ad and photo formats",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    app.add_exception_handler(ResizerError, resizer_error_handler)

    # CORS: frontend dev servers and any configured origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_root_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /api/v1/* endpoints

    if settings.storage_backend == "local":
        # Serves LocalObjectStore files under public_base_url
        app.mount(
            "/files",
            StaticFiles(directory=settings.local_storage_dir, check_dir=False),
            name="files",
        )
    return app


app = create_app()
