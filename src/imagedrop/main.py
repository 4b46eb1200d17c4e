"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from imagedrop.api.routes import router, upload_body_error_handler
from imagedrop.config import Settings, get_settings
from imagedrop.ingest.executor import IngestExecutor
from imagedrop.ingest.pipeline import IngestPipeline

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Attach the pipeline and executor for ``settings`` to the application."""
    pipeline = IngestPipeline(settings)
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.executor = IngestExecutor(settings, pipeline)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings: Settings = app.state.settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting imagedrop (storage=%s, target=%s, max_file_size=%s, max_concurrent=%s)",
        settings.storage_root,
        settings.target_format,
        settings.max_file_size,
        settings.max_concurrent,
    )

    init_state(app, settings)
    pipeline: IngestPipeline = app.state.pipeline
    try:
        pipeline.store.ensure_layout()
    except OSError as exc:
        logger.warning("Storage root %s is not writable yet: %s", settings.storage_root, exc)

    logger.info("imagedrop ready")
    yield

    logger.info("Shutting down imagedrop")
    executor: IngestExecutor = app.state.executor
    executor.shutdown()
    logger.info("imagedrop shutdown complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    application = FastAPI(
        title="imagedrop",
        description="Image upload service producing original, large and thumbnail derivatives",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.settings = settings

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    application.include_router(router)
    application.add_exception_handler(StarletteHTTPException, upload_body_error_handler)  # type: ignore[arg-type]

    if settings.serve_uploads:
        application.mount(
            settings.public_url_prefix,
            StaticFiles(directory=settings.storage_root, check_dir=False),
            name="uploads",
        )
    return application


app = create_app()
