"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from thumbforge.config import Settings

import cv2
import rawpy
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from thumbforge.api.routes import router
from thumbforge.config import get_settings
from thumbforge.engine.codec import FORMAT_REGISTRY, can_encode
from thumbforge.engine.executor import ThumbnailPool

logger = logging.getLogger(__name__)


def _log_capabilities(settings: Settings) -> None:
    """Report which encoders the installed OpenCV build provides and how the service is exposed."""
    writable = [spec.label for fmt, spec in FORMAT_REGISTRY.items() if can_encode(fmt)]
    missing = [spec.label for fmt, spec in FORMAT_REGISTRY.items() if not can_encode(fmt)]
    logger.info(
        "Codecs: OpenCV %s, LibRaw %s; encoders: %s",
        cv2.__version__,
        ".".join(str(part) for part in rawpy.libraw_version),
        ", ".join(writable),
    )
    if missing:
        logger.warning("Output formats unavailable in this OpenCV build: %s", ", ".join(missing))

    if settings.local_files_enabled and settings.api_key is None:
        logger.warning("Local file access is enabled without an API key; /pipelines is open to any client")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging, start the worker pool and report codec support."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app.state.thumbnail_pool = ThumbnailPool(settings)
    logger.info(
        "Thumbforge listening on %s:%s (workers=%s, queue_timeout=%ss, max_upload=%s bytes)",
        settings.host,
        settings.port,
        settings.max_concurrent,
        settings.queue_timeout,
        settings.max_file_size,
    )
    _log_capabilities(settings)

    yield

    logger.info("Draining thumbnail workers")
    app.state.thumbnail_pool.shutdown()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Thumbforge",
        description="Image thumbnailing service: resize, crop, sharpen and watermark",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
