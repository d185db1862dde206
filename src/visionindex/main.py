"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from visionindex.api.routes import router
from visionindex.config import Settings, get_settings
from visionindex.library.index import ImageIndex, IndexBusyError, LoadInProgressError, SectionIndexError
from visionindex.library.records import build_record
from visionindex.ml.adapter import ModelClassificationAdapter
from visionindex.ml.calibration import LabelFilter
from visionindex.ml.inference import InferencePool
from visionindex.ml.model_manager import ModelManager, OnnxModelManager
from visionindex.ml.preprocessing import PillowPreprocessor, make_thumbnail

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings, model_manager: ModelManager | None = None) -> None:
    """Build the shared services and attach them to ``app.state``."""
    model_manager = model_manager or OnnxModelManager(settings)
    adapter = ModelClassificationAdapter(
        settings,
        model_manager,
        PillowPreprocessor(settings),
        LabelFilter.from_settings(settings),
    )
    load_pool = InferencePool.single_worker()
    thumbnailer = functools.partial(make_thumbnail, max_pixel_size=settings.thumbnail_max_pixel_size)

    app.state.settings = settings
    app.state.model_manager = model_manager
    app.state.adapter = adapter
    app.state.inference_pool = InferencePool.from_settings(settings)
    app.state.load_pool = load_pool
    app.state.index = ImageIndex(
        functools.partial(build_record, adapter=adapter, thumbnailer=thumbnailer),
        runner=load_pool.run,
    )


async def _evict_idle_models(model_manager: ModelManager, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        model_manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting VisionIndex (device=%s, model=%s, max_concurrent=%s)",
        settings.device,
        settings.model_name,
        settings.max_concurrent,
    )

    init_state(app, settings)
    evictor = None
    if settings.model_ttl > 0:
        evictor = asyncio.create_task(_evict_idle_models(app.state.model_manager, settings.model_ttl / 2))

    logger.info("VisionIndex ready")
    yield

    logger.info("Shutting down VisionIndex")
    if evictor is not None:
        evictor.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await evictor
    app.state.inference_pool.shutdown()
    app.state.load_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("VisionIndex shutdown complete")


async def _conflict(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="VisionIndex",
        description="Local image library classified into searchable label sections",
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

    application.add_exception_handler(LoadInProgressError, _conflict)
    application.add_exception_handler(IndexBusyError, _conflict)
    application.add_exception_handler(SectionIndexError, _not_found)

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run("visionindex.main:app", host=settings.host, port=settings.port)
