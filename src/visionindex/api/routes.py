"""API route definitions."""

from __future__ import annotations

import io
import logging
import uuid
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, Response, UploadFile, status
from fastapi.responses import StreamingResponse

from visionindex.api.dependencies import (
    get_adapter,
    get_index,
    get_inference_pool,
    get_model_manager,
    get_settings,
    verify_api_key,
)
from visionindex.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    HealthResponse,
    ImageDetail,
    ImageSummary,
    ImageTag,
    LabelRowModel,
    LibraryStatus,
    LoadEventModel,
    LoadRequest,
    ModelInfo,
    ModelsResponse,
    SearchRequest,
    SectionSummary,
)
from visionindex.library.details import format_details
from visionindex.library.index import IndexState, LoadCompleted, LoadProgress, LoadStarted
from visionindex.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from PIL import Image

    from visionindex.library.index import ImageIndex, LoadEvent, LoadTask
    from visionindex.library.records import ImageRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_CONFLICT = {status.HTTP_409_CONFLICT: {"model": ErrorResponse}}
_NOT_FOUND = {status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}}


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with tags",
)
async def classify_image(request: Request, file: UploadFile) -> ClassifyImageResponse:
    """Classify an uploaded image and return the top ranked tags."""
    settings = get_settings(request)
    adapter = get_adapter(request)

    image_bytes = await file.read()
    if len(image_bytes) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    try:
        results = await get_inference_pool(request).run(adapter.classify_bytes, image_bytes)
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, retry later",
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    return ClassifyImageResponse(
        model=adapter.model_name,
        tags=[ImageTag(label=r.label, confidence=r.confidence) for r in results[: settings.top_k]],
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings(request)
    pool = get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        library_state=get_index(request).state,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models, marking the configured one as active."""
    active_model = get_settings(request).model_name
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                task=spec.task,
                status="active" if spec.name == active_model else "available",
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------


def _event_model(event: LoadEvent) -> LoadEventModel:
    if isinstance(event, LoadStarted):
        return LoadEventModel(event="started", total=event.total)
    if isinstance(event, LoadProgress):
        return LoadEventModel(event="progress", processed=event.processed, total=event.total)
    if isinstance(event, LoadCompleted):
        return LoadEventModel(event="completed", processed=event.total, total=event.total)
    raise TypeError(f"Unexpected load event: {event!r}")


async def _stream_load_events(task: LoadTask) -> AsyncIterator[str]:
    try:
        async for event in task:
            yield _event_model(event).model_dump_json() + "\n"
    except Exception as exc:  # noqa: BLE001
        logger.exception("Library load failed")
        yield LoadEventModel(event="failed", detail=str(exc)).model_dump_json() + "\n"


def _section_summaries(index: ImageIndex) -> list[SectionSummary]:
    return [
        SectionSummary(index=i, name=index.section_name(i), image_count=index.image_count(i))
        for i in range(index.section_count())
    ]


def _image_summary(record: ImageRecord) -> ImageSummary:
    return ImageSummary(
        id=record.id,
        name=record.display_name,
        path=str(record.path),
        has_thumbnail=record.thumbnail is not None,
    )


def _encode_png(thumbnail: Image.Image) -> bytes:
    if thumbnail.mode not in ("1", "L", "LA", "P", "RGB", "RGBA"):
        thumbnail = thumbnail.convert("RGB")
    buffer = io.BytesIO()
    thumbnail.save(buffer, format="PNG")
    return buffer.getvalue()


@router.post(
    "/library/load",
    response_class=StreamingResponse,
    responses=_CONFLICT,
    summary="Classify files and folders into the library",
)
async def load_library(request: Request, body: LoadRequest) -> StreamingResponse:
    """Start a load and stream its progress as newline-delimited JSON.

    The load keeps running if the client disconnects.
    """
    task = get_index(request).load(body.paths)
    return StreamingResponse(_stream_load_events(task), media_type="application/x-ndjson")


@router.get(
    "/library",
    response_model=LibraryStatus,
    summary="Library status",
)
async def library_status(request: Request) -> LibraryStatus:
    index = get_index(request)
    if index.state is IndexState.LOADING:
        return LibraryStatus(state=index.state)
    return LibraryStatus(
        state=index.state,
        image_count=len(index.records),
        section_count=index.section_count(),
        query=index.query,
    )


@router.post(
    "/library/search",
    response_model=list[SectionSummary],
    responses=_CONFLICT,
    summary="Filter sections by search term",
)
async def search_library(request: Request, body: SearchRequest) -> list[SectionSummary]:
    index = get_index(request)
    index.search(body.query)
    return _section_summaries(index)


@router.get(
    "/library/sections",
    response_model=list[SectionSummary],
    responses=_CONFLICT,
    summary="List sections of the current view",
)
async def list_sections(request: Request) -> list[SectionSummary]:
    return _section_summaries(get_index(request))


@router.get(
    "/library/sections/{section_index}/images",
    response_model=list[ImageSummary],
    responses={**_CONFLICT, **_NOT_FOUND},
    summary="List images in a section",
)
async def list_section_images(request: Request, section_index: int) -> list[ImageSummary]:
    index = get_index(request)
    return [_image_summary(index.image_at(row, section_index)) for row in range(index.image_count(section_index))]


@router.get(
    "/library/sections/{section_index}/images/{row_index}",
    response_model=ImageDetail,
    responses={**_CONFLICT, **_NOT_FOUND},
    summary="Image classification details",
)
async def image_detail(request: Request, section_index: int, row_index: int) -> ImageDetail:
    record = get_index(request).image_at(row_index, section_index)
    return ImageDetail(
        **_image_summary(record).model_dump(),
        categories=[LabelRowModel(label=row.label, confidence=row.confidence) for row in format_details(record.categories)],
        search_terms=sorted(record.search_terms),
    )


@router.get(
    "/library/images/{image_id}/thumbnail",
    response_class=Response,
    responses={**_CONFLICT, **_NOT_FOUND},
    summary="PNG thumbnail of an image",
)
async def image_thumbnail(request: Request, image_id: uuid.UUID) -> Response:
    try:
        record = get_index(request).record_by_id(image_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown image") from exc
    if record.thumbnail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No thumbnail for this image")
    return Response(content=_encode_png(record.thumbnail), media_type="image/png")
