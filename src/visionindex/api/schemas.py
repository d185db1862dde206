"""Pydantic request/response schemas for the VisionIndex API."""

from __future__ import annotations

import uuid
from typing import Literal

from pydantic import BaseModel, Field


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    model: str
    tags: list[ImageTag]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    library_state: str


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'image_classification'")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------


class LoadRequest(BaseModel):
    """Files and folders to classify; folders are searched recursively."""

    paths: list[str] = Field(min_length=1)


class LoadEventModel(BaseModel):
    """One line of the load progress stream."""

    event: Literal["started", "progress", "completed", "failed"]
    processed: int = 0
    total: int = 0
    detail: str | None = None


class SearchRequest(BaseModel):
    """Search-term filter; an empty query restores the category sections."""

    query: str = ""


class LibraryStatus(BaseModel):
    """Current library state."""

    state: str
    image_count: int | None = None
    section_count: int | None = None
    query: str | None = None


class SectionSummary(BaseModel):
    """A section of the current view."""

    index: int
    name: str
    image_count: int


class ImageSummary(BaseModel):
    """An image row within a section."""

    id: uuid.UUID
    name: str
    path: str
    has_thumbnail: bool


class LabelRowModel(BaseModel):
    """A humanized category label."""

    label: str
    confidence: float


class ImageDetail(ImageSummary):
    """An image with its categories formatted for display."""

    categories: list[LabelRowModel]
    search_terms: list[str]
