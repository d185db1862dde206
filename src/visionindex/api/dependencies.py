"""Request dependencies: API key check and access to shared app state."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from visionindex.config import Settings
    from visionindex.library.index import ImageIndex
    from visionindex.ml.adapter import ModelClassificationAdapter
    from visionindex.ml.inference import InferencePool
    from visionindex.ml.model_manager import ModelManager

_bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def get_adapter(request: Request) -> ModelClassificationAdapter:
    adapter: ModelClassificationAdapter = request.app.state.adapter
    return adapter


def get_index(request: Request) -> ImageIndex:
    index: ImageIndex = request.app.state.index
    return index


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject requests without the configured bearer key.

    No key configured (VISIONINDEX_API_KEY unset) means every request passes.
    """
    expected = get_settings(request).api_key
    if expected is None:
        return

    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
