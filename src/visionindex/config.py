"""Environment-based configuration for VisionIndex."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from VISIONINDEX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VISIONINDEX_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "127.0.0.1"
    port: int = 8083
    log_level: str = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    model_name: str = "mobilenet_v2"
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency (ad-hoc classification requests; library loads use one worker)
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Library
    thumbnail_max_pixel_size: int = Field(default=256, ge=1)
    top_k: int = Field(default=5, ge=1)

    # Label thresholds. Curves come from calibration_path; labels without a
    # curve fall back to the plain confidence floors.
    calibration_path: str | None = None
    category_precision: float = Field(default=0.9, ge=0.0, le=1.0)
    category_min_recall: float = Field(default=0.01, ge=0.0, le=1.0)
    search_term_recall: float = Field(default=0.7, ge=0.0, le=1.0)
    search_term_min_precision: float = Field(default=0.01, ge=0.0, le=1.0)
    category_min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    search_term_min_confidence: float = Field(default=0.1, ge=0.0, le=1.0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
