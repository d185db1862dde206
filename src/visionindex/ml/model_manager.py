"""Classifier model lifecycle.

Each registered classifier is an ONNX export on the Hugging Face Hub whose
``config.json`` maps class ids to ImageNet-style labels. Sessions are opened
on first use and dropped again once they sit idle past ``model_ttl``.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from visionindex.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """What the classification adapter needs from a model store."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local path of the classifier weights, fetching them once."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return the session that scores images for ``model_name``."""
        ...

    def get_labels(self, model_name: str) -> list[str]:
        """Return the model's output labels, indexed by class id."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of classifiers with an open session."""
        ...

    def unload_idle_models(self) -> None:
        """Close sessions idle for longer than ``model_ttl`` seconds."""
        ...

    def shutdown(self) -> None:
        """Close every open classifier session."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    IMAGE_CLASSIFICATION = "image_classification"


class Activation(StrEnum):
    SOFTMAX = "softmax"
    SIGMOID = "sigmoid"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classification model."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    config_filename: str
    task: ModelTask
    license: str
    resize: int
    crop: int
    mean: tuple[float, float, float]
    std: tuple[float, float, float]
    activation: Activation


_HALF = (0.5, 0.5, 0.5)
_IMAGENET_MEAN = (0.485, 0.456, 0.406)
_IMAGENET_STD = (0.229, 0.224, 0.225)

MODEL_REGISTRY: dict[str, ModelSpec] = {
    "mobilenet_v2": ModelSpec(
        name="mobilenet_v2",
        repo_id="Xenova/mobilenet_v2_1.0_224",
        filename="model.onnx",
        subfolder="onnx",
        config_filename="config.json",
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
        resize=256,
        crop=224,
        mean=_HALF,
        std=_HALF,
        activation=Activation.SOFTMAX,
    ),
    "resnet_50": ModelSpec(
        name="resnet_50",
        repo_id="Xenova/resnet-50",
        filename="model.onnx",
        subfolder="onnx",
        config_filename="config.json",
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
        resize=256,
        crop=224,
        mean=_IMAGENET_MEAN,
        std=_IMAGENET_STD,
        activation=Activation.SOFTMAX,
    ),
    "vit_base_patch16_224": ModelSpec(
        name="vit_base_patch16_224",
        repo_id="Xenova/vit-base-patch16-224",
        filename="model.onnx",
        subfolder="onnx",
        config_filename="config.json",
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
        resize=224,
        crop=224,
        mean=_HALF,
        std=_HALF,
        activation=Activation.SOFTMAX,
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


def normalize_label(raw: str) -> str:
    """Turn a config label like ``"hot dog, hot dog, red hot"`` into ``"hot_dog"``."""
    first = raw.split(",", 1)[0].strip().lower()
    return "_".join(first.replace("-", " ").split())


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class _CachedSession:
    session: InferenceSession
    last_used: float


class OnnxModelManager:
    """Serves classifier sessions and label lists for the registry models.

    Weights and label configs land under ``models_dir/<model name>``. A
    single lock guards the session and label caches; downloads and session
    creation happen outside it, so two threads may race to build the same
    session and the first one stored wins.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._sessions: dict[str, _CachedSession] = {}
        self._model_paths: dict[str, Path] = {}
        self._labels: dict[str, list[str]] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Fetch the ONNX weights for ``model_name`` unless a previous call did."""
        spec = get_spec(model_name)

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir / model_name),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_labels(self, model_name: str) -> list[str]:
        """Return normalized labels from the model's ``id2label`` config."""
        with self._lock:
            cached = self._labels.get(model_name)
            if cached is not None:
                return cached

        spec = get_spec(model_name)
        config_path = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.config_filename,
                local_dir=str(self._models_dir / model_name),
            )
        )
        id2label: dict[str, str] = json.loads(config_path.read_text(encoding="utf-8"))["id2label"]
        labels = [normalize_label(id2label[key]) for key in sorted(id2label, key=int)]

        with self._lock:
            self._labels[model_name] = labels
        logger.info("Loaded %d labels for %s", len(labels), model_name)
        return labels

    def get_session(self, model_name: str) -> InferenceSession:
        """Return the scoring session for ``model_name``, opening it on first use."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.session

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Keep the session another thread stored first.
            existing = self._sessions.get(model_name)
            if existing is not None:
                existing.last_used = time.monotonic()
                return existing.session
            self._sessions[model_name] = _CachedSession(
                session=session,
                last_used=time.monotonic(),
            )
            logger.info("Opened classifier session for %s", model_name)
            return session

    def get_loaded_models(self) -> list[str]:
        """Names of classifiers whose sessions are currently open."""
        with self._lock:
            return list(self._sessions.keys())

    def unload_idle_models(self) -> None:
        """Drop sessions not used within ``model_ttl``; a TTL of 0 keeps them forever."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [name for name, cached in self._sessions.items() if (now - cached.last_used) > ttl]
            for name in expired:
                del self._sessions[name]
                logger.info("Closed idle classifier session for %s", name)

    def shutdown(self) -> None:
        """Drop every session; the next request reopens it."""
        with self._lock:
            self._sessions.clear()
            logger.info("Closed all classifier sessions")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
