"""Image classification over an ONNX session.

Produces ranked scene/object labels with confidences in [0, 1].
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from visionindex.ml.model_manager import Activation

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from visionindex.ml.model_manager import ModelSpec
    from visionindex.ml.preprocessing import ImagePreprocessor


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        """Classify an image and return ranked tags.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            List of classification results sorted by confidence (descending).
        """
        ...


def _activate(logits: NDArray[np.float32], activation: Activation) -> NDArray[np.float32]:
    if activation is Activation.SIGMOID:
        return 1.0 / (1.0 + np.exp(-logits))
    shifted = np.exp(logits - logits.max())
    return shifted / shifted.sum()


class OnnxImageClassifier:
    """Runs a single-output ONNX classification model."""

    def __init__(
        self,
        session: InferenceSession,
        spec: ModelSpec,
        labels: list[str],
        preprocessor: ImagePreprocessor,
    ) -> None:
        self._session = session
        self._spec = spec
        self._labels = labels
        self._preprocessor = preprocessor
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._spec.name

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        tensor = self._preprocessor.preprocess_for_classification(image, self._spec)
        (logits,) = self._session.run(None, {self._input_name: tensor})[:1]
        scores = _activate(np.asarray(logits, dtype=np.float32).reshape(-1), self._spec.activation)
        if scores.shape[0] != len(self._labels):
            raise ValueError(f"Model {self._spec.name} returned {scores.shape[0]} scores for {len(self._labels)} labels")

        results = [
            ClassificationResult(label=label, confidence=float(score))
            for label, score in zip(self._labels, scores, strict=True)
        ]
        results.sort(key=lambda result: result.confidence, reverse=True)
        return results
