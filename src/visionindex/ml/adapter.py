"""Classification adapter: file path in, category and search-term labels out."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from visionindex.ml.image_classifier import OnnxImageClassifier
from visionindex.ml.model_manager import get_spec

if TYPE_CHECKING:
    from visionindex.config import Settings
    from visionindex.ml.calibration import LabelFilter
    from visionindex.ml.image_classifier import ClassificationResult
    from visionindex.ml.model_manager import ModelManager
    from visionindex.ml.preprocessing import ImagePreprocessor


@dataclass(frozen=True)
class LabelSets:
    """Labels for one image, each mapped to its confidence."""

    categories: dict[str, float] = field(default_factory=dict)
    search_terms: dict[str, float] = field(default_factory=dict)


class ClassificationAdapter(Protocol):
    """Protocol for turning an image file into label sets."""

    def classify(self, path: Path) -> LabelSets:
        """Classify the image at ``path``.

        Raises:
            OSError: If the file cannot be read.
            ValueError: If the image cannot be decoded or exceeds size limits.
        """
        ...


class ModelClassificationAdapter:
    """Classifies files with the configured ONNX model."""

    def __init__(
        self,
        settings: Settings,
        model_manager: ModelManager,
        preprocessor: ImagePreprocessor,
        label_filter: LabelFilter,
    ) -> None:
        self._spec = get_spec(settings.model_name)
        self._model_manager = model_manager
        self._preprocessor = preprocessor
        self._label_filter = label_filter

    @property
    def model_name(self) -> str:
        return self._spec.name

    def classify_bytes(self, image_bytes: bytes) -> list[ClassificationResult]:
        """Return every label for the image, ranked by confidence."""
        image = self._preprocessor.decode_image(image_bytes)
        classifier = OnnxImageClassifier(
            self._model_manager.get_session(self._spec.name),
            self._spec,
            self._model_manager.get_labels(self._spec.name),
            self._preprocessor,
        )
        return classifier.classify(image)

    def classify(self, path: Path) -> LabelSets:
        results = self.classify_bytes(Path(path).read_bytes())
        return LabelSets(
            categories=self._label_filter.categories(results),
            search_terms=self._label_filter.search_terms(results),
        )
