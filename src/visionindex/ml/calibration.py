"""Precision/recall calibration and the category / search-term label filters.

A calibration file is JSON mapping each label to its precision/recall curve
measured on a held-out set::

    {"dog": {"thresholds": [0.1, 0.5, 0.9],
             "precision": [0.4, 0.8, 0.95],
             "recall": [0.9, 0.6, 0.2]}}

Thresholds ascend; precision and recall are measured at each threshold.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from numpy.typing import NDArray

    from visionindex.config import Settings
    from visionindex.ml.image_classifier import ClassificationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrecisionRecallCurve:
    """Operating points of one label's classifier output."""

    thresholds: NDArray[np.float64]
    precision: NDArray[np.float64]
    recall: NDArray[np.float64]

    @classmethod
    def from_points(
        cls, thresholds: Iterable[float], precision: Iterable[float], recall: Iterable[float]
    ) -> PrecisionRecallCurve:
        t = np.asarray(list(thresholds), dtype=np.float64)
        p = np.asarray(list(precision), dtype=np.float64)
        r = np.asarray(list(recall), dtype=np.float64)
        if not (t.shape == p.shape == r.shape) or t.ndim != 1 or t.size == 0:
            raise ValueError("Curve needs equally sized, non-empty threshold/precision/recall lists")
        if np.any(np.diff(t) < 0):
            raise ValueError("Curve thresholds must be ascending")
        return cls(thresholds=t, precision=p, recall=r)

    def has_minimum_recall(self, confidence: float, min_recall: float, for_precision: float) -> bool:
        """True when the lowest threshold reaching ``for_precision`` still keeps
        ``min_recall`` and ``confidence`` clears it."""
        candidates = np.flatnonzero(self.precision >= for_precision)
        if candidates.size == 0:
            return False
        point = candidates[0]
        return bool(self.recall[point] >= min_recall and confidence >= self.thresholds[point])

    def has_minimum_precision(self, confidence: float, min_precision: float, for_recall: float) -> bool:
        """True when the highest threshold still reaching ``for_recall`` keeps
        ``min_precision`` and ``confidence`` clears it."""
        candidates = np.flatnonzero(self.recall >= for_recall)
        if candidates.size == 0:
            return False
        point = candidates[-1]
        return bool(self.precision[point] >= min_precision and confidence >= self.thresholds[point])


def load_calibration(path: str | Path) -> dict[str, PrecisionRecallCurve]:
    """Load per-label curves from a calibration JSON file."""
    raw: dict[str, dict[str, list[float]]] = json.loads(Path(path).read_text(encoding="utf-8"))
    curves = {
        label: PrecisionRecallCurve.from_points(points["thresholds"], points["precision"], points["recall"])
        for label, points in raw.items()
    }
    logger.info("Loaded calibration curves for %d labels from %s", len(curves), path)
    return curves


class LabelFilter:
    """Splits classification results into categories and search terms.

    Categories are high-precision labels; search terms are high-recall labels
    and usually a superset of the categories.
    """

    def __init__(self, settings: Settings, curves: Mapping[str, PrecisionRecallCurve] | None = None) -> None:
        self._settings = settings
        self._curves: Mapping[str, PrecisionRecallCurve] = curves or {}

    @classmethod
    def from_settings(cls, settings: Settings) -> LabelFilter:
        curves = load_calibration(settings.calibration_path) if settings.calibration_path else None
        return cls(settings, curves)

    def categories(self, results: Iterable[ClassificationResult]) -> dict[str, float]:
        return _collect(result for result in results if self._is_category(result))

    def search_terms(self, results: Iterable[ClassificationResult]) -> dict[str, float]:
        return _collect(result for result in results if self._is_search_term(result))

    def _is_category(self, result: ClassificationResult) -> bool:
        curve = self._curves.get(result.label)
        if curve is None:
            return result.confidence >= self._settings.category_min_confidence
        return curve.has_minimum_recall(
            result.confidence,
            min_recall=self._settings.category_min_recall,
            for_precision=self._settings.category_precision,
        )

    def _is_search_term(self, result: ClassificationResult) -> bool:
        curve = self._curves.get(result.label)
        if curve is None:
            return result.confidence >= self._settings.search_term_min_confidence
        return curve.has_minimum_precision(
            result.confidence,
            min_precision=self._settings.search_term_min_precision,
            for_recall=self._settings.search_term_recall,
        )


def _collect(results: Iterable[ClassificationResult]) -> dict[str, float]:
    # Distinct class ids can share a normalized label; keep the best score.
    labels: dict[str, float] = {}
    for result in results:
        if result.confidence > labels.get(result.label, -1.0):
            labels[result.label] = result.confidence
    return labels
