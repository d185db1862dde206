"""Tests for the ONNX image classifier and the model-backed adapter."""

from __future__ import annotations

import dataclasses
import io
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest
from conftest import write_image
from PIL import Image

from visionindex.config import Settings
from visionindex.ml.adapter import LabelSets, ModelClassificationAdapter
from visionindex.ml.calibration import LabelFilter
from visionindex.ml.image_classifier import ClassificationResult, OnnxImageClassifier
from visionindex.ml.model_manager import MODEL_REGISTRY, Activation
from visionindex.ml.preprocessing import PillowPreprocessor

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fake_session(logits: list[float]) -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name="pixel_values")]
    session.run.return_value = [np.asarray([logits], dtype=np.float32)]
    return session


def _fake_manager(session: MagicMock, labels: list[str]) -> MagicMock:
    manager = MagicMock()
    manager.get_session.return_value = session
    manager.get_labels.return_value = labels
    return manager


_IMAGE = np.zeros((64, 48, 3), dtype=np.uint8)


# ---------------------------------------------------------------------------
# OnnxImageClassifier
# ---------------------------------------------------------------------------


class TestOnnxImageClassifier:
    def test_softmax_ranking(self) -> None:
        session = _fake_session([1.0, 3.0, 2.0])
        spec = MODEL_REGISTRY["mobilenet_v2"]
        classifier = OnnxImageClassifier(session, spec, ["ant", "bee", "cat"], PillowPreprocessor(Settings()))

        results = classifier.classify(_IMAGE)

        assert [r.label for r in results] == ["bee", "cat", "ant"]
        assert sum(r.confidence for r in results) == pytest.approx(1.0)
        assert all(0.0 <= r.confidence <= 1.0 for r in results)
        assert classifier.model_name == "mobilenet_v2"

    def test_feeds_preprocessed_tensor(self) -> None:
        session = _fake_session([0.0, 0.0])
        spec = MODEL_REGISTRY["vit_base_patch16_224"]
        OnnxImageClassifier(session, spec, ["a", "b"], PillowPreprocessor(Settings())).classify(_IMAGE)

        output_names, feeds = session.run.call_args.args
        assert output_names is None
        assert feeds["pixel_values"].shape == (1, 3, 224, 224)

    def test_sigmoid_scores_are_independent(self) -> None:
        spec = dataclasses.replace(MODEL_REGISTRY["mobilenet_v2"], activation=Activation.SIGMOID)
        classifier = OnnxImageClassifier(_fake_session([0.0, 10.0]), spec, ["a", "b"], PillowPreprocessor(Settings()))

        results = classifier.classify(_IMAGE)

        assert results[0] == ClassificationResult("b", pytest.approx(1.0, abs=1e-4))
        assert results[1] == ClassificationResult("a", 0.5)

    def test_label_count_mismatch(self) -> None:
        classifier = OnnxImageClassifier(
            _fake_session([0.1, 0.2, 0.3]), MODEL_REGISTRY["mobilenet_v2"], ["a", "b"], PillowPreprocessor(Settings())
        )
        with pytest.raises(ValueError, match="3 scores for 2 labels"):
            classifier.classify(_IMAGE)


# ---------------------------------------------------------------------------
# ModelClassificationAdapter
# ---------------------------------------------------------------------------


class TestModelClassificationAdapter:
    def _adapter(self, logits: list[float], labels: list[str], **overrides: object) -> ModelClassificationAdapter:
        settings = Settings(**overrides)  # type: ignore[arg-type]
        return ModelClassificationAdapter(
            settings,
            _fake_manager(_fake_session(logits), labels),
            PillowPreprocessor(settings),
            LabelFilter(settings),
        )

    def test_classify_splits_categories_and_search_terms(self, tmp_path: Path) -> None:
        path = write_image(tmp_path / "pic.png")
        # softmax of [4, 2, 0] ~ [0.867, 0.117, 0.016]
        adapter = self._adapter(
            [4.0, 2.0, 0.0],
            ["dog", "wolf", "car"],
            category_min_confidence=0.5,
            search_term_min_confidence=0.1,
        )

        labels = adapter.classify(path)

        assert isinstance(labels, LabelSets)
        assert list(labels.categories) == ["dog"]
        assert sorted(labels.search_terms) == ["dog", "wolf"]

    def test_uses_configured_model(self, tmp_path: Path) -> None:
        path = write_image(tmp_path / "pic.png")
        adapter = self._adapter([0.0], ["x"], model_name="resnet_50")

        adapter.classify(path)

        assert adapter.model_name == "resnet_50"
        manager = adapter._model_manager
        manager.get_session.assert_called_once_with("resnet_50")  # type: ignore[attr-defined]
        manager.get_labels.assert_called_once_with("resnet_50")  # type: ignore[attr-defined]

    def test_classify_bytes_ranks_all_labels(self) -> None:
        buffer = io.BytesIO()
        Image.new("RGB", (20, 20)).save(buffer, format="PNG")
        adapter = self._adapter([0.0, 1.0], ["low", "high"])

        results = adapter.classify_bytes(buffer.getvalue())

        assert [r.label for r in results] == ["high", "low"]

    def test_unreadable_file_raises(self, tmp_path: Path) -> None:
        adapter = self._adapter([0.0], ["x"])
        with pytest.raises(OSError):
            adapter.classify(tmp_path / "missing.png")

    def test_undecodable_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.png"
        path.write_bytes(b"nope")
        adapter = self._adapter([0.0], ["x"])
        with pytest.raises(ValueError, match="Cannot decode"):
            adapter.classify(path)

    def test_unknown_model_rejected(self) -> None:
        with pytest.raises(KeyError, match="Unknown model"):
            self._adapter([0.0], ["x"], model_name="not_a_model")
