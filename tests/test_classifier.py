"""Tests for the ONNX classifier wrapper and score formatting."""

from __future__ import annotations

import numpy as np
import pytest
from conftest import FakeSession

from cvinfer.ml.classifier import (
    DIGIT_LABELS,
    EMOTION_LABELS,
    ClassificationResult,
    OnnxClassifier,
    format_scores,
    top_result,
)


class TestOnnxClassifier:
    def test_uniform_scores(self, digit_session: FakeSession) -> None:
        classifier = OnnxClassifier(digit_session, DIGIT_LABELS, "mnist_8")
        results = classifier.classify(np.zeros((1, 28, 28, 1), dtype=np.float32))

        assert [r.label for r in results] == [str(d) for d in range(10)]
        assert [r.confidence for r in results] == pytest.approx([0.1] * 10, abs=1e-6)

    def test_feed_matches_model_layout(self, emotion_session: FakeSession) -> None:
        classifier = OnnxClassifier(emotion_session, EMOTION_LABELS, "emotion_ferplus_8")
        classifier.classify(np.ones((1, 64, 64, 1), dtype=np.float32))
        assert emotion_session.feeds[0]["input"].shape == (1, 1, 64, 64)

    def test_peaked_scores(self) -> None:
        raw = np.array([[0.0, 0.0, 0.0, 10.0, 0.0, 0.0, 0.0, 0.0]], dtype=np.float32)
        classifier = OnnxClassifier(FakeSession([1, 64, 64, 1], [raw]), EMOTION_LABELS, "emotion")

        results = classifier.classify(np.zeros((1, 64, 64, 1), dtype=np.float32))

        assert top_result(results).label == "Sadness"
        assert sum(r.confidence for r in results) == pytest.approx(1.0, abs=1e-5)

    def test_output_size_mismatch(self) -> None:
        session = FakeSession([1, 1, 28, 28], [np.zeros((1, 8), dtype=np.float32)])
        classifier = OnnxClassifier(session, DIGIT_LABELS, "mnist_8")
        with pytest.raises(ValueError, match="8 scores for 10 labels"):
            classifier.predict(np.zeros((1, 28, 28, 1), dtype=np.float32))

    def test_properties(self, digit_session: FakeSession) -> None:
        classifier = OnnxClassifier(digit_session, DIGIT_LABELS, "mnist_8")
        assert classifier.model_name == "mnist_8"
        assert classifier.labels == DIGIT_LABELS


class TestFormatting:
    def test_digit_lines(self) -> None:
        results = [ClassificationResult(str(d), 0.1) for d in range(3)]
        assert format_scores(results) == "0: 0.10\n1: 0.10\n2: 0.10"

    def test_emotion_lines_are_padded(self) -> None:
        results = [ClassificationResult("Neutral", 0.125), ClassificationResult("Happiness", 0.875)]
        assert format_scores(results, 12).splitlines() == ["Neutral     : 0.12", "Happiness   : 0.88"]

    def test_top_result_prefers_first_on_ties(self) -> None:
        results = [ClassificationResult("a", 0.5), ClassificationResult("b", 0.5)]
        assert top_result(results).label == "a"

    def test_label_tables(self) -> None:
        assert len(DIGIT_LABELS) == 10
        assert EMOTION_LABELS[0] == "Neutral"
        assert EMOTION_LABELS[-1] == "Contempt"
        assert len(EMOTION_LABELS) == 8
