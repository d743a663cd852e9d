"""ONNX image classifiers: digit (MNIST) and facial emotion (FER+)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from cvinfer.ml.preprocessing import to_model_layout
from cvinfer.ml.softmax import softmax

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

logger = logging.getLogger(__name__)

DIGIT_LABELS: tuple[str, ...] = tuple(str(digit) for digit in range(10))

EMOTION_LABELS: tuple[str, ...] = (
    "Neutral",
    "Happiness",
    "Surprise",
    "Sadness",
    "Anger",
    "Disgust",
    "Fear",
    "Contempt",
)


@dataclass(frozen=True)
class ClassificationResult:
    """A single class probability."""

    label: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for tensor classifiers."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def labels(self) -> tuple[str, ...]:
        """Return the class labels in model output order."""
        ...

    def classify(self, tensor: NDArray[np.float32]) -> list[ClassificationResult]:
        """Classify a preprocessed NHWC tensor.

        Returns:
            One result per label, in label order.
        """
        ...


class OnnxClassifier:
    """Runs a classification session and softmaxes its raw scores."""

    def __init__(self, session: InferenceSession, labels: Sequence[str], model_name: str) -> None:
        self._session = session
        self._labels = tuple(labels)
        self._model_name = model_name

        model_input = session.get_inputs()[0]
        self._input_name: str = model_input.name
        self._input_shape = list(model_input.shape)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def labels(self) -> tuple[str, ...]:
        return self._labels

    def predict(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Return the probability vector for ``tensor``.

        Raises:
            ValueError: If the model does not output one score per label.
        """
        feed = to_model_layout(tensor, self._input_shape)
        raw = np.asarray(self._session.run(None, {self._input_name: feed})[0], dtype=np.float32)
        scores = raw.reshape(1, -1)
        if scores.shape[1] != len(self._labels):
            raise ValueError(
                f"Model {self._model_name} returned {scores.shape[1]} scores for {len(self._labels)} labels"
            )
        return softmax(scores)[0]

    def classify(self, tensor: NDArray[np.float32]) -> list[ClassificationResult]:
        probs = self.predict(tensor)
        logger.debug("%s probabilities: %s", self._model_name, probs)
        return [
            ClassificationResult(label=label, confidence=float(prob))
            for label, prob in zip(self._labels, probs, strict=True)
        ]


def format_scores(results: Sequence[ClassificationResult], label_width: int = 0) -> str:
    """Render results one per line as ``label: 0.00``, labels left-padded to ``label_width``."""
    return "\n".join(f"{result.label.ljust(label_width)}: {result.confidence:.2f}" for result in results)


def top_result(results: Sequence[ClassificationResult]) -> ClassificationResult:
    """Return the most confident result (first one on ties)."""
    return max(results, key=lambda result: result.confidence)
