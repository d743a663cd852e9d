"""Face detection models.

Implementations: BlazeFace front (128) and back (256) via ONNX Runtime.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np

from cvinfer.ml.blazeface import NUM_COORDS, BlazeFaceDecoder
from cvinfer.ml.preprocessing import blazeface_tensor, to_model_layout

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from cvinfer.ml.detection import Detection

logger = logging.getLogger(__name__)


class FaceDetector(Protocol):
    """Protocol for face detection models working on a square input image."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def input_size(self) -> int:
        """Return the side of the square input image in pixels."""
        ...

    def detect(self, image: NDArray[np.uint8]) -> list[Detection]:
        """Detect faces in a square image.

        Args:
            image: SxSx3 BGR uint8 array, S being ``input_size``.

        Returns:
            Detections normalized to the square image, ordered by score.
        """
        ...


def _input_size_from_shape(shape: list[int | str | None]) -> int:
    # Accept both (1, 3, S, S) and (1, S, S, 3).
    for dim in shape[1:3]:
        if isinstance(dim, int) and dim > 3:
            return dim
    raise ValueError(f"Cannot infer BlazeFace input size from input shape {shape}")


class BlazeFaceDetector:
    """BlazeFace running on an ONNX Runtime session."""

    def __init__(
        self,
        session: InferenceSession,
        model_name: str,
        score_threshold: float = 0.75,
        iou_threshold: float = 0.3,
    ) -> None:
        self._session = session
        self._model_name = model_name

        model_input = session.get_inputs()[0]
        self._input_name: str = model_input.name
        self._input_shape = list(model_input.shape)
        self._decoder = BlazeFaceDecoder(
            _input_size_from_shape(self._input_shape),
            score_threshold=score_threshold,
            iou_threshold=iou_threshold,
        )

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def input_size(self) -> int:
        return self._decoder.input_size

    def detect(self, image: NDArray[np.uint8]) -> list[Detection]:
        feed = to_model_layout(blazeface_tensor(image), self._input_shape)
        outputs = self._session.run(None, {self._input_name: feed})
        regressors, logits = _split_outputs(outputs)
        detections = self._decoder.decode(regressors[0], logits[0])
        logger.debug("%s: %d detections", self._model_name, len(detections))
        return detections


def _split_outputs(outputs: list[NDArray[np.float32]]) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
    """Tell the regressor output from the score output by their last dimension."""
    regressors = logits = None
    for output in outputs:
        array = np.asarray(output, dtype=np.float32)
        if array.shape[-1] == NUM_COORDS:
            regressors = array
        elif array.shape[-1] == 1:
            logits = array
    if regressors is None or logits is None:
        shapes = [np.shape(output) for output in outputs]
        raise ValueError(f"Unexpected BlazeFace outputs with shapes {shapes}")
    return regressors, logits
