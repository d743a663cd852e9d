"""Per-frame inference pipelines.

Each pipeline is constructed with its collaborators, processes one frame per
``step`` call synchronously, and releases its collaborators on ``dispose``.
``step`` is guarded by a lock so a pipeline never runs two frames at once.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar, cast

from cvinfer.ml.classifier import DIGIT_LABELS, EMOTION_LABELS, ClassificationResult, OnnxClassifier
from cvinfer.ml.detection import Detection, clip_detection, remap_detections
from cvinfer.ml.face_detector import BlazeFaceDetector
from cvinfer.ml.face_roi import CascadeFaceFinder, crop_roi, select_face_roi
from cvinfer.ml.letterbox import letterbox_image, letterbox_transform
from cvinfer.ml.preprocessing import digit_tensor, emotion_tensor, to_grayscale

if TYPE_CHECKING:
    from types import TracebackType

    import numpy as np
    from numpy.typing import NDArray

    from onnxruntime import InferenceSession

    from cvinfer.config import Settings
    from cvinfer.ml.classifier import ImageClassifier
    from cvinfer.ml.face_detector import FaceDetector
    from cvinfer.ml.face_roi import Rect
    from cvinfer.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

R = TypeVar("R")
P = TypeVar("P", bound="Pipeline")


class Pipeline(ABC, Generic[R]):
    """Lifecycle shared by all pipelines: non-reentrant ``step``, idempotent ``dispose``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._disposed = False

    def step(self, frame: NDArray[np.uint8]) -> R:
        """Process one BGR (or grayscale) frame.

        Raises:
            RuntimeError: If the pipeline has been disposed.
        """
        with self._lock:
            if self._disposed:
                raise RuntimeError(f"{type(self).__name__} has been disposed")
            return self._process(frame)

    @abstractmethod
    def _process(self, frame: NDArray[np.uint8]) -> R: ...

    def dispose(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
            self._release()

    def _release(self) -> None:
        pass

    def __enter__(self: P) -> P:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.dispose()


class DigitPipeline(Pipeline[list[ClassificationResult]]):
    """Handwritten digit classification of a whole image."""

    def __init__(self, classifier: ImageClassifier) -> None:
        super().__init__()
        self._classifier: ImageClassifier | None = classifier

    def _process(self, frame: NDArray[np.uint8]) -> list[ClassificationResult]:
        classifier = cast("ImageClassifier", self._classifier)
        return classifier.classify(digit_tensor(frame))

    def _release(self) -> None:
        self._classifier = None


@dataclass(frozen=True)
class EmotionResult:
    """Emotion probabilities and the face they were computed on (None = whole image)."""

    face: Rect | None
    predictions: list[ClassificationResult]


class EmotionPipeline(Pipeline[EmotionResult]):
    """Facial emotion classification on the first face found, or the whole image."""

    def __init__(self, classifier: ImageClassifier, face_finder: CascadeFaceFinder) -> None:
        super().__init__()
        self._classifier: ImageClassifier | None = classifier
        self._face_finder: CascadeFaceFinder | None = face_finder

    def _process(self, frame: NDArray[np.uint8]) -> EmotionResult:
        classifier = cast("ImageClassifier", self._classifier)
        face_finder = cast("CascadeFaceFinder", self._face_finder)

        gray = to_grayscale(frame)
        height, width = gray.shape[:2]
        region = select_face_roi(face_finder.detect(gray), width, height)
        if region.detected:
            logger.debug("Detected face: %s", region.rect)

        predictions = classifier.classify(emotion_tensor(crop_roi(gray, region.rect)))
        return EmotionResult(face=region.rect if region.detected else None, predictions=predictions)

    def _release(self) -> None:
        # The face finder may be shared between pipelines; only drop the reference.
        self._classifier = None
        self._face_finder = None


class FaceDetectionPipeline(Pipeline[list[Detection]]):
    """Letterboxed face detection with detections mapped back to the source frame."""

    def __init__(self, detector: FaceDetector, clip_detections: bool = False) -> None:
        super().__init__()
        self._detector: FaceDetector | None = detector
        self._clip_detections = clip_detections

    def _process(self, frame: NDArray[np.uint8]) -> list[Detection]:
        detector = cast("FaceDetector", self._detector)

        height, width = frame.shape[:2]
        size = detector.input_size
        transform = letterbox_transform(width, height, size, size)

        detections = detector.detect(letterbox_image(frame, transform, (size, size)))
        if not transform.is_identity:
            detections = remap_detections(detections, transform.inverse())
        if self._clip_detections:
            detections = [clip_detection(detection) for detection in detections]
        return detections

    def _release(self) -> None:
        self._detector = None


class PipelineFactory:
    """Builds pipelines for the configured models.

    Sessions come from the model manager's cache, so building a pipeline per
    request is cheap. The cascade face finder is loaded once and shared.
    """

    def __init__(self, settings: Settings, model_manager: ModelManager) -> None:
        self._settings = settings
        self._model_manager = model_manager
        self._face_finder: CascadeFaceFinder | None = None
        self._finder_lock = threading.Lock()

    @property
    def model_manager(self) -> ModelManager:
        return self._model_manager

    def digit_pipeline(self) -> DigitPipeline:
        name = self._settings.digit_model
        classifier = OnnxClassifier(self._session(name), DIGIT_LABELS, name)
        return DigitPipeline(classifier)

    def emotion_pipeline(self) -> EmotionPipeline:
        name = self._settings.emotion_model
        classifier = OnnxClassifier(self._session(name), EMOTION_LABELS, name)
        return EmotionPipeline(classifier, self._get_face_finder())

    def face_pipeline(self) -> FaceDetectionPipeline:
        name = self._settings.face_detection_model
        detector = BlazeFaceDetector(
            self._session(name),
            name,
            score_threshold=self._settings.score_threshold,
            iou_threshold=self._settings.nms_threshold,
        )
        return FaceDetectionPipeline(detector, clip_detections=self._settings.clip_detections)

    def shutdown(self) -> None:
        with self._finder_lock:
            if self._face_finder is not None:
                self._face_finder.close()
                self._face_finder = None
        self._model_manager.shutdown()

    def _session(self, model_name: str) -> InferenceSession:
        self._model_manager.unload_idle_models()
        return self._model_manager.get_session(model_name)

    def _get_face_finder(self) -> CascadeFaceFinder:
        with self._finder_lock:
            if self._face_finder is None:
                self._face_finder = CascadeFaceFinder(self._settings.cascade_path)
                if not self._face_finder.available:
                    logger.warning("No face cascade loaded; emotion requests will classify the whole image")
            return self._face_finder
