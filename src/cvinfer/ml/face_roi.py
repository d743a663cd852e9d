"""Classical face finder and face region-of-interest selection for the emotion classifier."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_CASCADE_FILENAME = "haarcascade_frontalface_alt.xml"


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    @property
    def empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def center(self) -> tuple[int, int]:
        return self.x + self.width // 2, self.y + self.height // 2


@dataclass(frozen=True)
class FaceRegion:
    """The region handed to the classifier and whether it came from a detected face."""

    rect: Rect
    detected: bool


def square_rect(rect: Rect) -> Rect:
    """Return the square of side ``max(width, height)`` centered on ``rect``."""
    center_x, center_y = rect.center
    side = max(rect.width, rect.height)
    return Rect(center_x - side // 2, center_y - side // 2, side, side)


def select_face_roi(faces: Sequence[Rect], image_width: int, image_height: int) -> FaceRegion:
    """Pick the first detected face, squared; fall back to the whole image."""
    if faces:
        return FaceRegion(rect=square_rect(faces[0]), detected=True)
    return FaceRegion(rect=Rect(0, 0, image_width, image_height), detected=False)


def crop_roi(image: NDArray[np.uint8], rect: Rect) -> NDArray[np.uint8]:
    """Crop ``rect`` out of ``image``, clipped to the image bounds.

    Raises:
        ValueError: If the clipped region is empty.
    """
    height, width = image.shape[:2]
    x0 = max(rect.x, 0)
    y0 = max(rect.y, 0)
    clipped = Rect(x0, y0, min(rect.x + rect.width, width) - x0, min(rect.y + rect.height, height) - y0)
    if clipped.empty:
        raise ValueError(f"Region {rect} lies outside the {width}x{height} image")
    return image[y0 : y0 + clipped.height, x0 : x0 + clipped.width]


def default_cascade_path() -> str:
    """Return the frontal-face cascade bundled with OpenCV."""
    return str(Path(cv2.data.haarcascades) / DEFAULT_CASCADE_FILENAME)


class CascadeFaceFinder:
    """Haar-cascade face detector.

    A missing or unreadable cascade file is logged once at construction; the
    finder then reports no faces instead of failing.
    """

    def __init__(
        self,
        cascade_path: str | None = None,
        scale_factor: float = 1.1,
        min_neighbors: int = 2,
        min_size_ratio: float = 0.2,
    ) -> None:
        self._scale_factor = scale_factor
        self._min_neighbors = min_neighbors
        self._min_size_ratio = min_size_ratio
        self._cascade = self._load(cascade_path or default_cascade_path())

    @staticmethod
    def _load(path: str) -> cv2.CascadeClassifier | None:
        if not Path(path).is_file():
            logger.error("Cascade file %s is not loaded", path)
            return None
        try:
            cascade = cv2.CascadeClassifier(path)
        except cv2.error:
            logger.exception("Cascade file %s could not be parsed", path)
            return None
        if cascade.empty():
            logger.error("Cascade file %s could not be parsed", path)
            return None
        logger.info("Loaded cascade %s", path)
        return cascade

    @property
    def available(self) -> bool:
        return self._cascade is not None

    def detect(self, gray: NDArray[np.uint8]) -> list[Rect]:
        """Detect faces in a single-channel 8-bit image.

        Returns:
            Face rectangles in detector order; empty for other image types.
        """
        if self._cascade is None or gray.ndim != 2 or gray.dtype != np.uint8:
            return []

        rows, cols = gray.shape
        faces = self._cascade.detectMultiScale(
            gray,
            scaleFactor=self._scale_factor,
            minNeighbors=self._min_neighbors,
            flags=cv2.CASCADE_SCALE_IMAGE,
            minSize=(int(cols * self._min_size_ratio), int(rows * self._min_size_ratio)),
        )
        return [Rect(int(x), int(y), int(w), int(h)) for (x, y, w, h) in faces]

    def close(self) -> None:
        self._cascade = None
