"""Overlay drawing for detections and face regions. Colors are BGR."""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2

if TYPE_CHECKING:
    from collections.abc import Iterable

    import numpy as np
    from numpy.typing import NDArray

    from cvinfer.ml.detection import Detection
    from cvinfer.ml.face_roi import Rect

BOX_COLOR = (0, 0, 255)
POINT_COLOR = (0, 255, 255)
LABEL_BACKGROUND = (255, 255, 255)
LABEL_COLOR = (0, 0, 0)
FONT = cv2.FONT_HERSHEY_SIMPLEX
FONT_SCALE = 0.5


def draw_detection(frame: NDArray[np.uint8], detection: Detection) -> None:
    """Draw one source-normalized detection onto ``frame`` in place."""
    height, width = frame.shape[:2]
    left, top, right, bottom = detection.box
    left, right = left * width, right * width
    top, bottom = top * height, bottom * height

    cv2.rectangle(frame, (round(left), round(top)), (round(right), round(bottom)), BOX_COLOR, 2)

    for point in detection.keypoints.values():
        cv2.circle(frame, (round(point.x * width), round(point.y * height)), 5, POINT_COLOR, -1)

    label = f"{detection.score:.2f}"
    (label_width, label_height), baseline = cv2.getTextSize(label, FONT, FONT_SCALE, 1)
    top = max(top, label_height)
    cv2.rectangle(
        frame,
        (round(left), round(top - label_height)),
        (round(left + label_width), round(top + baseline)),
        LABEL_BACKGROUND,
        cv2.FILLED,
    )
    cv2.putText(frame, label, (round(left), round(top)), FONT, FONT_SCALE, LABEL_COLOR)


def draw_detections(frame: NDArray[np.uint8], detections: Iterable[Detection]) -> NDArray[np.uint8]:
    """Return a copy of ``frame`` annotated with every detection."""
    annotated = frame.copy()
    for detection in detections:
        draw_detection(annotated, detection)
    return annotated


def draw_face_rect(frame: NDArray[np.uint8], rect: Rect | None) -> NDArray[np.uint8]:
    """Return a copy of ``frame`` with ``rect`` outlined; unchanged copy when ``rect`` is None."""
    annotated = frame.copy()
    if rect is not None:
        cv2.rectangle(
            annotated,
            (rect.x, rect.y),
            (rect.x + rect.width, rect.y + rect.height),
            BOX_COLOR,
            2,
        )
    return annotated
