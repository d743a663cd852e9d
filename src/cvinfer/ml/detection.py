"""Face detection record and its coordinate remapping."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cvinfer.ml.letterbox import AffineTransform


@dataclass(frozen=True)
class Point:
    """A normalized 2D point (or extent when used as width/height)."""

    x: float
    y: float


@dataclass(frozen=True)
class Detection:
    """A single face detection with six keypoints.

    All coordinates are normalized. They are relative to the square model input
    as produced by the detector, and relative to the source image once remapped.
    ``left``/``right`` refer to the image sides, not the subject's.
    """

    KEYPOINT_NAMES: ClassVar[tuple[str, ...]] = (
        "left_eye",
        "right_eye",
        "nose",
        "mouth",
        "left_ear",
        "right_ear",
    )

    score: float
    center: Point
    extent: Point
    left_eye: Point
    right_eye: Point
    nose: Point
    mouth: Point
    left_ear: Point
    right_ear: Point

    @property
    def keypoints(self) -> dict[str, Point]:
        return {name: getattr(self, name) for name in self.KEYPOINT_NAMES}

    @property
    def box(self) -> tuple[float, float, float, float]:
        """Return (left, top, right, bottom) in normalized coordinates."""
        half_w = self.extent.x / 2
        half_h = self.extent.y / 2
        return (
            self.center.x - half_w,
            self.center.y - half_h,
            self.center.x + half_w,
            self.center.y + half_h,
        )


def remap_detection(detection: Detection, transform: AffineTransform) -> Detection:
    """Return a copy of ``detection`` with its geometry passed through ``transform``.

    Points are scaled and translated, the extent is only scaled, the score is kept.
    """
    mapped = {
        name: Point(*transform.apply_point(point.x, point.y)) for name, point in detection.keypoints.items()
    }
    return replace(
        detection,
        center=Point(*transform.apply_point(detection.center.x, detection.center.y)),
        extent=Point(*transform.apply_extent(detection.extent.x, detection.extent.y)),
        **mapped,
    )


def remap_detections(detections: Iterable[Detection], transform: AffineTransform) -> list[Detection]:
    """Remap every detection, one output per input, in input order."""
    return [remap_detection(detection, transform) for detection in detections]


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def clip_detection(detection: Detection) -> Detection:
    """Clamp a source-space detection to the unit square.

    The box edges are clamped independently, so a box hanging over the border
    shrinks and its center moves inwards.
    """
    left, top, right, bottom = (_clamp(v) for v in detection.box)
    clamped = {name: Point(_clamp(p.x), _clamp(p.y)) for name, p in detection.keypoints.items()}
    return replace(
        detection,
        center=Point((left + right) / 2, (top + bottom) / 2),
        extent=Point(right - left, bottom - top),
        **clamped,
    )
