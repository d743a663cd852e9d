"""Aspect-preserving letterbox transform between a source image and a square model input.

Coordinates handled here are normalized to [0, 1] on both axes. The forward
transform maps source-normalized coordinates into destination (tensor)
coordinates; its inverse maps the other way and is used both to sample the
source when building the tensor image and to bring detections back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


@dataclass(frozen=True)
class AffineTransform:
    """Axis-aligned scale + translate transform: ``p' = p * scale + translate``."""

    translate_x: float = 0.0
    translate_y: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0

    @classmethod
    def identity(cls) -> AffineTransform:
        return cls()

    @property
    def is_identity(self) -> bool:
        return self.translate_x == 0.0 and self.translate_y == 0.0 and self.scale_x == 1.0 and self.scale_y == 1.0

    def inverse(self) -> AffineTransform:
        """Return the transform undoing this one.

        Raises:
            ZeroDivisionError: If either scale factor is zero.
        """
        return AffineTransform(
            translate_x=-self.translate_x / self.scale_x,
            translate_y=-self.translate_y / self.scale_y,
            scale_x=1.0 / self.scale_x,
            scale_y=1.0 / self.scale_y,
        )

    def then(self, other: AffineTransform) -> AffineTransform:
        """Compose: apply ``self`` first, then ``other``."""
        return AffineTransform(
            translate_x=self.translate_x * other.scale_x + other.translate_x,
            translate_y=self.translate_y * other.scale_y + other.translate_y,
            scale_x=self.scale_x * other.scale_x,
            scale_y=self.scale_y * other.scale_y,
        )

    def apply_point(self, x: float, y: float) -> tuple[float, float]:
        return x * self.scale_x + self.translate_x, y * self.scale_y + self.translate_y

    def apply_extent(self, width: float, height: float) -> tuple[float, float]:
        # Sizes are not translated.
        return width * self.scale_x, height * self.scale_y

    def to_matrix(self) -> NDArray[np.float64]:
        """Return the transform as a 3x3 homogeneous matrix."""
        return np.array(
            [
                [self.scale_x, 0.0, self.translate_x],
                [0.0, self.scale_y, self.translate_y],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )


def letterbox_transform(src_width: int, src_height: int, dst_width: int, dst_height: int) -> AffineTransform:
    """Compute the transform fitting a source image inside the destination with centered bars.

    All dimensions must be positive; this is not checked.

    Args:
        src_width: Source image width in pixels.
        src_height: Source image height in pixels.
        dst_width: Destination (tensor) width in pixels.
        dst_height: Destination (tensor) height in pixels.

    Returns:
        Forward transform from source-normalized to destination-normalized coordinates.
    """
    aspect_src = src_width / src_height
    aspect_dst = dst_width / dst_height

    if aspect_src == aspect_dst:
        return AffineTransform.identity()

    if aspect_src > aspect_dst:
        # Source is wider: bars above and below.
        h = dst_width / aspect_src
        return AffineTransform(
            translate_x=0.0,
            translate_y=(dst_height - h) / (2.0 * dst_height),
            scale_x=1.0,
            scale_y=h / dst_height,
        )

    # Source is taller: bars left and right.
    w = dst_height / (src_height / src_width)
    return AffineTransform(
        translate_x=(dst_width - w) / (2.0 * dst_width),
        translate_y=0.0,
        scale_x=w / dst_width,
        scale_y=1.0,
    )


def letterbox_image(
    image: NDArray[np.uint8],
    transform: AffineTransform,
    size: tuple[int, int],
) -> NDArray[np.uint8]:
    """Resample ``image`` into a ``size`` (width, height) canvas through ``transform``.

    Every destination pixel takes the source pixel found by the inverse
    transform; pixels falling outside the source are black.
    """
    dst_width, dst_height = size
    src_height, src_width = image.shape[:2]

    # Source pixels -> source-normalized -> tensor-normalized -> tensor pixels.
    pixel_transform = (
        AffineTransform(scale_x=1.0 / src_width, scale_y=1.0 / src_height)
        .then(transform)
        .then(AffineTransform(scale_x=dst_width, scale_y=dst_height))
    )
    return cv2.warpAffine(
        image,
        pixel_transform.to_matrix()[:2],
        (dst_width, dst_height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )
