"""BlazeFace output decoding: SSD anchors, box/keypoint decoding, weighted NMS.

The model emits 896 candidates. Each regressor row holds 16 values in input
pixels: box center offset (x, y), box size (w, h), then six keypoint offsets
(x, y). A separate logit per candidate gives the face score.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from cvinfer.ml.detection import Detection, Point

if TYPE_CHECKING:
    from numpy.typing import NDArray

NUM_KEYPOINTS = 6
NUM_COORDS = 4 + 2 * NUM_KEYPOINTS
SCORE_CLIP = 100.0


@dataclass(frozen=True)
class AnchorConfig:
    """Anchor grid layout for one BlazeFace variant."""

    input_size: int
    strides: tuple[int, ...]
    anchors_per_cell: tuple[int, ...]


# Front camera model (128x128) and back camera model (256x256).
ANCHOR_CONFIGS: dict[int, AnchorConfig] = {
    128: AnchorConfig(input_size=128, strides=(8, 16), anchors_per_cell=(2, 6)),
    256: AnchorConfig(input_size=256, strides=(16, 32), anchors_per_cell=(2, 6)),
}


def generate_anchors(config: AnchorConfig) -> NDArray[np.float32]:
    """Return anchor centers as an (N, 2) array of normalized (x, y).

    Anchors have a fixed unit size, so only centers are needed. Order is grid by
    grid, then row-major, then anchor within the cell.
    """
    centers: list[NDArray[np.float32]] = []
    for stride, per_cell in zip(config.strides, config.anchors_per_cell, strict=True):
        grid = config.input_size // stride
        coords = (np.arange(grid, dtype=np.float32) + 0.5) / grid
        xs, ys = np.meshgrid(coords, coords)
        grid_centers = np.stack([xs.ravel(), ys.ravel()], axis=1)
        centers.append(np.repeat(grid_centers, per_cell, axis=0))
    return np.concatenate(centers, axis=0)


def _sigmoid(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    clipped = np.clip(logits, -SCORE_CLIP, SCORE_CLIP)
    return 1.0 / (1.0 + np.exp(-clipped))


def decode_boxes(
    regressors: NDArray[np.float32],
    anchors: NDArray[np.float32],
    input_size: int,
) -> NDArray[np.float32]:
    """Decode raw regressors into normalized (N, 16) rows.

    Columns: center x, center y, width, height, then six keypoint (x, y) pairs.
    """
    decoded = regressors.reshape(-1, NUM_COORDS).astype(np.float32) / float(input_size)
    decoded[:, 0:2] += anchors
    for k in range(NUM_KEYPOINTS):
        start = 4 + 2 * k
        decoded[:, start : start + 2] += anchors
    return decoded


def _iou(box: NDArray[np.float32], others: NDArray[np.float32]) -> NDArray[np.float32]:
    """IoU between one (cx, cy, w, h) box and an (M, 4) array of such boxes."""
    left = np.maximum(box[0] - box[2] / 2, others[:, 0] - others[:, 2] / 2)
    top = np.maximum(box[1] - box[3] / 2, others[:, 1] - others[:, 3] / 2)
    right = np.minimum(box[0] + box[2] / 2, others[:, 0] + others[:, 2] / 2)
    bottom = np.minimum(box[1] + box[3] / 2, others[:, 1] + others[:, 3] / 2)

    inter = np.maximum(0.0, right - left) * np.maximum(0.0, bottom - top)
    union = box[2] * box[3] + others[:, 2] * others[:, 3] - inter
    return np.where(union > 0, inter / np.maximum(union, 1e-12), 0.0)


def weighted_nms(
    boxes: NDArray[np.float32],
    scores: NDArray[np.float32],
    iou_threshold: float,
) -> list[tuple[float, NDArray[np.float32]]]:
    """Blend overlapping candidates.

    The highest-scoring remaining candidate absorbs every candidate overlapping
    it by more than ``iou_threshold``; the merged geometry is the score-weighted
    mean and the merged score is the top score.

    Returns:
        (score, row) pairs ordered by score, descending.
    """
    order = np.argsort(-scores, kind="stable")
    remaining = order
    merged: list[tuple[float, NDArray[np.float32]]] = []

    while remaining.size > 0:
        top = remaining[0]
        overlaps = _iou(boxes[top, :4], boxes[remaining, :4])
        cluster = remaining[overlaps > iou_threshold]
        if cluster.size == 0:
            cluster = remaining[:1]

        weights = scores[cluster]
        blended = (boxes[cluster] * weights[:, np.newaxis]).sum(axis=0) / weights.sum()
        merged.append((float(scores[top]), blended.astype(np.float32)))

        remaining = remaining[overlaps <= iou_threshold]
        remaining = remaining[remaining != top]

    return merged


def _to_detection(score: float, row: NDArray[np.float32]) -> Detection:
    keypoints = {
        name: Point(float(row[4 + 2 * k]), float(row[5 + 2 * k]))
        for k, name in enumerate(Detection.KEYPOINT_NAMES)
    }
    return Detection(
        score=score,
        center=Point(float(row[0]), float(row[1])),
        extent=Point(float(row[2]), float(row[3])),
        **keypoints,
    )


class BlazeFaceDecoder:
    """Turns raw BlazeFace outputs into detections in tensor-normalized space."""

    def __init__(self, input_size: int, score_threshold: float = 0.75, iou_threshold: float = 0.3) -> None:
        try:
            config = ANCHOR_CONFIGS[input_size]
        except KeyError:
            raise ValueError(f"Unsupported BlazeFace input size: {input_size}") from None
        self.input_size = input_size
        self.score_threshold = score_threshold
        self.iou_threshold = iou_threshold
        self._anchors = generate_anchors(config)

    @property
    def num_anchors(self) -> int:
        return int(self._anchors.shape[0])

    def decode(self, regressors: NDArray[np.float32], logits: NDArray[np.float32]) -> list[Detection]:
        """Decode one image's outputs.

        Raises:
            ValueError: If the outputs do not match the anchor count.
        """
        regressors = np.asarray(regressors, dtype=np.float32).reshape(-1, NUM_COORDS)
        logits = np.asarray(logits, dtype=np.float32).reshape(-1)
        if regressors.shape[0] != self.num_anchors or logits.shape[0] != self.num_anchors:
            raise ValueError(
                f"Expected {self.num_anchors} candidates, got {regressors.shape[0]} boxes and {logits.shape[0]} scores"
            )

        scores = _sigmoid(logits)
        keep = scores >= self.score_threshold
        if not np.any(keep):
            return []

        boxes = decode_boxes(regressors[keep], self._anchors[keep], self.input_size)
        return [_to_detection(score, row) for score, row in weighted_nms(boxes, scores[keep], self.iou_threshold)]
