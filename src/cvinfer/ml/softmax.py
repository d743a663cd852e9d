"""Numerically stable softmax for classifier outputs."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


def softmax(scores: ArrayLike) -> NDArray[np.float32]:
    """Map raw class scores to probabilities along the last axis.

    The row maximum is subtracted before exponentiating so large logits do not
    overflow.

    Args:
        scores: Raw scores, typically shaped (1, K).

    Returns:
        float32 array of the same shape whose rows sum to 1.

    Raises:
        ValueError: If ``scores`` is empty.
    """
    values = np.asarray(scores, dtype=np.float32)
    if values.size == 0:
        raise ValueError("softmax of an empty score vector")

    shifted = values - values.max(axis=-1, keepdims=True)
    exps = np.exp(shifted)
    return exps / exps.sum(axis=-1, keepdims=True)
