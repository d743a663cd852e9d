"""Shared test doubles."""

from __future__ import annotations

import struct
import zlib
from types import SimpleNamespace
from typing import TYPE_CHECKING

import cv2
import numpy as np
import pytest

from cvinfer.ml.blazeface import NUM_COORDS

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray


class FakeSession:
    """Stands in for onnxruntime.InferenceSession: fixed outputs, recorded feeds."""

    def __init__(self, input_shape: Sequence[int | str | None], outputs: list[NDArray[np.float32]]) -> None:
        self._input = SimpleNamespace(name="input", shape=list(input_shape))
        self._outputs = outputs
        self.feeds: list[dict[str, NDArray[np.float32]]] = []

    def get_inputs(self) -> list[SimpleNamespace]:
        return [self._input]

    def run(self, output_names: list[str] | None, feeds: dict[str, NDArray[np.float32]]) -> list[NDArray[np.float32]]:
        self.feeds.append(feeds)
        return self._outputs


def blazeface_outputs(num_anchors: int = 896) -> tuple[NDArray[np.float32], NDArray[np.float32]]:
    """Return (regressors, logits) with every candidate far below any threshold."""
    regressors = np.zeros((1, num_anchors, NUM_COORDS), dtype=np.float32)
    logits = np.full((1, num_anchors, 1), -10.0, dtype=np.float32)
    return regressors, logits


def encode_png(image: NDArray[np.uint8]) -> bytes:
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


def _png_chunk(kind: bytes, body: bytes) -> bytes:
    return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body))


def png_header(width: int, height: int) -> bytes:
    """Return a tiny PNG that declares ``width`` x ``height`` but carries no pixel data."""
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 0, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + _png_chunk(b"IHDR", ihdr) + _png_chunk(b"IDAT", b"") + _png_chunk(b"IEND", b"")


@pytest.fixture()
def digit_session() -> FakeSession:
    return FakeSession([1, 1, 28, 28], [np.zeros((1, 10), dtype=np.float32)])


@pytest.fixture()
def emotion_session() -> FakeSession:
    return FakeSession([1, 1, 64, 64], [np.zeros((1, 8), dtype=np.float32)])


@pytest.fixture()
def blazeface_session() -> FakeSession:
    regressors, logits = blazeface_outputs()
    return FakeSession([1, 3, 128, 128], [regressors, logits])
