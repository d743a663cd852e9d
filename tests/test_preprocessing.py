"""Tests for image decoding and tensor construction."""

from __future__ import annotations

from unittest.mock import patch

import numpy as np
import pytest
from conftest import encode_png, png_header

from cvinfer.ml.preprocessing import (
    ImageTooLargeError,
    blazeface_tensor,
    decode_image,
    digit_tensor,
    emotion_tensor,
    read_image_size,
    to_grayscale,
    to_model_layout,
)


class TestDecodeImage:
    def test_decodes_png(self) -> None:
        image = np.zeros((20, 30, 3), dtype=np.uint8)
        image[:, :, 2] = 255
        decoded = decode_image(encode_png(image), max_pixels=10_000)
        assert decoded.shape == (20, 30, 3)
        assert decoded.dtype == np.uint8
        assert (decoded[:, :, 2] == 255).all()

    def test_grayscale_png_becomes_three_channels(self) -> None:
        decoded = decode_image(encode_png(np.full((8, 8), 9, dtype=np.uint8)), max_pixels=100)
        assert decoded.shape == (8, 8, 3)

    def test_garbage_rejected(self) -> None:
        with pytest.raises(ValueError, match="decode"):
            decode_image(b"fake image data", max_pixels=10_000)

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValueError, match="decode"):
            decode_image(b"", max_pixels=10_000)

    def test_pixel_limit(self) -> None:
        data = encode_png(np.zeros((20, 30, 3), dtype=np.uint8))
        with pytest.raises(ImageTooLargeError, match="exceeding"):
            decode_image(data, max_pixels=599)
        assert decode_image(data, max_pixels=600).shape == (20, 30, 3)

    def test_declared_size_checked_before_decoding(self) -> None:
        data = png_header(9000, 9000)
        assert len(data) < 100
        with patch("cvinfer.ml.preprocessing.cv2.imdecode") as imdecode:
            with pytest.raises(ImageTooLargeError, match="9000x9000"):
                decode_image(data, max_pixels=1_000_000)
        imdecode.assert_not_called()

    def test_decompression_bomb_header(self) -> None:
        with pytest.raises(ImageTooLargeError):
            decode_image(png_header(100_000, 100_000), max_pixels=10**12)

    def test_read_image_size(self) -> None:
        assert read_image_size(encode_png(np.zeros((20, 30), dtype=np.uint8))) == (30, 20)


class TestTensors:
    def test_grayscale_passthrough_and_bgra(self) -> None:
        gray = np.zeros((4, 4), dtype=np.uint8)
        assert to_grayscale(gray) is gray
        assert to_grayscale(np.zeros((4, 4, 4), dtype=np.uint8)).shape == (4, 4)

    def test_digit_tensor_is_scaled(self) -> None:
        image = np.full((100, 80, 3), 255, dtype=np.uint8)
        tensor = digit_tensor(image)
        assert tensor.shape == (1, 28, 28, 1)
        assert tensor.dtype == np.float32
        assert tensor == pytest.approx(np.ones_like(tensor))

    def test_black_digit_tensor_is_zero(self) -> None:
        assert not digit_tensor(np.zeros((28, 28, 3), dtype=np.uint8)).any()

    def test_emotion_tensor_is_unscaled(self) -> None:
        tensor = emotion_tensor(np.full((40, 40), 200, dtype=np.uint8))
        assert tensor.shape == (1, 64, 64, 1)
        assert float(tensor.max()) == 200.0

    def test_blazeface_tensor_is_rgb_in_unit_range(self) -> None:
        blue = np.zeros((128, 128, 3), dtype=np.uint8)
        blue[:, :, 0] = 255
        tensor = blazeface_tensor(blue)
        assert tensor.shape == (1, 128, 128, 3)
        assert tensor[0, 0, 0].tolist() == pytest.approx([-1.0, -1.0, 1.0])


class TestModelLayout:
    def test_channels_first_model(self) -> None:
        tensor = np.zeros((1, 64, 64, 1), dtype=np.float32)
        assert to_model_layout(tensor, [1, 1, 64, 64]).shape == (1, 1, 64, 64)

    def test_channels_first_rgb_model(self) -> None:
        tensor = np.zeros((1, 128, 128, 3), dtype=np.float32)
        out = to_model_layout(tensor, ["batch", 3, 128, 128])
        assert out.shape == (1, 3, 128, 128)
        assert out.flags["C_CONTIGUOUS"]

    def test_channels_last_model(self) -> None:
        tensor = np.zeros((1, 28, 28, 1), dtype=np.float32)
        assert to_model_layout(tensor, [1, 28, 28, 1]) is tensor

    def test_unknown_shape_left_alone(self) -> None:
        tensor = np.zeros((1, 28, 28, 1), dtype=np.float32)
        assert to_model_layout(tensor, [None, None]) is tensor
