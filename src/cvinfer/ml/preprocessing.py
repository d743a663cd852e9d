"""Image preprocessing: decoding, size validation, and tensor construction.

Tensors are built channels-last (N, H, W, C) and transposed to channels-first
only when the model input asks for it (see ``to_model_layout``).
"""

from __future__ import annotations

from io import BytesIO
from typing import TYPE_CHECKING

import cv2
import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

MNIST_SIZE = 28
EMOTION_SIZE = 64


class ImageTooLargeError(ValueError):
    """Raised when a decoded image exceeds the configured pixel limit."""


def read_image_size(image_bytes: bytes) -> tuple[int, int]:
    """Return ``(width, height)`` from the image header without decoding pixel data.

    Raises:
        ValueError: If the format is not recognized.
        ImageTooLargeError: If the header declares a decompression bomb.
    """
    try:
        with Image.open(BytesIO(image_bytes)) as header:
            return header.size
    except Image.DecompressionBombError as exc:
        raise ImageTooLargeError(str(exc)) from exc
    except OSError as exc:
        raise ValueError("Could not decode image data") from exc


def decode_image(image_bytes: bytes, max_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into a BGR uint8 array.

    The declared dimensions are checked before any pixel buffer is allocated.

    Raises:
        ValueError: If the data cannot be decoded.
        ImageTooLargeError: If the image has more than ``max_pixels`` pixels.
    """
    width, height = read_image_size(image_bytes)
    if width * height > max_pixels:
        raise ImageTooLargeError(f"Image is {width}x{height}, exceeding the limit of {max_pixels} pixels")

    image = cv2.imdecode(np.frombuffer(image_bytes, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Could not decode image data")
    return image


def to_grayscale(image: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Convert a BGR or BGRA image to single-channel; grayscale input is returned as is."""
    if image.ndim == 2:
        return image
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)


def digit_tensor(image: NDArray[np.uint8]) -> NDArray[np.float32]:
    """Build the (1, 28, 28, 1) MNIST input: white digit on black, scaled to [0, 1]."""
    gray = to_grayscale(image)
    resized = cv2.resize(gray, (MNIST_SIZE, MNIST_SIZE))
    return (resized.astype(np.float32) / 255.0).reshape(1, MNIST_SIZE, MNIST_SIZE, 1)


def emotion_tensor(face: NDArray[np.uint8]) -> NDArray[np.float32]:
    """Build the (1, 64, 64, 1) FER+ input from a face crop. Pixel values stay in [0, 255]."""
    gray = to_grayscale(face)
    resized = cv2.resize(gray, (EMOTION_SIZE, EMOTION_SIZE))
    return resized.astype(np.float32).reshape(1, EMOTION_SIZE, EMOTION_SIZE, 1)


def blazeface_tensor(letterboxed: NDArray[np.uint8]) -> NDArray[np.float32]:
    """Build the (1, S, S, 3) BlazeFace input: RGB scaled to [-1, 1]."""
    rgb = cv2.cvtColor(letterboxed, cv2.COLOR_BGR2RGB)
    return (rgb.astype(np.float32) / 127.5 - 1.0)[np.newaxis, ...]


def to_model_layout(tensor: NDArray[np.float32], input_shape: Sequence[int | str | None]) -> NDArray[np.float32]:
    """Transpose an NHWC tensor to NCHW when the model input is channels-first.

    Dynamic dimensions (``None`` or symbolic names) in ``input_shape`` are
    ignored; a shape that cannot be interpreted leaves the tensor unchanged.
    """
    if len(input_shape) != 4:
        return tensor

    channels = tensor.shape[3]
    dim1, dim3 = input_shape[1], input_shape[3]
    if dim1 == channels and dim3 != channels:
        return np.ascontiguousarray(tensor.transpose(0, 3, 1, 2))
    return tensor
