"""Environment-based configuration for cvinfer."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from CVINFER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CVINFER_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    log_level: str = "INFO"
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model storage
    models_dir: str = "models"
    model_repo: str = "cvinfer/cvinfer-models"

    # Model selection
    digit_model: str = "mnist_8"
    emotion_model: str = "emotion_ferplus_8"
    face_detection_model: str = "blazeface_front_128"

    # Face detection
    score_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    nms_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    clip_detections: bool = False

    # Haar cascade for the emotion ROI (None = OpenCV's bundled frontalface_alt)
    cascade_path: str | None = None

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    preload_models: bool = False
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
