"""Pydantic request/response schemas for the cvinfer API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Keypoint(BaseModel):
    """A normalized 2D point."""

    x: float
    y: float


class DetectedFace(BaseModel):
    """A single face detection in source-image normalized coordinates."""

    score: float = Field(description="Detection confidence (0.0-1.0)")
    x: float = Field(description="Relative bounding box center x")
    y: float = Field(description="Relative bounding box center y")
    width: float = Field(description="Relative bounding box width")
    height: float = Field(description="Relative bounding box height")
    keypoints: dict[str, Keypoint] = Field(
        description="left_eye, right_eye, nose, mouth, left_ear, right_ear (image sides)"
    )


class Prediction(BaseModel):
    """A single class label with its probability."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)


class ClassifyDigitResponse(BaseModel):
    """Response for digit classification."""

    label: str = Field(description="Most probable digit")
    predictions: list[Prediction]
    text: str


class FaceRect(BaseModel):
    """A pixel-space rectangle."""

    x: int
    y: int
    width: int
    height: int


class ClassifyEmotionResponse(BaseModel):
    """Response for emotion classification."""

    face: FaceRect | None = Field(description="Squared face region used, or null if the whole image was used")
    label: str = Field(description="Most probable emotion")
    predictions: list[Prediction]
    text: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(
        description="Model task: 'digit_classification', 'emotion_classification', or 'face_detection'"
    )
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str
    source: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
