"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, TypeVar

import cv2
import numpy as np
from fastapi import APIRouter, Depends, HTTPException, Response, status

from cvinfer.api.dependencies import PipelinesDep, PoolDep, SettingsDep, UploadDep, verify_api_key
from cvinfer.api.schemas import (
    ClassifyDigitResponse,
    ClassifyEmotionResponse,
    DetectedFace,
    ErrorResponse,
    FaceRect,
    HealthResponse,
    Keypoint,
    ModelInfo,
    ModelsResponse,
    Prediction,
)
from cvinfer.ml.classifier import format_scores, top_result
from cvinfer.ml.drawing import draw_detections, draw_face_rect
from cvinfer.ml.model_manager import MODEL_REGISTRY
from cvinfer.ml.preprocessing import ImageTooLargeError, decode_image

if TYPE_CHECKING:
    from collections.abc import Callable

    from cvinfer.ml.inference import InferencePool
    from cvinfer.ml.pipeline import Pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_INFERENCE_ERRORS = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}

EMOTION_LABEL_WIDTH = 12

T = TypeVar("T")


async def _decode(pool: PoolDep, settings: SettingsDep, data: UploadDep) -> np.ndarray:
    try:
        return await pool.run(decode_image, data, settings.max_image_pixels)
    except ImageTooLargeError as exc:
        raise HTTPException(status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server busy") from exc


async def _run(pool: InferencePool, build: Callable[[], Pipeline[T]], image: np.ndarray) -> T:
    try:
        return await pool.run_pipeline(build, image)
    except TimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server busy") from exc
    except (KeyError, OSError, RuntimeError) as exc:
        logger.exception("Pipeline unavailable")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Model unavailable: {exc}",
        ) from exc


def _png_response(annotated: np.ndarray) -> Response:
    ok, encoded = cv2.imencode(".png", annotated)
    if not ok:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not encode image")
    return Response(content=encoded.tobytes(), media_type="image/png")


ImageDep = Annotated[np.ndarray, Depends(_decode)]


@router.post(
    "/classify-digit",
    response_model=ClassifyDigitResponse,
    responses=_INFERENCE_ERRORS,
    summary="Classify a handwritten digit",
)
async def classify_digit(
    pool: PoolDep,
    pipelines: PipelinesDep,
    image: ImageDep,
) -> ClassifyDigitResponse:
    """Classify a white-on-black handwritten digit image."""
    results = await _run(pool, pipelines.digit_pipeline, image)
    return ClassifyDigitResponse(
        label=top_result(results).label,
        predictions=[Prediction(label=r.label, confidence=r.confidence) for r in results],
        text=format_scores(results),
    )


@router.post(
    "/classify-emotion",
    response_model=ClassifyEmotionResponse,
    responses=_INFERENCE_ERRORS,
    summary="Classify the facial emotion in an image",
)
async def classify_emotion(
    pool: PoolDep,
    pipelines: PipelinesDep,
    image: ImageDep,
) -> ClassifyEmotionResponse:
    """Classify the emotion of the first detected face, or of the whole image if none is found."""
    result = await _run(pool, pipelines.emotion_pipeline, image)
    face = result.face
    return ClassifyEmotionResponse(
        face=FaceRect(x=face.x, y=face.y, width=face.width, height=face.height) if face is not None else None,
        label=top_result(result.predictions).label,
        predictions=[Prediction(label=r.label, confidence=r.confidence) for r in result.predictions],
        text=format_scores(result.predictions, EMOTION_LABEL_WIDTH),
    )


@router.post(
    "/classify-emotion/annotated",
    response_class=Response,
    responses={
        **_INFERENCE_ERRORS,
        status.HTTP_200_OK: {"content": {"image/png": {}}},
    },
    summary="Classify the facial emotion and return the image with the face outlined",
)
async def classify_emotion_annotated(
    pool: PoolDep,
    pipelines: PipelinesDep,
    image: ImageDep,
) -> Response:
    """Return the uploaded image as PNG with the squared face region drawn on it."""
    result = await _run(pool, pipelines.emotion_pipeline, image)
    return _png_response(draw_face_rect(image, result.face))


@router.post(
    "/detect-faces",
    response_model=list[DetectedFace],
    responses=_INFERENCE_ERRORS,
    summary="Detect faces in an image",
)
async def detect_faces(
    pool: PoolDep,
    pipelines: PipelinesDep,
    image: ImageDep,
) -> list[DetectedFace]:
    """Detect faces and their keypoints, in coordinates relative to the uploaded image."""
    detections = await _run(pool, pipelines.face_pipeline, image)
    return [
        DetectedFace(
            score=d.score,
            x=d.center.x,
            y=d.center.y,
            width=d.extent.x,
            height=d.extent.y,
            keypoints={name: Keypoint(x=p.x, y=p.y) for name, p in d.keypoints.items()},
        )
        for d in detections
    ]


@router.post(
    "/detect-faces/annotated",
    response_class=Response,
    responses={
        **_INFERENCE_ERRORS,
        status.HTTP_200_OK: {"content": {"image/png": {}}},
    },
    summary="Detect faces and return the annotated image",
)
async def detect_faces_annotated(
    pool: PoolDep,
    pipelines: PipelinesDep,
    image: ImageDep,
) -> Response:
    """Return the uploaded image as PNG with boxes, keypoints and scores drawn on it."""
    detections = await _run(pool, pipelines.face_pipeline, image)
    return _png_response(draw_detections(image, detections))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(settings: SettingsDep, pool: PoolDep, pipelines: PipelinesDep) -> HealthResponse:
    """Return service health status."""
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=pipelines.model_manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(settings: SettingsDep) -> ModelsResponse:
    """Return known models and whether the current configuration uses them."""
    active_models = {settings.digit_model, settings.emotion_model, settings.face_detection_model}
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                task=spec.task,
                status="active" if spec.name in active_models else "available",
                license=spec.license,
                source=spec.source,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
