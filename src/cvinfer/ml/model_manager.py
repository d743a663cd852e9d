"""ONNX model registry and session cache.

A model file is resolved in this order: the path remembered from an earlier
lookup, ``<models_dir>/[subfolder/]<filename>``, and finally a download from
the configured HuggingFace repository into ``models_dir``. Sessions stay cached
until they sit idle for longer than ``model_ttl`` seconds (0 keeps them forever).
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from collections.abc import Iterable

    from cvinfer.config import Settings

logger = logging.getLogger(__name__)

Provider = str | tuple[str, dict[str, object]]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    DIGIT_CLASSIFICATION = "digit_classification"
    EMOTION_CLASSIFICATION = "emotion_classification"
    FACE_DETECTION = "face_detection"


@dataclass(frozen=True)
class ModelSpec:
    """Where a model file lives and what it is for."""

    name: str
    filename: str
    task: ModelTask
    license: str
    source: str
    subfolder: str | None = None

    @property
    def relative_path(self) -> Path:
        if self.subfolder:
            return Path(self.subfolder) / self.filename
        return Path(self.filename)


def _blazeface(name: str) -> ModelSpec:
    return ModelSpec(
        name=name,
        filename=f"{name}.onnx",
        subfolder="blazeface",
        task=ModelTask.FACE_DETECTION,
        license="Apache-2.0",
        source="MediaPipe",
    )


MODEL_REGISTRY: dict[str, ModelSpec] = {
    spec.name: spec
    for spec in (
        ModelSpec(
            name="mnist_8",
            filename="mnist-8.onnx",
            task=ModelTask.DIGIT_CLASSIFICATION,
            license="MIT",
            source="ONNX Model Zoo",
        ),
        ModelSpec(
            name="emotion_ferplus_8",
            filename="emotion-ferplus-8.onnx",
            task=ModelTask.EMOTION_CLASSIFICATION,
            license="MIT",
            source="ONNX Model Zoo",
        ),
        _blazeface("blazeface_front_128"),
        _blazeface("blazeface_back_256"),
    )
}


def get_model_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Runtime configuration
# ---------------------------------------------------------------------------


def execution_providers(settings: Settings) -> list[Provider]:
    """Return the ONNX Runtime provider list for ``settings.device``, CPU last."""
    if settings.device == "cuda":
        cuda_options: dict[str, object] = {
            "device_id": 0,
            "gpu_mem_limit": settings.gpu_mem_limit,
            "arena_extend_strategy": "kSameAsRequested",
        }
        return [("CUDAExecutionProvider", cuda_options), "CPUExecutionProvider"]
    if settings.device == "openvino":
        return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def session_options(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO runs its own graph optimizations.
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """What the pipelines need from a model store."""

    def get_session(self, model_name: str) -> InferenceSession: ...

    def get_loaded_models(self) -> list[str]: ...

    def unload_idle_models(self) -> None: ...

    def shutdown(self) -> None: ...


@dataclass
class _CachedSession:
    session: InferenceSession
    path: Path
    last_used: float


class OnnxModelManager:
    """Resolves model files and hands out cached InferenceSessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._providers = execution_providers(settings)
        self._session_options = session_options(settings)

        self._lock = threading.Lock()
        self._sessions: dict[str, _CachedSession] = {}
        self._model_paths: dict[str, Path] = {}

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return a local path for ``model_name``, downloading the file if needed.

        Raises:
            KeyError: If the model is not in the registry.
        """
        spec = get_model_spec(model_name)
        path = self._find_local(spec)
        if path is None:
            path = self._download(spec)
        self._model_paths[model_name] = path
        return path

    def get_session(self, model_name: str) -> InferenceSession:
        """Return the cached session for ``model_name``, loading it on first use."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.session

        path = self.ensure_downloaded(model_name)
        session = InferenceSession(str(path), sess_options=self._session_options, providers=self._providers)

        with self._lock:
            # A concurrent request may have loaded the same model meanwhile.
            cached = self._sessions.setdefault(
                model_name,
                _CachedSession(session=session, path=path, last_used=time.monotonic()),
            )
            cached.last_used = time.monotonic()
        if cached.session is session:
            logger.info("Loaded %s from %s (providers=%s)", model_name, path, session.get_providers())
        return cached.session

    def preload(self, model_names: Iterable[str]) -> None:
        """Load sessions ahead of the first request."""
        for name in model_names:
            self.get_session(name)

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def unload_idle_models(self) -> None:
        """Drop sessions unused for longer than the configured TTL."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        cutoff = time.monotonic() - ttl
        with self._lock:
            idle = [name for name, cached in self._sessions.items() if cached.last_used < cutoff]
            for name in idle:
                del self._sessions[name]
        for name in idle:
            logger.info("Unloaded %s after %ss idle", name, ttl)

    def shutdown(self) -> None:
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        logger.info("Released %d model session(s)", count)

    def _find_local(self, spec: ModelSpec) -> Path | None:
        remembered = self._model_paths.get(spec.name)
        if remembered is not None and remembered.exists():
            return remembered

        local = self._models_dir / spec.relative_path
        if local.exists():
            logger.info("Using local model file %s for %s", local, spec.name)
            return local
        return None

    def _download(self, spec: ModelSpec) -> Path:
        logger.info("Downloading %s from %s", spec.relative_path, self._settings.model_repo)
        path = Path(
            hf_hub_download(
                repo_id=self._settings.model_repo,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        logger.info("Downloaded %s to %s", spec.name, path)
        return path
