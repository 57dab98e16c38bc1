"""Model manager: resolve, download, and load ONNX classifiers.

Handles downloading model and label files from HuggingFace (or using local
overrides) and building a fresh ONNX InferenceSession for every analysis.
Sessions are never cached: each classifier lives for exactly one request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from photolabel.ml.image_classifier import OnnxImageClassifier

if TYPE_CHECKING:
    from photolabel.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is downloaded and return its file path."""
        ...

    def load_labels(self, model_name: str) -> list[str]:
        """Return the ordered class labels for a model."""
        ...

    def create_classifier(self, model_name: str) -> OnnxImageClassifier:
        """Build a new classifier backed by a fresh InferenceSession."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    IMAGE_CLASSIFICATION = "image_classification"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classification model."""

    name: str
    repo_id: str
    filename: str
    labels_filename: str
    subfolder: str | None
    task: ModelTask
    license: str
    input_size: tuple[int, int]
    apply_softmax: bool


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "mobilenetv2_12": ModelSpec(
        name="mobilenetv2_12",
        repo_id="photolabel/photolabel-models",
        filename="mobilenetv2-12.onnx",
        labels_filename="imagenet_labels.txt",
        subfolder=None,
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
        input_size=(224, 224),
        apply_softmax=True,
    ),
    "resnet50_v2_7": ModelSpec(
        name="resnet50_v2_7",
        repo_id="photolabel/photolabel-models",
        filename="resnet50-v2-7.onnx",
        labels_filename="imagenet_labels.txt",
        subfolder=None,
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
        input_size=(224, 224),
        apply_softmax=True,
    ),
    "squeezenet1_1_7": ModelSpec(
        name="squeezenet1_1_7",
        repo_id="photolabel/photolabel-models",
        filename="squeezenet1.1-7.onnx",
        labels_filename="imagenet_labels.txt",
        subfolder=None,
        task=ModelTask.IMAGE_CLASSIFICATION,
        license="Apache-2.0",
        input_size=(224, 224),
        apply_softmax=True,
    ),
}


def get_model_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves model files and builds ONNX-backed classifiers."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._model_paths: dict[str, Path] = {}
        self._labels_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return the local model file, downloading it from HuggingFace if needed."""
        spec = get_model_spec(model_name)
        override = self._override(model_name, self._settings.model_path)
        if override is not None:
            return override
        return self._fetch(spec, spec.filename, self._model_paths)

    def ensure_labels(self, model_name: str) -> Path:
        """Return the local labels file, downloading it from HuggingFace if needed."""
        spec = get_model_spec(model_name)
        override = self._override(model_name, self._settings.labels_path)
        if override is not None:
            return override
        return self._fetch(spec, spec.labels_filename, self._labels_paths)

    def load_labels(self, model_name: str) -> list[str]:
        """Read the newline-delimited labels file, one class per line."""
        path = self.ensure_labels(model_name)
        labels = [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
        logger.debug("Loaded %d labels for %s from %s", len(labels), model_name, path)
        return labels

    def create_session(self, model_name: str) -> InferenceSession:
        """Create a new InferenceSession. The caller owns and drops it."""
        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )
        logger.info("Created session for %s", model_name)
        return session

    def create_classifier(self, model_name: str) -> OnnxImageClassifier:
        """Build a classifier for one analysis."""
        spec = get_model_spec(model_name)
        return OnnxImageClassifier(
            spec.name,
            self.create_session(model_name),
            self.load_labels(model_name),
            apply_softmax=spec.apply_softmax,
        )

    # -- Internal -----------------------------------------------------------

    def _override(self, model_name: str, configured: str | None) -> Path | None:
        if configured is None or model_name != self._settings.classification_model:
            return None
        path = Path(configured)
        if not path.exists():
            raise FileNotFoundError(f"Configured file does not exist: {path}")
        return path

    def _fetch(self, spec: ModelSpec, filename: str, known: dict[str, Path]) -> Path:
        cached = known.get(spec.name)
        if cached is not None and cached.exists():
            return cached

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        known[spec.name] = downloaded
        logger.info("Downloaded %s for %s to %s", filename, spec.name, downloaded)
        return downloaded

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
