"""Image classification models.

The classifier is an opaque pre-trained ONNX network: it consumes a
fixed-size pixel buffer and returns its own top label together with the full
label -> probability mapping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import numpy as np

from photolabel.errors import InferenceError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from photolabel.ml.preprocessing import PixelBuffer

logger = logging.getLogger(__name__)

IMAGENET_MEAN: tuple[float, float, float] = (0.485, 0.456, 0.406)
IMAGENET_STD: tuple[float, float, float] = (0.229, 0.224, 0.225)


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


@dataclass(frozen=True)
class Prediction:
    """Raw output of one classifier invocation."""

    class_label: str
    probabilities: dict[str, float] = field(default_factory=dict)


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def predict(self, buffer: PixelBuffer) -> Prediction:
        """Classify a normalized pixel buffer.

        Args:
            buffer: BGRA pixel buffer matching the model's input size.

        Returns:
            The model's top label and its full probability mapping.

        Raises:
            InferenceError: If the buffer does not match the input contract
                or the model output cannot be interpreted.
        """
        ...


class OnnxImageClassifier:
    """Runs a single-input NCHW ONNX classification network."""

    def __init__(
        self,
        model_name: str,
        session: InferenceSession,
        labels: Sequence[str],
        *,
        apply_softmax: bool = True,
        mean: tuple[float, float, float] = IMAGENET_MEAN,
        std: tuple[float, float, float] = IMAGENET_STD,
    ) -> None:
        if not labels:
            raise InferenceError(f"No labels available for model '{model_name}'")
        self._model_name = model_name
        self._session = session
        self._labels = list(labels)
        self._apply_softmax = apply_softmax
        self._mean = np.asarray(mean, dtype=np.float32).reshape(3, 1, 1)
        self._std = np.asarray(std, dtype=np.float32).reshape(3, 1, 1)

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def labels(self) -> list[str]:
        return list(self._labels)

    def predict(self, buffer: PixelBuffer) -> Prediction:
        input_meta = self._session.get_inputs()[0]
        self._check_input_contract(input_meta.shape, buffer)

        tensor = self._to_tensor(buffer)
        outputs = self._session.run(None, {input_meta.name: tensor})
        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)

        if scores.size != len(self._labels):
            raise InferenceError(
                f"Model '{self._model_name}' returned {scores.size} scores for {len(self._labels)} labels"
            )
        if self._apply_softmax:
            scores = _softmax(scores)

        probabilities: dict[str, float] = {}
        for label, score in zip(self._labels, scores.tolist(), strict=True):
            # Some label sets repeat a name (e.g. ImageNet "crane")
            if score > probabilities.get(label, -1.0):
                probabilities[label] = score

        class_label = self._labels[int(np.argmax(scores))]
        logger.debug("%s predicted %s", self._model_name, class_label)
        return Prediction(class_label=class_label, probabilities=probabilities)

    # -- Internal -----------------------------------------------------------

    def _check_input_contract(self, shape: Sequence[object], buffer: PixelBuffer) -> None:
        if len(shape) != 4:
            raise InferenceError(f"Model '{self._model_name}' expects a {len(shape)}-D input, not NCHW")
        _, channels, height, width = shape
        if isinstance(channels, int) and channels != 3:
            raise InferenceError(f"Model '{self._model_name}' expects {channels} channels, buffer has 3")
        # Symbolic (dynamic) dimensions accept any size
        if isinstance(height, int) and isinstance(width, int) and (height, width) != (buffer.height, buffer.width):
            raise InferenceError(
                f"Model '{self._model_name}' expects {width}x{height} input, got {buffer.width}x{buffer.height}"
            )

    def _to_tensor(self, buffer: PixelBuffer) -> NDArray[np.float32]:
        chw = buffer.to_rgb().astype(np.float32).transpose(2, 0, 1) / 255.0
        normalized = (chw - self._mean) / self._std
        return np.ascontiguousarray(normalized[np.newaxis, ...], dtype=np.float32)


def _softmax(scores: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = np.exp(scores - scores.max())
    return np.clip(shifted / shifted.sum(), 0.0, 1.0)
