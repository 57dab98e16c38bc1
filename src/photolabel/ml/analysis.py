"""Analysis pipeline: source image -> pixel buffer -> prediction -> report.

Every failure is terminal for the current attempt and is turned into a
display string; nothing here retries or raises to the caller.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from photolabel.errors import BufferConversionError, InferenceError, NoImageSelectedError
from photolabel.ml.preprocessing import DEFAULT_INPUT_SIZE, to_pixel_buffer
from photolabel.ml.ranking import DEFAULT_TOP_K, format_failure, format_report, rank_predictions

if TYPE_CHECKING:
    from collections.abc import Callable

    from PIL import Image

    from photolabel.ml.image_classifier import ClassificationResult, ImageClassifier, Prediction

    ClassifierFactory = Callable[[], ImageClassifier]

logger = logging.getLogger(__name__)

IDLE_MESSAGE = "Select an image"
NO_IMAGE_MESSAGE = "No image selected"
CONVERSION_FAILURE_MESSAGE = "Could not convert the image for analysis"


class AnalysisStatus(StrEnum):
    IDLE = "idle"
    OK = "ok"
    NO_IMAGE = "no_image"
    CONVERSION_FAILED = "conversion_failed"
    INFERENCE_FAILED = "inference_failed"


@dataclass(frozen=True)
class AnalysisReport:
    """Outcome of one analysis attempt, ready for display."""

    status: AnalysisStatus
    message: str
    primary_label: str | None = None
    predictions: tuple[ClassificationResult, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is AnalysisStatus.OK


def classify(
    image: Image.Image | None,
    classifier_factory: ClassifierFactory,
    size: tuple[int, int] = DEFAULT_INPUT_SIZE,
) -> Prediction:
    """Run normalization and inference, raising on the first failed step.

    Raises:
        NoImageSelectedError: If ``image`` is None. No buffer is allocated.
        BufferConversionError: If normalization fails. The classifier is
            never built.
        InferenceError: If the classifier cannot be built or cannot predict.
    """
    if image is None:
        raise NoImageSelectedError(NO_IMAGE_MESSAGE)

    buffer = to_pixel_buffer(image, size)

    try:
        classifier = classifier_factory()
        return classifier.predict(buffer)
    except InferenceError:
        raise
    except Exception as exc:
        raise InferenceError(str(exc) or type(exc).__name__) from exc


def analyze_image(
    image: Image.Image | None,
    classifier_factory: ClassifierFactory,
    *,
    size: tuple[int, int] = DEFAULT_INPUT_SIZE,
    top_k: int = DEFAULT_TOP_K,
) -> AnalysisReport:
    """Classify ``image`` and render the top-k report."""
    try:
        prediction = classify(image, classifier_factory, size)
    except NoImageSelectedError:
        logger.info("Analysis requested with no image selected")
        return AnalysisReport(status=AnalysisStatus.NO_IMAGE, message=NO_IMAGE_MESSAGE)
    except BufferConversionError as exc:
        logger.warning("Pixel buffer conversion failed: %s", exc)
        return AnalysisReport(status=AnalysisStatus.CONVERSION_FAILED, message=CONVERSION_FAILURE_MESSAGE)
    except InferenceError as exc:
        logger.exception("Inference failed")
        return AnalysisReport(status=AnalysisStatus.INFERENCE_FAILED, message=format_failure(exc))

    ranked = rank_predictions(prediction.probabilities, top_k)
    logger.info(
        "Classified image as %s (top %d: %s)",
        prediction.class_label,
        len(ranked),
        ", ".join(result.label for result in ranked),
    )
    return AnalysisReport(
        status=AnalysisStatus.OK,
        message=format_report(prediction.class_label, ranked),
        primary_label=prediction.class_label,
        predictions=tuple(ranked),
    )


# ---------------------------------------------------------------------------
# Picker integration
# ---------------------------------------------------------------------------


class ImageSelection:
    """Outcome of one photo-picker presentation.

    Resolved exactly once, with either the picked image or a cancellation.
    Resolving it a second time raises ``concurrent.futures.InvalidStateError``.
    """

    def __init__(self) -> None:
        self._future: Future[Image.Image | None] = Future()

    def select(self, image: Image.Image) -> None:
        self._future.set_result(image)

    def cancel(self) -> None:
        self._future.set_result(None)

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def cancelled(self) -> bool:
        return self._future.done() and self._future.result() is None

    def result(self, timeout: float | None = None) -> Image.Image | None:
        return self._future.result(timeout=timeout)

    def add_done_callback(self, callback: Callable[[Image.Image | None], None]) -> None:
        self._future.add_done_callback(lambda future: callback(future.result()))


class SelectionSession:
    """Holds the selected image and the last report for one screen.

    A newly selected image is analyzed immediately; a cancelled selection
    leaves the previous image and report untouched.
    """

    def __init__(
        self,
        classifier_factory: ClassifierFactory,
        *,
        size: tuple[int, int] = DEFAULT_INPUT_SIZE,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._classifier_factory = classifier_factory
        self._size = size
        self._top_k = top_k
        self._image: Image.Image | None = None
        self._report = AnalysisReport(status=AnalysisStatus.IDLE, message=IDLE_MESSAGE)

    @property
    def selected_image(self) -> Image.Image | None:
        return self._image

    @property
    def report(self) -> AnalysisReport:
        return self._report

    def present_picker(self) -> ImageSelection:
        """Return a selection whose resolution feeds back into this session."""
        selection = ImageSelection()
        selection.add_done_callback(self._on_picker_finished)
        return selection

    def on_image_selected(self, image: Image.Image) -> AnalysisReport:
        self._image = image
        return self.analyze()

    def on_cancelled(self) -> AnalysisReport:
        logger.debug("Photo selection cancelled")
        return self._report

    def analyze(self) -> AnalysisReport:
        self._report = analyze_image(
            self._image,
            self._classifier_factory,
            size=self._size,
            top_k=self._top_k,
        )
        return self._report

    def _on_picker_finished(self, image: Image.Image | None) -> None:
        if image is None:
            self.on_cancelled()
        else:
            self.on_image_selected(image)
