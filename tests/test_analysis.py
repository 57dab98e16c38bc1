"""Tests for the analysis pipeline and picker integration."""

from __future__ import annotations

from concurrent.futures import InvalidStateError
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from photolabel.errors import BufferConversionError, InferenceError, NoImageSelectedError
from photolabel.ml.analysis import (
    CONVERSION_FAILURE_MESSAGE,
    IDLE_MESSAGE,
    NO_IMAGE_MESSAGE,
    AnalysisStatus,
    ImageSelection,
    SelectionSession,
    analyze_image,
    classify,
)
from photolabel.ml.image_classifier import Prediction

if TYPE_CHECKING:
    from photolabel.ml.preprocessing import PixelBuffer

PROBABILITIES = {"cat": 0.7231, "dog": 0.1501, "bird": 0.0802, "fish": 0.0301, "frog": 0.0165}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClassifier:
    """Returns a fixed prediction and records the buffers it was given."""

    def __init__(self, prediction: Prediction | None = None) -> None:
        self.prediction = prediction or Prediction(class_label="cat", probabilities=dict(PROBABILITIES))
        self.buffers: list[PixelBuffer] = []

    @property
    def model_name(self) -> str:
        return "fake"

    def predict(self, buffer: PixelBuffer) -> Prediction:
        self.buffers.append(buffer)
        return self.prediction


def _image() -> Image.Image:
    return Image.new("RGB", (64, 48), (200, 100, 50))


# ---------------------------------------------------------------------------
# classify / analyze_image
# ---------------------------------------------------------------------------


class TestClassify:
    def test_no_image_raises(self) -> None:
        with pytest.raises(NoImageSelectedError):
            classify(None, FakeClassifier)

    def test_wraps_factory_errors(self) -> None:
        factory = MagicMock(side_effect=FileNotFoundError("mobilenet.onnx not found"))

        with pytest.raises(InferenceError, match="mobilenet.onnx not found") as exc_info:
            classify(_image(), factory)
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)

    def test_buffer_has_requested_size(self) -> None:
        classifier = FakeClassifier()

        classify(_image(), lambda: classifier, size=(128, 96))

        assert (classifier.buffers[0].width, classifier.buffers[0].height) == (128, 96)


class TestAnalyzeImage:
    def test_success_report(self) -> None:
        report = analyze_image(_image(), FakeClassifier)

        assert report.status is AnalysisStatus.OK
        assert report.ok
        assert report.primary_label == "cat"
        assert [p.label for p in report.predictions] == ["cat", "dog", "bird", "fish"]
        assert report.message.splitlines() == [
            "Result: cat",
            "",
            "1. cat (72.31%)",
            "2. dog (15.01%)",
            "3. bird (8.02%)",
            "4. fish (3.01%)",
        ]

    def test_primary_label_comes_from_classifier(self) -> None:
        prediction = Prediction(class_label="tiger", probabilities={"cat": 0.6, "tiger": 0.4})

        report = analyze_image(_image(), lambda: FakeClassifier(prediction))

        assert report.primary_label == "tiger"
        assert report.message.startswith("Result: tiger")
        assert report.predictions[0].label == "cat"

    def test_empty_prediction_set(self) -> None:
        prediction = Prediction(class_label="nothing", probabilities={})

        report = analyze_image(_image(), lambda: FakeClassifier(prediction))

        assert report.status is AnalysisStatus.OK
        assert report.predictions == ()

    def test_top_k_respected(self) -> None:
        report = analyze_image(_image(), FakeClassifier, top_k=2)

        assert len(report.predictions) == 2

    @patch("photolabel.ml.analysis.to_pixel_buffer")
    def test_no_image_skips_buffer_allocation(self, mock_to_buffer: MagicMock) -> None:
        factory = MagicMock()

        report = analyze_image(None, factory)

        assert report.status is AnalysisStatus.NO_IMAGE
        assert report.message == NO_IMAGE_MESSAGE
        mock_to_buffer.assert_not_called()
        factory.assert_not_called()

    @patch("photolabel.ml.analysis.to_pixel_buffer")
    def test_conversion_failure_skips_inference(self, mock_to_buffer: MagicMock) -> None:
        mock_to_buffer.side_effect = BufferConversionError("allocation failed")
        factory = MagicMock()

        report = analyze_image(_image(), factory)

        assert report.status is AnalysisStatus.CONVERSION_FAILED
        assert report.message == CONVERSION_FAILURE_MESSAGE
        factory.assert_not_called()

    def test_invalid_size_reports_conversion_failure(self) -> None:
        factory = MagicMock()

        report = analyze_image(_image(), factory, size=(0, 0))

        assert report.message == CONVERSION_FAILURE_MESSAGE
        factory.assert_not_called()

    def test_model_loading_failure(self) -> None:
        factory = MagicMock(side_effect=FileNotFoundError("model.onnx is missing"))

        report = analyze_image(_image(), factory)

        assert report.status is AnalysisStatus.INFERENCE_FAILED
        assert report.message == "Error: model.onnx is missing"
        assert report.primary_label is None
        assert report.predictions == ()

    def test_prediction_failure(self) -> None:
        classifier = MagicMock()
        classifier.predict.side_effect = InferenceError("expects 299x299 input, got 224x224")

        report = analyze_image(_image(), lambda: classifier)

        assert report.status is AnalysisStatus.INFERENCE_FAILED
        assert report.message == "Error: expects 299x299 input, got 224x224"

    def test_classifier_built_per_call(self) -> None:
        factory = MagicMock(side_effect=lambda: FakeClassifier())

        analyze_image(_image(), factory)
        analyze_image(_image(), factory)

        assert factory.call_count == 2


# ---------------------------------------------------------------------------
# Picker integration
# ---------------------------------------------------------------------------


class TestImageSelection:
    def test_select_resolves_once(self) -> None:
        selection = ImageSelection()
        image = _image()

        selection.select(image)

        assert selection.done
        assert not selection.cancelled
        assert selection.result() is image
        with pytest.raises(InvalidStateError):
            selection.cancel()

    def test_cancel(self) -> None:
        selection = ImageSelection()

        selection.cancel()

        assert selection.cancelled
        assert selection.result() is None

    def test_callback_receives_outcome(self) -> None:
        selection = ImageSelection()
        received: list[object] = []
        selection.add_done_callback(received.append)

        selection.cancel()

        assert received == [None]


class TestSelectionSession:
    def test_starts_idle(self) -> None:
        session = SelectionSession(FakeClassifier)

        assert session.selected_image is None
        assert session.report.status is AnalysisStatus.IDLE
        assert session.report.message == IDLE_MESSAGE

    def test_new_selection_is_analyzed_automatically(self) -> None:
        session = SelectionSession(FakeClassifier)
        image = _image()

        session.present_picker().select(image)

        assert session.selected_image is image
        assert session.report.status is AnalysisStatus.OK
        assert session.report.primary_label == "cat"

    def test_cancel_keeps_previous_state(self) -> None:
        session = SelectionSession(FakeClassifier)
        image = _image()
        session.present_picker().select(image)
        previous = session.report

        session.present_picker().cancel()

        assert session.selected_image is image
        assert session.report is previous

    def test_cancel_before_any_selection(self) -> None:
        factory = MagicMock()
        session = SelectionSession(factory)

        session.present_picker().cancel()

        assert session.report.status is AnalysisStatus.IDLE
        factory.assert_not_called()

    def test_analyze_without_image(self) -> None:
        session = SelectionSession(FakeClassifier)

        report = session.analyze()

        assert report.message == NO_IMAGE_MESSAGE

    def test_reanalyze_same_image(self) -> None:
        factory = MagicMock(side_effect=lambda: FakeClassifier())
        session = SelectionSession(factory)
        session.on_image_selected(_image())

        session.analyze()

        assert factory.call_count == 2
