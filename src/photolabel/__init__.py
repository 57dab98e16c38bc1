"""PhotoLabel: top-k photo classification with a pre-trained ONNX model."""

__version__ = "0.1.0"
