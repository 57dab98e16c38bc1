"""Error taxonomy for the analysis pipeline."""

from __future__ import annotations


class PhotoLabelError(Exception):
    """Base class for PhotoLabel errors."""


class NoImageSelectedError(PhotoLabelError):
    """Analysis was requested before any image was selected."""


class BufferConversionError(PhotoLabelError):
    """The source image could not be normalized into a pixel buffer."""


class InferenceError(PhotoLabelError):
    """The classifier could not be loaded or could not produce a prediction."""


class ImageDecodeError(PhotoLabelError, ValueError):
    """Uploaded bytes are not a decodable image or exceed the size limits."""
