"""Image preprocessing pipeline.

Decodes uploaded bytes into a PIL image (format detection, EXIF orientation,
size validation) and normalizes any source image into the fixed-size BGRA
pixel buffer the classifier consumes.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from photolabel.errors import BufferConversionError, ImageDecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

DEFAULT_INPUT_SIZE: tuple[int, int] = (224, 224)
PIXEL_FORMAT = "BGRA"
BYTES_PER_PIXEL = 4


@dataclass(frozen=True)
class PixelBuffer:
    """Fixed-size 32-bit BGRA raster used as classifier input.

    ``data`` has shape (height, width, 4). Rows are stored top-down, so
    ``data[0, 0]`` is the top-left pixel. The alpha byte is always 0xFF and
    is skipped by the classifier.
    """

    width: int
    height: int
    data: NDArray[np.uint8]

    @property
    def bytes_per_row(self) -> int:
        return self.width * BYTES_PER_PIXEL

    @property
    def pixel_format(self) -> str:
        return PIXEL_FORMAT

    def pixel_at(self, x: int, y: int) -> tuple[int, int, int, int]:
        """Return the (B, G, R, A) bytes at column ``x``, row ``y``."""
        b, g, r, a = (int(v) for v in self.data[y, x])
        return b, g, r, a

    def to_rgb(self) -> NDArray[np.uint8]:
        """Return an HxWx3 RGB view with the alpha channel dropped."""
        return self.data[..., 2::-1]


def decode_image(image_bytes: bytes, max_image_pixels: int) -> Image.Image:
    """Decode raw image bytes into an upright PIL image.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_image_pixels: Upper bound on width * height.

    Returns:
        Decoded image with EXIF orientation applied.

    Raises:
        ImageDecodeError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise ImageDecodeError("Empty image upload")

    try:
        image = Image.open(io.BytesIO(image_bytes))
        width, height = image.size
        if width * height > max_image_pixels:
            raise ImageDecodeError(f"Image too large: {width}x{height} exceeds {max_image_pixels} pixels")
        image.load()
        upright = ImageOps.exif_transpose(image)
    except ImageDecodeError:
        raise
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ImageDecodeError(f"Could not decode image: {exc}") from exc

    logger.debug("Decoded %s image %sx%s (mode=%s)", image.format, width, height, image.mode)
    return upright


def to_pixel_buffer(image: Image.Image, size: tuple[int, int] = DEFAULT_INPUT_SIZE) -> PixelBuffer:
    """Stretch ``image`` to exactly ``size`` and pack it as 32-bit BGRA.

    Aspect ratio is not preserved. Both the PIL source and the numpy raster
    are addressed top-down, so the source's top-left pixel lands at
    ``data[0, 0]`` without a flip; orientation metadata is resolved once, in
    :func:`decode_image`.

    Raises:
        BufferConversionError: If the buffer cannot be allocated or drawn.
    """
    width, height = size
    if not isinstance(width, int) or not isinstance(height, int) or width <= 0 or height <= 0:
        raise BufferConversionError(f"Invalid pixel buffer size: {width}x{height}")
    if image.width <= 0 or image.height <= 0:
        raise BufferConversionError(f"Cannot draw empty {image.width}x{image.height} image")

    try:
        resized = image.convert("RGB").resize((width, height), Image.Resampling.BILINEAR)
        rgb = np.asarray(resized, dtype=np.uint8)
        data = np.empty((height, width, BYTES_PER_PIXEL), dtype=np.uint8)
        data[..., :3] = rgb[..., ::-1]
        data[..., 3] = 0xFF
    except (OSError, ValueError, MemoryError) as exc:
        raise BufferConversionError(f"Could not draw image into {width}x{height} buffer: {exc}") from exc

    data.setflags(write=False)
    return PixelBuffer(width=width, height=height, data=data)
