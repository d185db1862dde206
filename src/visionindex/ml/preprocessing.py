"""Image preprocessing pipeline.

Handles decoding, EXIF orientation, color space conversion, size
validation, conversion to numpy arrays for model input, and thumbnails.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Protocol

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import NDArray

    from visionindex.config import Settings
    from visionindex.ml.model_manager import ModelSpec

logger = logging.getLogger(__name__)


class ImagePreprocessor(Protocol):
    """Protocol for image preprocessing."""

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        """Decode raw image bytes into an RGB uint8 numpy array.

        Args:
            image_bytes: Raw file bytes (any supported format).

        Returns:
            HxWx3 RGB uint8 numpy array.

        Raises:
            ValueError: If the image cannot be decoded or exceeds size limits.
        """
        ...

    def preprocess_for_classification(self, image: NDArray[np.uint8], spec: ModelSpec) -> NDArray[np.float32]:
        """Prepare an image for a classification model.

        Args:
            image: HxWx3 RGB uint8 array.
            spec: Model metadata carrying resize, crop and normalization values.

        Returns:
            1x3xCxC float32 tensor.
        """
        ...


class PillowPreprocessor:
    """Pillow-backed implementation of :class:`ImagePreprocessor`."""

    def __init__(self, settings: Settings) -> None:
        self._max_file_size = settings.max_file_size
        self._max_image_pixels = settings.max_image_pixels

    def decode_image(self, image_bytes: bytes) -> NDArray[np.uint8]:
        if len(image_bytes) > self._max_file_size:
            raise ValueError(f"Image is {len(image_bytes)} bytes, limit is {self._max_file_size}")
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if width * height > self._max_image_pixels:
                    raise ValueError(f"Image is {width}x{height} pixels, limit is {self._max_image_pixels}")
                rgb = ImageOps.exif_transpose(img).convert("RGB")
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
            raise ValueError(f"Cannot decode image: {exc}") from exc
        return np.asarray(rgb, dtype=np.uint8)

    def preprocess_for_classification(self, image: NDArray[np.uint8], spec: ModelSpec) -> NDArray[np.float32]:
        img = Image.fromarray(image)

        # Shortest side to spec.resize, then center crop to spec.crop.
        width, height = img.size
        scale = spec.resize / min(width, height)
        img = img.resize(
            (max(spec.crop, round(width * scale)), max(spec.crop, round(height * scale))),
            Image.Resampling.BILINEAR,
        )
        width, height = img.size
        left = (width - spec.crop) // 2
        top = (height - spec.crop) // 2
        img = img.crop((left, top, left + spec.crop, top + spec.crop))

        tensor = np.asarray(img, dtype=np.float32) / 255.0
        tensor = (tensor - np.asarray(spec.mean, dtype=np.float32)) / np.asarray(spec.std, dtype=np.float32)
        return tensor.transpose(2, 0, 1)[np.newaxis, ...].astype(np.float32)


def make_thumbnail(path: Path, max_pixel_size: int = 256) -> Image.Image | None:
    """Return a thumbnail no larger than ``max_pixel_size`` on either side.

    Returns None when the file cannot be read or decoded.
    """
    try:
        with Image.open(path) as img:
            thumb = ImageOps.exif_transpose(img)
            thumb.thumbnail((max_pixel_size, max_pixel_size))
            thumb.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError):
        logger.debug("No thumbnail for %s", path)
        return None
    return thumb
