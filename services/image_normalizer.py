"""Image normalizer service.

Provides a small OOP wrapper around Pillow that turns an arbitrary encoded
image into a JPEG whose base64 text fits a byte budget. The search is
deterministic and bounded:

1. cap both dimensions at ``max_dimension`` (never upscale),
2. step JPEG quality down from ``quality_start`` to ``quality_min``,
3. shrink the capped image by fixed fractions at ``quality_min``.

Each step runs only while the previous output is still over budget, and every
encode starts from the capped source rather than from a previous JPEG.

Public class: `ImageNormalizer`

Example:
    normalizer = ImageNormalizer(max_base64_bytes=750 * 1024)
    result = normalizer.normalize(png_bytes)
"""
from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from utils.config import BridgeConfig
from utils.media_validation import parse_image_data_url

LOGGER = logging.getLogger(__name__)

JPEG_MIME_TYPE = "image/jpeg"
DEFAULT_SCALE_STEPS: Tuple[int, ...] = (80, 70, 60, 50, 40, 30)


class ImageFormatError(ValueError):
    """Raised when input bytes cannot be decoded as a raster image."""


@dataclass(frozen=True)
class NormalizedImage:
    """Result of a normalization pass."""

    base64: str
    width: int
    height: int
    quality: int
    mime_type: str = JPEG_MIME_TYPE

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


class ImageNormalizer:
    """Re-encode images as size-bounded JPEGs.

    Args:
        max_base64_bytes: Upper bound on the length of the base64 output.
        max_dimension: Maximum width and height before any quality search.
        quality_start: First JPEG quality tried.
        quality_min: Lowest JPEG quality the search will use.
        quality_step: Amount quality drops per attempt.
        scale_steps: Percentages of the capped size tried at ``quality_min``.
        background: RGB color used to flatten transparent pixels.
    """

    def __init__(
        self,
        max_base64_bytes: int = 750 * 1024,
        max_dimension: int = 1920,
        quality_start: int = 85,
        quality_min: int = 30,
        quality_step: int = 10,
        scale_steps: Sequence[int] = DEFAULT_SCALE_STEPS,
        background: Tuple[int, int, int] = (255, 255, 255),
    ):
        if quality_step <= 0:
            raise ValueError("quality_step must be positive")
        if not 1 <= quality_min <= quality_start <= 100:
            raise ValueError("JPEG qualities must satisfy 1 <= quality_min <= quality_start <= 100")
        self.max_base64_bytes = max_base64_bytes
        self.max_dimension = max_dimension
        self.quality_start = quality_start
        self.quality_min = quality_min
        self.quality_step = quality_step
        self.scale_steps = tuple(s for s in scale_steps if 0 < s < 100)
        self.background = background

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "ImageNormalizer":
        return cls(
            max_base64_bytes=config.max_image_base64_bytes,
            max_dimension=config.max_image_dimension,
            quality_start=config.jpeg_quality_start,
            quality_min=config.jpeg_quality_min,
            quality_step=config.jpeg_quality_step,
        )

    def normalize_data_url(self, data_url: str) -> NormalizedImage:
        """Normalize an image given as a `data:image/...;base64,` URL.

        Raises:
            ValueError: If the data URL is malformed.
            ImageFormatError: If the payload is not a decodable image.
        """
        return self.normalize(parse_image_data_url(data_url))

    def normalize(self, image_bytes: bytes) -> NormalizedImage:
        """Produce a JPEG whose base64 length fits the configured budget.

        The result is best effort: when even the smallest scale step is over
        budget, that last attempt is returned anyway.

        Raises:
            ImageFormatError: If the bytes cannot be opened as an image.
        """
        source = self._open(image_bytes)
        capped = self._cap_dimensions(source)

        quality = self.quality_start
        encoded = self._encode(capped, quality)
        while len(encoded) > self.max_base64_bytes and quality > self.quality_min:
            quality = max(self.quality_min, quality - self.quality_step)
            encoded = self._encode(capped, quality)

        result = NormalizedImage(base64=encoded, width=capped.width, height=capped.height, quality=quality)
        if len(encoded) <= self.max_base64_bytes:
            return result

        for percent in self.scale_steps:
            width = max(1, round(capped.width * percent / 100))
            height = max(1, round(capped.height * percent / 100))
            scaled = capped.resize((width, height), Image.LANCZOS)
            encoded = self._encode(scaled, self.quality_min)
            result = NormalizedImage(base64=encoded, width=width, height=height, quality=self.quality_min)
            if len(encoded) <= self.max_base64_bytes:
                return result

        LOGGER.warning(
            "Image still exceeds %d base64 bytes after all scale steps (%d bytes at %dx%d)",
            self.max_base64_bytes,
            len(result.base64),
            result.width,
            result.height,
        )
        return result

    def _open(self, image_bytes: bytes) -> Image.Image:
        if not image_bytes:
            raise ImageFormatError("Image bytes are required")
        try:
            src = Image.open(io.BytesIO(image_bytes))
            src.load()
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise ImageFormatError("Decoded bytes are not a supported image format") from exc

        # Flatten alpha against the background color; JPEG has no alpha channel
        if src.mode in ("RGBA", "LA") or (src.mode == "P" and "transparency" in src.info):
            src = src.convert("RGBA")
            flattened = Image.new("RGB", src.size, self.background)
            flattened.paste(src, mask=src.split()[3])
            return flattened
        if src.mode != "RGB":
            return src.convert("RGB")
        return src

    def _cap_dimensions(self, src: Image.Image) -> Image.Image:
        if src.width <= self.max_dimension and src.height <= self.max_dimension:
            return src
        capped = src.copy()
        capped.thumbnail((self.max_dimension, self.max_dimension), Image.LANCZOS)
        return capped

    @staticmethod
    def _encode(img: Image.Image, quality: int) -> str:
        out_io = io.BytesIO()
        img.save(out_io, format="JPEG", quality=quality, optimize=True)
        return base64.b64encode(out_io.getvalue()).decode("ascii")
