import base64
import io

import pytest
from PIL import Image

from services.image_normalizer import ImageFormatError, ImageNormalizer

JPEG_MAGIC = b"\xff\xd8"


def _noise_png(width, height):
    img = Image.effect_noise((width, height), 100).convert("RGB")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def test_png_becomes_jpeg(png_bytes):
    result = ImageNormalizer().normalize(png_bytes(10, 10))

    assert result.mime_type == "image/jpeg"
    assert base64.b64decode(result.base64)[:2] == JPEG_MAGIC
    assert result.data_url.startswith("data:image/jpeg;base64,")
    assert (result.width, result.height) == (10, 10)
    assert result.quality == 85


def test_transparent_png_is_flattened(png_bytes):
    result = ImageNormalizer().normalize(png_bytes(20, 20, mode="RGBA"))

    decoded = Image.open(io.BytesIO(base64.b64decode(result.base64)))
    assert decoded.mode == "RGB"


def test_large_image_is_capped_proportionally(png_bytes):
    result = ImageNormalizer().normalize(png_bytes(3840, 1000))

    assert (result.width, result.height) == (1920, 500)


def test_square_image_capped_at_max_dimension(png_bytes):
    result = ImageNormalizer().normalize(png_bytes(2000, 2000))

    assert result.width <= 1920
    assert result.height <= 1920


def test_small_image_is_never_upscaled(png_bytes):
    result = ImageNormalizer().normalize(png_bytes(50, 30))

    assert (result.width, result.height) == (50, 30)


def test_noisy_image_fits_budget():
    normalizer = ImageNormalizer()

    result = normalizer.normalize(_noise_png(4000, 4000))

    assert len(result.base64) <= 750 * 1024
    assert result.width <= 1920
    assert base64.b64decode(result.base64)[:2] == JPEG_MAGIC


def test_quality_never_goes_below_floor():
    normalizer = ImageNormalizer(max_base64_bytes=200)

    result = normalizer.normalize(_noise_png(300, 300))

    assert result.quality == 30
    # Every scale step ran; the smallest one is returned even though it is over budget.
    assert (result.width, result.height) == (90, 90)


def test_tiny_image_with_impossible_budget_terminates(png_bytes):
    normalizer = ImageNormalizer(max_base64_bytes=10)

    result = normalizer.normalize(png_bytes(1, 1))

    assert result.width == 1
    assert result.height == 1
    assert base64.b64decode(result.base64)[:2] == JPEG_MAGIC


def test_invalid_bytes_raise():
    with pytest.raises(ImageFormatError):
        ImageNormalizer().normalize(b"definitely not an image")


def test_empty_bytes_raise():
    with pytest.raises(ImageFormatError):
        ImageNormalizer().normalize(b"")


def test_normalize_data_url(png_data_url):
    result = ImageNormalizer().normalize_data_url(png_data_url(12, 8))

    assert (result.width, result.height) == (12, 8)


@pytest.mark.parametrize("bad", ["not-a-data-url", "data:text/plain;base64,aGVsbG8=", "data:image/png,raw"])
def test_malformed_data_url_raises(bad):
    with pytest.raises(ValueError):
        ImageNormalizer().normalize_data_url(bad)


def test_invalid_quality_settings_rejected():
    with pytest.raises(ValueError):
        ImageNormalizer(quality_start=20, quality_min=30)
    with pytest.raises(ValueError):
        ImageNormalizer(quality_step=0)
