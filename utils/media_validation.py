"""Validation helpers for uploaded image payloads."""

import base64
import binascii
import re

_DATA_URL_RE = re.compile(r"^data:image/[\w.+-]+;base64,(.+)$", re.DOTALL)


def _b64decode(payload: str) -> bytes:
    try:
        return base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Image payload is not valid base64") from exc


def parse_image_data_url(data_url: str) -> bytes:
    """Decode a `data:image/<type>;base64,<payload>` URL into raw image bytes.

    Raises:
        ValueError: If the string is not an image data URL or the payload is not base64.
    """
    if not isinstance(data_url, str):
        raise ValueError("Invalid data URL format")
    match = _DATA_URL_RE.match(data_url.strip())
    if not match:
        raise ValueError("Invalid data URL format")
    decoded = _b64decode(match.group(1))
    if not decoded:
        raise ValueError("Data URL payload is empty")
    return decoded


def decode_image_payload(value: str) -> bytes:
    """Accept either an image data URL or bare base64 text and return the raw bytes."""
    text = (value or "").strip()
    if not text:
        raise ValueError("Image payload is required.")
    if text.startswith("data:"):
        return parse_image_data_url(text)
    decoded = _b64decode(text)
    if not decoded:
        raise ValueError("Image payload is empty")
    return decoded
