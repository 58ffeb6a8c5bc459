"""Environment-driven configuration for the bridge.

Values are read from the process environment (a `.env` file is loaded by
`main.py` through python-dotenv before this module is consulted).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BridgeConfig:
    """Runtime settings for the server, the store and the image pipeline."""

    port: int = 3456
    host: str = "0.0.0.0"
    data_dir: Path = Path("data")
    max_image_base64_kb: int = 750
    max_image_dimension: int = 1920
    jpeg_quality_start: int = 85
    jpeg_quality_min: int = 30
    jpeg_quality_step: int = 10
    canvas_timeout_seconds: float = 10.0
    open_browser: bool = False
    log_level: str = "INFO"

    @property
    def max_image_base64_bytes(self) -> int:
        return self.max_image_base64_kb * 1024

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """Build a config from environment variables, falling back to defaults.

        Raises:
            RuntimeError: If a variable is set to an unusable value.
        """
        quality_start = _env_int("JPEG_QUALITY_START", 85, minimum=1)
        quality_min = _env_int("JPEG_QUALITY_MIN", 30, minimum=1)
        if quality_start > 100 or quality_min > quality_start:
            raise RuntimeError(
                "JPEG quality settings must satisfy "
                f"1 <= JPEG_QUALITY_MIN ({quality_min}) <= JPEG_QUALITY_START ({quality_start}) <= 100"
            )
        data_dir = Path(os.getenv("DATA_DIR") or "data").expanduser()
        if data_dir.exists() and not data_dir.is_dir():
            raise RuntimeError(f"DATA_DIR={str(data_dir)!r} points to a file, not a directory")

        return cls(
            port=_env_int("PORT", 3456, minimum=1),
            host=os.getenv("HOST") or "0.0.0.0",
            data_dir=data_dir,
            max_image_base64_kb=_env_int("MAX_IMAGE_BASE64_KB", 750, minimum=1),
            max_image_dimension=_env_int("MAX_IMAGE_DIMENSION", 1920, minimum=1),
            jpeg_quality_start=quality_start,
            jpeg_quality_min=quality_min,
            jpeg_quality_step=_env_int("JPEG_QUALITY_STEP", 10, minimum=1),
            canvas_timeout_seconds=_env_float("CANVAS_TIMEOUT_SECONDS", 10.0),
            open_browser=_env_bool("OPEN_BROWSER", False),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )
