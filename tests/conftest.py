import base64
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from dal.screenshot_dal import ScreenshotDAL
from main import create_app
from models.screenshot_record import GitContext
from services.screenshot_store import ScreenshotStore
from utils.config import BridgeConfig


def encode_png(width=10, height=10, color=(255, 0, 0), mode="RGB"):
    """Return PNG bytes for a solid-color image."""
    if mode == "RGBA" and len(color) == 3:
        color = (*color, 128)
    img = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def git_context():
    return GitContext(branch="main", commit="abc123def456", commit_short="abc123d", repo_root="/tmp/repo")


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def dal(data_dir):
    return ScreenshotDAL(data_dir)


@pytest.fixture
def store(dal, git_context):
    """Store backed by a temp directory, with a fixed git context."""
    screenshot_store = ScreenshotStore(dal, source_context=lambda: git_context)
    screenshot_store.load_from_disk()
    return screenshot_store


@pytest.fixture
def png_bytes():
    return encode_png


@pytest.fixture
def png_data_url():
    def _make(width=10, height=10, color=(255, 0, 0), mode="RGB"):
        payload = base64.b64encode(encode_png(width, height, color, mode)).decode("ascii")
        return f"data:image/png;base64,{payload}"

    return _make


@pytest.fixture
def client(data_dir, git_context):
    """Application client with its lifespan running against a temp data dir."""
    app = create_app(BridgeConfig(data_dir=data_dir, canvas_timeout_seconds=0.5), source_context=lambda: git_context)
    with TestClient(app) as test_client:
        yield test_client
